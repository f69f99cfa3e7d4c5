"""
Web search capability used to ground answers.

TavilySearchProvider calls the Tavily REST API over httpx. Without a
TAVILY_API_KEY the OfflineSearchProvider is used and answers are generated
from the conversation alone.
"""

import logging
import os
from typing import Optional, Protocol

import httpx
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

TAVILY_API_KEY = os.environ.get("TAVILY_API_KEY")
TAVILY_SEARCH_URL = os.environ.get("RABBITHOLE_TAVILY_URL", "https://api.tavily.com/search")
SEARCH_TIMEOUT_SEC = float(os.environ.get("RABBITHOLE_SEARCH_TIMEOUT_SEC", "20"))


class SearchHit(BaseModel):
    title: str = ""
    url: str = ""
    content: str = ""
    author: str = ""
    image: str = ""


class SearchImage(BaseModel):
    url: str
    description: str = ""


class SearchResults(BaseModel):
    results: list[SearchHit] = Field(default_factory=list)
    images: list[SearchImage] = Field(default_factory=list)

    def image_urls(self) -> list[str]:
        return [img.url for img in self.images if img.url]


class SearchProvider(Protocol):
    async def search(self, query: str) -> SearchResults:
        ...


class OfflineSearchProvider:
    """No external search; every query returns empty results."""

    async def search(self, query: str) -> SearchResults:
        return SearchResults()


class TavilySearchProvider:
    """Tavily search (async, httpx)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        max_results: int = 3,
        search_depth: str = "basic",
        include_images: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._key = api_key or TAVILY_API_KEY
        self.max_results = max_results
        self.search_depth = search_depth
        self.include_images = include_images
        self._transport = transport

    async def search(self, query: str) -> SearchResults:
        if not self._key:
            raise RuntimeError("TAVILY_API_KEY is not set")
        body = {
            "api_key": self._key,
            "query": query,
            "search_depth": self.search_depth,
            "include_images": self.include_images,
            "include_image_descriptions": self.include_images,
            "max_results": self.max_results,
        }
        async with httpx.AsyncClient(timeout=SEARCH_TIMEOUT_SEC, transport=self._transport) as client:
            response = await client.post(TAVILY_SEARCH_URL, json=body)
            response.raise_for_status()
            data = response.json()
        images = []
        for img in data.get("images") or []:
            # Tavily returns bare urls unless descriptions were requested
            if isinstance(img, str):
                images.append(SearchImage(url=img))
            elif isinstance(img, dict) and img.get("url"):
                images.append(SearchImage(url=img["url"], description=img.get("description") or ""))
        hits = [
            SearchHit(
                title=r.get("title") or "",
                url=r.get("url") or "",
                content=r.get("content") or "",
                author=r.get("author") or "",
            )
            for r in data.get("results") or []
            if isinstance(r, dict)
        ]
        logger.info("Search for %r returned %s results, %s images", query[:80], len(hits), len(images))
        return SearchResults(results=hits, images=images)


def get_search_provider() -> SearchProvider:
    if TAVILY_API_KEY:
        return TavilySearchProvider()
    return OfflineSearchProvider()
