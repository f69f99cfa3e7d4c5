"""
Answer generation for conversation tree nodes.

- AnswerGenerator: the capability the exploration flows consume
  (conversation path + query + search results -> answer, follow-ups, images).
- LLMAnswerGenerator: implementation over OpenAI or Anthropic chat models,
  with retry, usage/cost logging, and follow-up question extraction.

Environment variables:
  OPENAI_API_KEY, ANTHROPIC_API_KEY     API keys (set one for the provider you use)
  RABBITHOLE_LLM_PROVIDER               "openai" | "anthropic" (default: openai)
  RABBITHOLE_LLM_MODEL                  e.g. gpt-4o-mini, claude-3-5-haiku-20241022

Optional deps: pip install openai anthropic  (or use project's [llm] extra)
"""

import asyncio
import json
import logging
import os
import re
import time
from typing import Any, Callable, Optional, Protocol

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.database import SessionLocal
from backend.models.conversation_tree import ConversationTurn
from backend.models_db import LLMCallLog
from backend.services.memo_service import derive_memo_title
from backend.services.search_service import SearchResults
from backend.utils.logging import log_llm_call

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Configuration (environment variables)
# -----------------------------------------------------------------------------

OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY")

RABBITHOLE_LLM_PROVIDER = os.environ.get("RABBITHOLE_LLM_PROVIDER", "openai").lower()
RABBITHOLE_LLM_MODEL = os.environ.get("RABBITHOLE_LLM_MODEL") or (
    "gpt-4o-mini" if RABBITHOLE_LLM_PROVIDER == "openai" else "claude-3-5-haiku-20241022"
)

MAX_FOLLOW_UPS = 3
FOLLOW_UP_MARKER = "Follow-up Questions:"

SYSTEM_PROMPT = f"""You help users explore topics in depth. Answer in markdown with #### headers.
Base the answer on the search results provided and on the previous conversation.
After the answer, add a "{FOLLOW_UP_MARKER}" section with {MAX_FOLLOW_UPS} concise questions, one per line."""

INTENT_SYSTEM_PROMPT = """You name explorations. Given the question a user wants to explore, reply with JSON only:
{"title": "<short descriptive title, at most 60 characters>", "tags": ["<2-4 lowercase topic tags>"]}"""

DEFAULT_MEMO_TAGS = ["general", "exploration"]

# -----------------------------------------------------------------------------
# Usage / cost estimation (rough $ per 1M tokens)
# -----------------------------------------------------------------------------

COST_PER_MILLION = {
    ("openai", "gpt-4o"): (2.50, 10.00),
    ("openai", "gpt-4o-mini"): (0.15, 0.60),
    ("anthropic", "claude-sonnet-4-20250514"): (3.00, 15.00),
    ("anthropic", "claude-3-5-haiku-20241022"): (0.80, 4.00),
}


def _estimate_cost_usd(provider: str, model: str, input_tokens: int, output_tokens: int) -> Optional[float]:
    prices = COST_PER_MILLION.get((provider, model))
    if prices is None:
        return None
    in_p, out_p = prices
    return (input_tokens / 1_000_000) * in_p + (output_tokens / 1_000_000) * out_p


class LLMUsage:
    """Token usage and cost for one call."""

    __slots__ = ("input_tokens", "output_tokens", "model", "provider", "estimated_cost_usd")

    def __init__(
        self,
        input_tokens: int = 0,
        output_tokens: int = 0,
        model: str = "",
        provider: str = "",
        estimated_cost_usd: Optional[float] = None,
    ):
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.model = model
        self.provider = provider
        self.estimated_cost_usd = estimated_cost_usd or _estimate_cost_usd(
            provider, model, input_tokens, output_tokens
        )


# -----------------------------------------------------------------------------
# Provider protocol and implementations
# -----------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Strategy interface for LLM providers."""

    async def call(self, messages: list[dict[str, str]], system_prompt: str, model: str) -> tuple[str, LLMUsage]:
        """Return (content, usage)."""
        ...


class OpenAIProvider:
    """OpenAI API (async)."""

    def __init__(self, api_key: Optional[str] = None):
        self._key = api_key or OPENAI_API_KEY
        self._client = None

    def _client_or_raise(self):
        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise RuntimeError("OpenAI provider requires: pip install openai")
        if not self._key:
            raise RuntimeError("OPENAI_API_KEY is not set")
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._key)
        return self._client

    async def call(self, messages: list[dict[str, str]], system_prompt: str, model: str) -> tuple[str, LLMUsage]:
        client = self._client_or_raise()
        response = await client.chat.completions.create(
            model=model,
            messages=[{"role": "system", "content": system_prompt}, *messages],
            temperature=0.7,
        )
        content = (response.choices[0].message.content or "").strip()
        usage = response.usage
        return content, LLMUsage(
            input_tokens=usage.prompt_tokens,
            output_tokens=usage.completion_tokens,
            model=model,
            provider="openai",
        )


class AnthropicProvider:
    """Anthropic API (async)."""

    def __init__(self, api_key: Optional[str] = None):
        self._key = api_key or ANTHROPIC_API_KEY
        self._client = None

    def _client_or_raise(self):
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise RuntimeError("Anthropic provider requires: pip install anthropic")
        if not self._key:
            raise RuntimeError("ANTHROPIC_API_KEY is not set")
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self._key)
        return self._client

    async def call(self, messages: list[dict[str, str]], system_prompt: str, model: str) -> tuple[str, LLMUsage]:
        client = self._client_or_raise()
        response = await client.messages.create(
            model=model,
            max_tokens=4096,
            system=system_prompt,
            messages=messages,
            temperature=0.7,
        )
        content = (response.content[0].text if response.content else "").strip()
        return content, LLMUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=model,
            provider="anthropic",
        )


def _get_provider(name: str) -> LLMProvider:
    if name == "openai":
        return OpenAIProvider()
    if name == "anthropic":
        return AnthropicProvider()
    raise ValueError(f"Unknown LLM provider: {name}")


# -----------------------------------------------------------------------------
# Retry with exponential backoff
# -----------------------------------------------------------------------------


async def _retry_async(
    fn,
    *args,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    **kwargs,
):
    last_error = None
    for attempt in range(max_attempts):
        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            last_error = e
            if attempt < max_attempts - 1:
                delay = base_delay * (2 ** attempt)
                logger.warning("LLM call failed (attempt %s/%s), retrying in %.1fs: %s", attempt + 1, max_attempts, delay, e)
                await asyncio.sleep(delay)
    raise last_error


# -----------------------------------------------------------------------------
# Cost logging
# -----------------------------------------------------------------------------


def _log_usage(purpose: str, usage: LLMUsage, session_factory: Callable[[], Session] = SessionLocal) -> None:
    try:
        db = session_factory()
        try:
            db.add(
                LLMCallLog(
                    provider=usage.provider,
                    model=usage.model,
                    purpose=purpose,
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                    estimated_cost_usd=usage.estimated_cost_usd,
                )
            )
            db.commit()
        finally:
            db.close()
    except Exception as e:
        logger.warning("Failed to log LLM usage to DB: %s", e)


# -----------------------------------------------------------------------------
# Answer generation capability
# -----------------------------------------------------------------------------


class GeneratedAnswer(BaseModel):
    """What answer generation hands back to the tree."""

    answer_text: str
    follow_up_questions: list[str] = Field(default_factory=list, max_length=MAX_FOLLOW_UPS)
    image_urls: list[str] = Field(default_factory=list)


class MemoIntent(BaseModel):
    """Title and tags for a new memo, derived from its opening question."""

    title: str = Field(..., min_length=1)
    tags: list[str] = Field(default_factory=list)


class AnswerGenerator(Protocol):
    async def generate(
        self,
        conversation_path: list[ConversationTurn],
        query: str,
        search_results: Optional[SearchResults] = None,
    ) -> GeneratedAnswer:
        ...

    async def analyze_intent(self, query: str) -> MemoIntent:
        ...


def split_follow_up_questions(response: str) -> tuple[str, list[str]]:
    """
    Split model output into (answer, follow-ups) at the follow-up marker.
    List numbering and bullets are stripped; only lines that ask something are kept.
    """
    answer, _, section = response.partition(FOLLOW_UP_MARKER)
    questions = []
    for line in section.strip().splitlines():
        line = re.sub(r"^\s*(?:\d+[.)]|[-*])\s*", "", line).strip()
        if line and "?" in line:
            questions.append(line)
    return answer.strip(), questions[:MAX_FOLLOW_UPS]


def format_conversation(conversation_path: list[ConversationTurn]) -> str:
    return "\n".join(f"User: {turn.question}\nAssistant: {turn.answer}\n" for turn in conversation_path)


# -----------------------------------------------------------------------------
# Memo intent (title and tags)
# -----------------------------------------------------------------------------


def _extract_json_object(text: str) -> dict[str, Any]:
    """First {...} object in model output, with markdown code fences removed."""
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
    if fenced:
        text = fenced.group(1)
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end < start:
        raise ValueError("No JSON object found in response")
    data = json.loads(text[start : end + 1])
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data


def fallback_memo_intent(query: str) -> MemoIntent:
    return MemoIntent(title=derive_memo_title(query), tags=list(DEFAULT_MEMO_TAGS))


def parse_memo_intent(response: str, query: str) -> MemoIntent:
    """
    Title and tags from the model's JSON reply. A missing title or tag list
    falls back field by field; an unparseable reply falls back entirely.
    """
    try:
        data = _extract_json_object(response)
    except ValueError as e:
        logger.warning("Intent analysis reply was not JSON, using the question as title: %s", e)
        return fallback_memo_intent(query)
    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        title = query
    tags = data.get("tags")
    if isinstance(tags, list):
        tags = [str(t).strip().lower() for t in tags if str(t).strip()]
    else:
        tags = list(DEFAULT_MEMO_TAGS)
    return MemoIntent(title=derive_memo_title(title), tags=tags)


class LLMAnswerGenerator:
    """Answers a question given its conversation path, using one configured chat model."""

    def __init__(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.provider_name = provider or RABBITHOLE_LLM_PROVIDER
        self.model = model or RABBITHOLE_LLM_MODEL
        self._provider: Optional[LLMProvider] = None
        self._session_factory = session_factory

    def _get_provider(self) -> LLMProvider:
        if self._provider is None:
            self._provider = _get_provider(self.provider_name)
        return self._provider

    async def _complete(self, purpose: str, prompt: str, system_prompt: str, extra: Optional[dict[str, Any]] = None) -> str:
        """One user-turn completion with retry; usage goes to llm_call_logs under `purpose`."""
        provider = self._get_provider()
        start = time.perf_counter()
        content, usage = await _retry_async(provider.call, [{"role": "user", "content": prompt}], system_prompt, self.model)
        _log_usage(purpose, usage, self._session_factory)
        log_llm_call(
            logger,
            purpose,
            self.model,
            prompt,
            content,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_sec=round(time.perf_counter() - start, 3),
            extra={"provider": usage.provider, **(extra or {})},
        )
        return content

    async def generate(
        self,
        conversation_path: list[ConversationTurn],
        query: str,
        search_results: Optional[SearchResults] = None,
    ) -> GeneratedAnswer:
        search_results = search_results or SearchResults()
        prompt = (
            f"Previous conversation:\n{format_conversation(conversation_path)}\n\n"
            f"Search results about \"{query}\":\n{json.dumps(search_results.model_dump(mode='json'))}\n\n"
            f"Question: {query}"
        )
        content = await self._complete("answer", prompt, SYSTEM_PROMPT, {"path_length": len(conversation_path)})
        answer, follow_ups = split_follow_up_questions(content)
        return GeneratedAnswer(
            answer_text=answer,
            follow_up_questions=follow_ups,
            image_urls=search_results.image_urls(),
        )

    async def analyze_intent(self, query: str) -> MemoIntent:
        """Ask the model for a memo title and tags for the opening question."""
        prompt = f'Analyze this user query and generate an appropriate title and tags: "{query}"'
        content = await self._complete("memo", prompt, INTENT_SYSTEM_PROMPT)
        return parse_memo_intent(content, query)
