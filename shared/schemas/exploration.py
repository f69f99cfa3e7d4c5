"""
Request and response models for the Rabbithole HTTP API.

Used by the backend routes and mirrored by the frontend client.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class Source(BaseModel):
    """A search result cited alongside an answer."""

    title: str = ""
    url: str = ""
    author: str = ""
    image: str = ""


class Image(BaseModel):
    url: str
    thumbnail: str = ""
    description: str = ""


# -----------------------------------------------------------------------------
# Exploration flows
# -----------------------------------------------------------------------------


class CreateMemoRequest(BaseModel):
    query: str = Field(..., min_length=1, description="Opening question of the exploration")
    user_id: str = Field(..., min_length=1, description="Owner of the new memo")
    tags: list[str] = Field(default_factory=list, description="Optional tags for the memo")


class CreateMemoResponse(BaseModel):
    memo_id: str
    title: str
    tags: list[str] = Field(default_factory=list)
    root_node_id: str
    answer: str
    follow_up_questions: list[str] = Field(default_factory=list)
    new_follow_up_node_ids: list[str] = Field(default_factory=list)
    image_urls: list[str] = Field(default_factory=list)
    sources: list[Source] = Field(default_factory=list)
    images: list[Image] = Field(default_factory=list)


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, description="Question to answer for the node")
    user_id: str = Field(..., min_length=1)
    memo_id: str = Field(..., min_length=1)
    node_id: str = Field(..., min_length=1, description="Node to answer; recorded as a pending root if unknown")


class SearchResponse(BaseModel):
    response: str
    follow_up_questions: list[str] = Field(default_factory=list)
    contextual_query: str
    node_id: str
    new_follow_up_node_ids: list[str] = Field(default_factory=list)
    sources: list[Source] = Field(default_factory=list)
    images: list[Image] = Field(default_factory=list)


class AddNodeRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    memo_id: str = Field(..., min_length=1)
    parent_id: str = Field(..., min_length=1, description="Existing node to attach the new question under")
    question: str = Field(..., min_length=1)


class AddNodeResponse(BaseModel):
    node_id: str
    question: str
    answer: str
    parent_id: str
    follow_up_questions: list[str] = Field(default_factory=list)
    new_follow_up_node_ids: list[str] = Field(default_factory=list)
    sources: list[Source] = Field(default_factory=list)
    images: list[Image] = Field(default_factory=list)


class MemoSummary(BaseModel):
    id: str
    owner_id: str
    title: str
    tags: list[str] = Field(default_factory=list)
    root_question: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# -----------------------------------------------------------------------------
# Direct tree operations
# -----------------------------------------------------------------------------


class CreateRootRequest(BaseModel):
    question: str = Field(..., min_length=1)
    answer: Optional[str] = Field(None, description="Answer text if already known")
    image_urls: list[str] = Field(default_factory=list)


class AddChildRequest(BaseModel):
    question: str = Field(..., min_length=1)
    answer: Optional[str] = Field(None, description="Answer text if already known")
    image_urls: list[str] = Field(default_factory=list)


class AddChildrenRequest(BaseModel):
    questions: list[str] = Field(..., description="Pending child questions, allocated in order")

    @field_validator("questions")
    @classmethod
    def _no_blank_questions(cls, v: list[str]) -> list[str]:
        if any(not q.strip() for q in v):
            raise ValueError("questions must not be blank")
        return v


class AttachAnswerRequest(BaseModel):
    answer: str = Field(..., description="Answer text")
    image_urls: list[str] = Field(default_factory=list)


class NodeIdsResponse(BaseModel):
    node_ids: list[str]
