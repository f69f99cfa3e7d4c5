"""Shared schemas for Rabbithole (backend and frontend contract)."""

from shared.schemas.exploration import (
    AddChildRequest,
    AddChildrenRequest,
    AddNodeRequest,
    AddNodeResponse,
    AttachAnswerRequest,
    CreateMemoRequest,
    CreateMemoResponse,
    CreateRootRequest,
    Image,
    MemoSummary,
    NodeIdsResponse,
    SearchRequest,
    SearchResponse,
    Source,
)

__all__ = [
    "AddChildRequest",
    "AddChildrenRequest",
    "AddNodeRequest",
    "AddNodeResponse",
    "AttachAnswerRequest",
    "CreateMemoRequest",
    "CreateMemoResponse",
    "CreateRootRequest",
    "Image",
    "MemoSummary",
    "NodeIdsResponse",
    "SearchRequest",
    "SearchResponse",
    "Source",
]
