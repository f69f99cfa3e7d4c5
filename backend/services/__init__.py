"""Backend services (tree storage and engine, answer generation, search, etc.)."""

from backend.services.tree_store import TreeStore
from backend.services.tree_engine import (
    TreeEngine,
    build_conversation_path,
    collect_answered_nodes_bfs,
    compute_max_depth,
    find_tree_issues,
)
from backend.services.search_service import (
    OfflineSearchProvider,
    SearchProvider,
    SearchResults,
    TavilySearchProvider,
    get_search_provider,
)
from backend.services.llm_service import (
    AnswerGenerator,
    GeneratedAnswer,
    LLMAnswerGenerator,
    split_follow_up_questions,
)
from backend.services.exploration_service import (
    AnswerGenerationError,
    ExplorationResult,
    ExplorationService,
)

__all__ = [
    "TreeStore",
    "TreeEngine",
    "build_conversation_path",
    "collect_answered_nodes_bfs",
    "compute_max_depth",
    "find_tree_issues",
    "OfflineSearchProvider",
    "SearchProvider",
    "SearchResults",
    "TavilySearchProvider",
    "get_search_provider",
    "AnswerGenerator",
    "GeneratedAnswer",
    "LLMAnswerGenerator",
    "split_follow_up_questions",
    "AnswerGenerationError",
    "ExplorationResult",
    "ExplorationService",
]
