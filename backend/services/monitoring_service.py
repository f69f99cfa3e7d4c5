"""
Monitoring for Rabbithole.

- Health check: DB connectivity, LLM and search configuration
- Metrics: memos, trees, nodes, LLM calls and estimated cost
- Used by /api/health and /api/metrics
"""

import logging
import os
from typing import Any

from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.exceptions import StorageError
from backend.models_db import LLMCallLog, MemoModel
from backend.services.tree_store import TreeStore

logger = logging.getLogger(__name__)

LLM_API_KEYS = {"openai": "OPENAI_API_KEY", "anthropic": "ANTHROPIC_API_KEY"}


def check_db(db: Session) -> tuple[bool, str]:
    """Check database connectivity. Returns (ok, message)."""
    try:
        db.execute(text("SELECT 1"))
        return True, "ok"
    except SQLAlchemyError as e:
        return False, str(e)


def check_llm_config() -> tuple[bool, str]:
    """Check that the configured LLM provider has its API key set. Does not call the API."""
    provider = os.getenv("RABBITHOLE_LLM_PROVIDER", "openai").lower()
    key_name = LLM_API_KEYS.get(provider)
    if key_name is None:
        return False, f"unknown LLM provider '{provider}'"
    if os.getenv(key_name):
        return True, f"{provider} configured"
    return False, f"{provider} selected but {key_name} not set"


def check_search_config() -> tuple[bool, str]:
    if os.getenv("TAVILY_API_KEY"):
        return True, "tavily configured"
    return False, "offline search (no TAVILY_API_KEY)"


def get_health(db: Session) -> dict[str, Any]:
    """Return health status for /api/health."""
    db_ok, db_msg = check_db(db)
    llm_ok, llm_msg = check_llm_config()
    search_ok, search_msg = check_search_config()
    return {
        "status": "healthy" if db_ok else "unhealthy",
        "checks": {
            "database": {"status": "up" if db_ok else "down", "message": db_msg},
            "llm_config": {"status": "configured" if llm_ok else "not_configured", "message": llm_msg},
            "search_config": {"status": "configured" if search_ok else "not_configured", "message": search_msg},
        },
    }


def get_metrics(db: Session, store: TreeStore) -> dict[str, Any]:
    """Aggregate metrics for /api/metrics. Tree counts come from the tree store."""
    try:
        memos_total = db.query(func.count(MemoModel.id)).scalar() or 0
        trees_total = store.count_trees()
        nodes_total = store.total_nodes()
        llm_stats = db.query(
            func.count(LLMCallLog.id).label("calls"),
            func.coalesce(func.sum(LLMCallLog.estimated_cost_usd), 0).label("cost_usd"),
        ).first()
        return {
            "memos_total": memos_total,
            "trees_total": trees_total,
            "nodes_total": int(nodes_total),
            "llm_api_calls": llm_stats.calls or 0,
            "llm_estimated_cost_usd": round(float(llm_stats.cost_usd or 0), 4),
        }
    except (SQLAlchemyError, StorageError) as e:
        logger.exception("get_metrics failed: %s", e)
        return {
            "memos_total": 0,
            "trees_total": 0,
            "nodes_total": 0,
            "llm_api_calls": 0,
            "llm_estimated_cost_usd": 0.0,
            "error": str(e),
        }
