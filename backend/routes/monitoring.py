"""Health and metrics endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.database import get_db
from backend.dependencies import get_tree_store
from backend.services.monitoring_service import get_health, get_metrics
from backend.services.tree_store import TreeStore

router = APIRouter(tags=["monitoring"])


@router.get("/health", summary="Health check")
def health(db: Session = Depends(get_db)):
    """
    Health check for load balancers and orchestration.
    Returns database, LLM and search configuration status.
    """
    return get_health(db)


@router.get("/metrics", summary="Usage metrics")
def metrics(db: Session = Depends(get_db), store: TreeStore = Depends(get_tree_store)):
    """Aggregate counts: memos, trees, nodes, LLM calls and estimated cost."""
    return get_metrics(db, store)
