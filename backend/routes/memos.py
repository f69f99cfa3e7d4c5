"""Routes for listing and deleting memo collections."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from backend.database import get_db
from backend.dependencies import get_tree_store
from backend.services import memo_service
from backend.services.tree_store import TreeStore
from shared.schemas import MemoSummary

router = APIRouter()


@router.get("/{owner_id}", response_model=list[MemoSummary])
def list_memos(owner_id: str, db: Session = Depends(get_db)):
    """List the owner's memos, most recently updated first."""
    return [
        MemoSummary(
            id=m.id,
            owner_id=m.owner_id,
            title=m.title,
            tags=m.tags or [],
            root_question=m.root_question,
            created_at=m.created_at,
            updated_at=m.updated_at,
        )
        for m in memo_service.list_memos(db, owner_id)
    ]


@router.delete("/{owner_id}/{memo_id}", status_code=204)
def delete_memo(owner_id: str, memo_id: str, db: Session = Depends(get_db), store: TreeStore = Depends(get_tree_store)):
    """Delete a memo and its conversation tree."""
    if not memo_service.delete_memo(db, store, owner_id, memo_id):
        raise HTTPException(status_code=404, detail=f"Memo '{memo_id}' not found")
    return None
