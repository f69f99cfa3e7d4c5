"""Memo collections: the records that address one conversation tree each."""

import logging
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from backend.models_db import MemoModel
from backend.services.tree_store import TreeStore

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 80


def derive_memo_title(query: str) -> str:
    """Title from the opening question: first line, trimmed to a readable length."""
    title = " ".join(query.strip().splitlines()[0].split()) if query.strip() else "Untitled"
    if len(title) > MAX_TITLE_LENGTH:
        title = title[: MAX_TITLE_LENGTH - 3].rstrip() + "..."
    return title


def create_memo(
    db: Session,
    owner_id: str,
    query: str,
    tags: Optional[list[str]] = None,
    title: Optional[str] = None,
) -> MemoModel:
    """Insert a memo; without an explicit title the opening question is used."""
    memo = MemoModel(
        id=f"memo-{uuid.uuid4().hex[:12]}",
        owner_id=owner_id,
        title=derive_memo_title(title or query),
        tags=list(tags or []),
        root_question=query,
    )
    db.add(memo)
    db.commit()
    db.refresh(memo)
    logger.info("Created memo %s for owner %s", memo.id, owner_id)
    return memo


def list_memos(db: Session, owner_id: str) -> list[MemoModel]:
    return (
        db.query(MemoModel)
        .filter(MemoModel.owner_id == owner_id)
        .order_by(MemoModel.updated_at.desc())
        .all()
    )


def get_memo(db: Session, owner_id: str, memo_id: str) -> Optional[MemoModel]:
    return db.query(MemoModel).filter(MemoModel.id == memo_id, MemoModel.owner_id == owner_id).first()


def delete_memo(db: Session, store: TreeStore, owner_id: str, memo_id: str) -> bool:
    """Delete the memo and the tree document it owns. False if the memo does not exist."""
    memo = get_memo(db, owner_id, memo_id)
    if memo is None:
        return False
    db.delete(memo)
    db.commit()
    store.delete(memo_id, owner_id)
    logger.info("Deleted memo %s and its conversation tree", memo_id)
    return True
