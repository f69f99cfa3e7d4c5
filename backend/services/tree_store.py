"""
Durable storage of conversation tree documents.

One document per (collection_id, owner_id), persisted whole in the
conversation_trees table. Every write replaces the entire document in a
single transaction; a row version supports optimistic concurrency.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.database import SessionLocal
from backend.exceptions import StorageError, VersionConflict
from backend.models.conversation_tree import TreeDocument, utcnow
from backend.models_db import ConversationTreeModel

logger = logging.getLogger(__name__)


class TreeStore:
    """
    Whole-document get/put over SQLAlchemy.

    put() semantics for expected_version:
      None -> unconditional overwrite (insert if missing)
      0    -> create; the row must not exist yet
      n    -> overwrite only if the stored version is still n
    A failed expectation raises VersionConflict.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Tree storage failure: %s", e)
            raise StorageError(f"Tree storage failure: {e}") from e
        finally:
            db.close()

    def get(self, collection_id: str, owner_id: str) -> Optional[TreeDocument]:
        loaded = self.get_with_version(collection_id, owner_id)
        return loaded[0] if loaded else None

    def get_with_version(self, collection_id: str, owner_id: str) -> Optional[tuple[TreeDocument, int]]:
        """Return (document, version), or None if no document exists. Each call returns a fresh copy."""
        with self._session() as db:
            row = db.get(ConversationTreeModel, (collection_id, owner_id))
            if row is None:
                return None
            data, version = row.tree_json, row.version
        try:
            return TreeDocument.model_validate(data), version
        except ValidationError as e:
            raise StorageError(f"Stored tree for collection '{collection_id}' is corrupt: {e}") from e

    def put(
        self,
        collection_id: str,
        owner_id: str,
        document: TreeDocument,
        expected_version: Optional[int] = None,
    ) -> int:
        """Overwrite the whole document. Returns the new stored version."""
        payload = document.to_json()
        node_count = len(document.nodes)
        with self._session() as db:
            if expected_version is None:
                row = db.get(ConversationTreeModel, (collection_id, owner_id))
                if row is None:
                    new_version = 1
                    db.add(
                        ConversationTreeModel(
                            collection_id=collection_id,
                            owner_id=owner_id,
                            tree_json=payload,
                            version=new_version,
                            node_count=node_count,
                        )
                    )
                else:
                    new_version = row.version + 1
                    row.tree_json = payload
                    row.version = new_version
                    row.node_count = node_count
                db.commit()
                return new_version

            if expected_version == 0:
                db.add(
                    ConversationTreeModel(
                        collection_id=collection_id,
                        owner_id=owner_id,
                        tree_json=payload,
                        version=1,
                        node_count=node_count,
                    )
                )
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    raise VersionConflict(collection_id, owner_id, 0, self._current_version(db, collection_id, owner_id))
                return 1

            result = db.execute(
                update(ConversationTreeModel)
                .where(
                    ConversationTreeModel.collection_id == collection_id,
                    ConversationTreeModel.owner_id == owner_id,
                    ConversationTreeModel.version == expected_version,
                )
                .values(
                    tree_json=payload,
                    version=expected_version + 1,
                    node_count=node_count,
                    updated_at=utcnow(),
                )
            )
            if result.rowcount != 1:
                db.rollback()
                raise VersionConflict(
                    collection_id, owner_id, expected_version, self._current_version(db, collection_id, owner_id)
                )
            db.commit()
            return expected_version + 1

    def delete(self, collection_id: str, owner_id: str) -> bool:
        with self._session() as db:
            row = db.get(ConversationTreeModel, (collection_id, owner_id))
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True

    def count_trees(self) -> int:
        with self._session() as db:
            return db.scalar(select(func.count()).select_from(ConversationTreeModel)) or 0

    def total_nodes(self) -> int:
        with self._session() as db:
            return db.scalar(select(func.coalesce(func.sum(ConversationTreeModel.node_count), 0))) or 0

    @staticmethod
    def _current_version(db: Session, collection_id: str, owner_id: str) -> Optional[int]:
        return db.scalar(
            select(ConversationTreeModel.version).where(
                ConversationTreeModel.collection_id == collection_id,
                ConversationTreeModel.owner_id == owner_id,
            )
        )
