#!/usr/bin/env python3
"""
Seed a sample memo and conversation tree into the database (no LLM calls).
Idempotent: the sample memo is recreated from scratch on every run.

Usage (from project root):
  python scripts/seed_sample_tree.py
"""
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

SAMPLE_MEMO_ID = "memo-sample"
SAMPLE_OWNER_ID = "demo-user"


def main() -> int:
    from backend.database import Base, SessionLocal, engine
    from backend.models_db import MemoModel
    from backend.services.tree_engine import TreeEngine
    from backend.services.tree_store import TreeStore

    Base.metadata.create_all(bind=engine)
    store = TreeStore(SessionLocal)
    tree = TreeEngine(store)
    db = SessionLocal()
    try:
        existing = db.get(MemoModel, SAMPLE_MEMO_ID)
        if existing:
            db.delete(existing)
            db.commit()
        store.delete(SAMPLE_MEMO_ID, SAMPLE_OWNER_ID)
        db.add(
            MemoModel(
                id=SAMPLE_MEMO_ID,
                owner_id=SAMPLE_OWNER_ID,
                title="How do neural networks work?",
                tags=["machine-learning"],
                root_question="How do neural networks work?",
            )
        )
        db.commit()
    finally:
        db.close()

    root = tree.create_root(
        SAMPLE_MEMO_ID,
        SAMPLE_OWNER_ID,
        "How do neural networks work?",
        "#### Overview\nLayers of weighted sums followed by non-linear activations, trained by gradient descent.",
    )
    follow_ups = tree.add_children(
        SAMPLE_MEMO_ID,
        SAMPLE_OWNER_ID,
        root,
        ["What is backpropagation?", "Why do activations need to be non-linear?", "How deep is a deep network?"],
    )
    tree.attach_answer(
        SAMPLE_MEMO_ID,
        SAMPLE_OWNER_ID,
        follow_ups[0],
        "#### Backpropagation\nThe chain rule applied layer by layer to get the gradient of the loss.",
    )
    tree.add_children(SAMPLE_MEMO_ID, SAMPLE_OWNER_ID, follow_ups[0], ["What is a vanishing gradient?"])

    document = tree.get_document(SAMPLE_MEMO_ID, SAMPLE_OWNER_ID)
    print(
        f"Seeded memo {SAMPLE_MEMO_ID} (owner {SAMPLE_OWNER_ID}): "
        f"{document.metadata.total_nodes} nodes, depth {document.metadata.max_depth}, nextId {document.next_id}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
