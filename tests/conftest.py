"""
Pytest fixtures for Rabbithole tests.

Uses an in-memory SQLite DB for speed and isolation.
StaticPool keeps a single connection so the :memory: database (and tables) persist.
Answer generation and search are replaced by deterministic stubs.
"""

from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.database import Base, get_db
from backend.dependencies import get_answer_generator, get_search, get_tree_store
from backend.main import app
from backend.models.conversation_tree import ConversationTurn
from backend.services.llm_service import GeneratedAnswer, MemoIntent
from backend.services.search_service import SearchHit, SearchImage, SearchResults
from backend.services.tree_engine import TreeEngine
from backend.services.tree_store import TreeStore

TEST_DB = "sqlite:///:memory:"


class StubAnswerGenerator:
    """Answers every query with canned text and two follow-up questions; records its inputs."""

    def __init__(self, follow_ups: int = 2, fail: bool = False, fail_intent: bool = False):
        self.follow_ups = follow_ups
        self.fail = fail
        self.fail_intent = fail_intent
        self.calls: list[tuple[list[ConversationTurn], str]] = []
        self.intent_calls: list[str] = []

    async def analyze_intent(self, query: str) -> MemoIntent:
        self.intent_calls.append(query)
        if self.fail_intent:
            raise RuntimeError("model unavailable")
        return MemoIntent(title=f"Exploring: {query}", tags=["stub", "topic"])

    async def generate(
        self,
        conversation_path: list[ConversationTurn],
        query: str,
        search_results: Optional[SearchResults] = None,
    ) -> GeneratedAnswer:
        self.calls.append((list(conversation_path), query))
        if self.fail:
            raise RuntimeError("model unavailable")
        return GeneratedAnswer(
            answer_text=f"Answer to: {query}",
            follow_up_questions=[f"Follow-up {i + 1} on {query}?" for i in range(self.follow_ups)],
            image_urls=search_results.image_urls() if search_results else [],
        )


class StubSearch:
    async def search(self, query: str) -> SearchResults:
        return SearchResults(
            results=[SearchHit(title=f"About {query}", url="https://example.org/article", content="...")],
            images=[SearchImage(url="https://example.org/image.png", description="diagram")],
        )


@pytest.fixture(scope="function")
def db_engine():
    """Create a fresh in-memory DB and tables per test."""
    test_engine = create_engine(
        TEST_DB,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,  # single connection so :memory: DB and tables persist
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def store(session_factory) -> TreeStore:
    return TreeStore(session_factory)


@pytest.fixture
def tree_engine(store) -> TreeEngine:
    return TreeEngine(store)


@pytest.fixture
def generator() -> StubAnswerGenerator:
    return StubAnswerGenerator()


@pytest.fixture
def client(session_factory, generator):
    """FastAPI TestClient with test DB and stubbed answer generation/search."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_tree_store] = lambda: TreeStore(session_factory)
    app.dependency_overrides[get_answer_generator] = lambda: generator
    app.dependency_overrides[get_search] = lambda: StubSearch()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
