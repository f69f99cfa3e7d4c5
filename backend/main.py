"""
Rabbithole FastAPI application entrypoint.

Run with: uvicorn backend.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.database import Base, engine
from backend.exceptions import DocumentNotFound, NodeNotFound, StorageError
from backend.models_db import ConversationTreeModel, LLMCallLog, MemoModel  # noqa: F401  (register tables)
from backend.routes import api_router
from backend.services.exploration_service import AnswerGenerationError
from backend.utils.logging import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and create DB tables on startup."""
    configure_logging()
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title="Rabbithole API",
    description="""Explore a topic as a tree of questions and answers.

Start a memo from a question, then expand any follow-up question into a new answer.
Each memo keeps its exploration as a conversation tree document; the path from a
root to a node is the context used to answer that node.
""",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for local React dev (Vite default port 5173)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DocumentNotFound)
@app.exception_handler(NodeNotFound)
async def not_found_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("Storage error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Storage failure. Please try again."})


@app.exception_handler(AnswerGenerationError)
async def generation_error_handler(request: Request, exc: AnswerGenerationError):
    logger.error("Answer generation failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "Failed to generate an answer. Please try again."})


app.include_router(api_router)


@app.get("/")
def root():
    return {"service": "Rabbithole", "docs": "/docs", "api": "/api"}
