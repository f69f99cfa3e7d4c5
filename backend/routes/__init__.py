"""API routes for Rabbithole backend."""

from fastapi import APIRouter

from backend.routes import explore, memos, monitoring, trees

api_router = APIRouter(prefix="/api", tags=["api"])

api_router.include_router(monitoring.router)
api_router.include_router(trees.router, prefix="/trees", tags=["trees"])
api_router.include_router(memos.router, prefix="/memos", tags=["memos"])
api_router.include_router(explore.router, prefix="/explore", tags=["explore"])
