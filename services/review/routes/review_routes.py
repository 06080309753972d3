from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Header, HTTPException

from ..api_models import ReviewRequest
from ..review_api_service import ReviewApiError, review_api, weak_schedule_api


def build_router(core) -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    async def health() -> Any:
        return {"status": "ok"}

    @router.post("/review")
    async def review(req: ReviewRequest, x_user_id: Optional[str] = Header(default=None)) -> Any:
        try:
            return await review_api(req, x_user_id, deps=core.review_api_deps())
        except ReviewApiError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.detail)

    @router.get("/review/weak/{user_id}")
    async def weak_schedule(user_id: str) -> Any:
        try:
            return await weak_schedule_api(user_id, deps=core.review_api_deps())
        except ReviewApiError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.detail)

    return router
