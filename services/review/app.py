from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .logging_config import configure_logging
from .profile_client import ProfileClient
from .profile_sync_service import ProfileSyncEngine
from .request_context import REQUEST_ID, REQUEST_ID_HEADER, resolve_request_id
from .review_api_service import ReviewApiDeps
from .review_assessment_service import assess_review
from .round_idempotency import RoundIdempotencyCache
from .routes.review_routes import build_router
from . import settings as _settings

_log = logging.getLogger(__name__)


class ReviewRuntime:
    """Process-wide collaborators shared by the review routes."""

    def __init__(
        self,
        client: Optional[ProfileClient] = None,
        engine: Optional[ProfileSyncEngine] = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.client = client or ProfileClient()
        self.engine = engine or ProfileSyncEngine(
            self.client,
            RoundIdempotencyCache(
                ttl_sec=_settings.review_idempotent_ttl_sec(),
                max_entries=_settings.review_idempotent_max_entries(),
                keep_entries=_settings.review_idempotent_keep_entries(),
            ),
            now=now,
        )
        self.now = now

    def review_api_deps(self) -> ReviewApiDeps:
        return ReviewApiDeps(
            assess_review=assess_review,
            sync_weak_knowledge=self.engine.sync,
            load_weak_knowledge=self.client.get_weak_knowledge,
            now=self.now,
        )

    async def aclose(self) -> None:
        await self.client.aclose()


def create_app(runtime: Optional[ReviewRuntime] = None) -> FastAPI:
    core = runtime or ReviewRuntime()
    app = FastAPI(title="Code Review Weak Knowledge API", version="0.1.0")
    app.state.review_runtime = core

    origins = os.getenv("CORS_ORIGINS", "*")
    origins_list = [o.strip() for o in origins.split(",")] if origins else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def _request_id_middleware(request: Request, call_next):
        rid = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = REQUEST_ID.set(rid)
        try:
            response = await call_next(request)
        finally:
            REQUEST_ID.reset(token)
        response.headers[REQUEST_ID_HEADER] = rid
        return response

    @app.on_event("startup")
    async def _startup_logging() -> None:
        configure_logging()

    @app.on_event("shutdown")
    async def _close_profile_client() -> None:
        await core.aclose()

    app.include_router(build_router(core))
    _log.info("review api ready, profile service at %s", core.client.base_url)
    return app


app = create_app()
