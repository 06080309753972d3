"""Async client for the remote user-profile service.

Every call carries an explicit timeout and may be cancelled through an
``asyncio.Event``; all transport failures, timeouts, cancellations and non-2xx
responses surface as ``ProfileSyncError`` with the HTTP status when there is
one.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional
from urllib.parse import quote

import httpx

from . import settings as _settings
from .review_models import RunResult, WeakKnowledgePoint

_log = logging.getLogger(__name__)

PROFILE_PATH = "/api/mongodb/user_profile"
ERROR_BODY_MAX_CHARS = 180


class ProfileSyncError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class SyncMetadata:
    mode: str
    round_id: Optional[str]
    review_summary: str
    run_result: Optional[RunResult] = None

    @property
    def run_success(self) -> Optional[bool]:
        return self.run_result.success if self.run_result is not None else None

    @property
    def error_type(self) -> Optional[str]:
        return self.run_result.error_type if self.run_result is not None else None


def _encode_segment(value: str) -> str:
    return quote(str(value), safe="")


def _json_bytes(payload: Any) -> bytes:
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


async def _bounded(
    request: Awaitable[httpx.Response],
    timeout_sec: float,
    cancel_event: Optional[asyncio.Event],
) -> httpx.Response:
    """Await ``request`` under one deadline for the whole call, racing ``cancel_event``."""
    request_task = asyncio.ensure_future(request)
    cancel_task = asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
    waiters = {request_task} if cancel_task is None else {request_task, cancel_task}
    try:
        done, _pending = await asyncio.wait(waiters, timeout=timeout_sec, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if cancel_task is not None:
            cancel_task.cancel()
        if not request_task.done():
            request_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await request_task
    if request_task in done:
        return request_task.result()
    if cancel_task is not None and cancel_task in done:
        raise ProfileSyncError("request_cancelled")
    raise asyncio.TimeoutError()


class ProfileClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_sec: Optional[float] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or _settings.profile_api_base()).rstrip("/")
        self.timeout_sec = float(timeout_sec if timeout_sec is not None else _settings.profile_sync_timeout_sec())
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(transport=transport, timeout=self.timeout_sec)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ProfileClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def profile_url(self, user_id: Optional[str] = None) -> str:
        if user_id is None:
            return f"{self.base_url}{PROFILE_PATH}"
        return f"{self.base_url}{PROFILE_PATH}/{_encode_segment(user_id)}"

    def weak_point_url(self, user_id: str, knowledge_id: str) -> str:
        return f"{self.profile_url(user_id)}/weak/{_encode_segment(knowledge_id)}"

    async def _send(
        self,
        method: str,
        url: str,
        *,
        payload: Any = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> httpx.Response:
        if cancel_event is not None and cancel_event.is_set():
            raise ProfileSyncError("request_cancelled")
        kwargs: Dict[str, Any] = {"timeout": self.timeout_sec}
        if payload is not None:
            kwargs["content"] = _json_bytes(payload)
            kwargs["headers"] = {"Content-Type": "application/json"}
        request = self._client.request(method, url, **kwargs)
        try:
            return await _bounded(request, self.timeout_sec, cancel_event)
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            raise ProfileSyncError(f"{method} {url} timed out after {int(self.timeout_sec * 1000)}ms") from exc
        except httpx.HTTPError as exc:
            raise ProfileSyncError(f"{method} {url} failed: {exc}") from exc

    async def get_weak_knowledge(
        self, user_id: str, *, cancel_event: Optional[asyncio.Event] = None
    ) -> List[WeakKnowledgePoint]:
        """Return the user's stored weak points; a 404 means no profile yet."""
        resp = await self._send("GET", self.profile_url(user_id), cancel_event=cancel_event)
        if resp.status_code == 404:
            return []
        if not resp.is_success:
            body = resp.text[:ERROR_BODY_MAX_CHARS]
            raise ProfileSyncError(f"GET user profile failed: {resp.status_code} {body}".strip(), resp.status_code)
        try:
            data = resp.json()
        except ValueError:
            _log.warning("profile response for %s is not JSON", user_id)
            data = {}
        container = data.get("user_profile") if isinstance(data, dict) and isinstance(data.get("user_profile"), dict) else data
        if not isinstance(container, dict) or not isinstance(container.get("weak_knowledge"), list):
            return []
        points = [WeakKnowledgePoint.from_payload(item) for item in container["weak_knowledge"]]
        return [point for point in points if point is not None]

    async def _write(
        self,
        method: str,
        url: str,
        payload: Dict[str, Any],
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        try:
            resp = await self._send(method, url, payload=payload, cancel_event=cancel_event)
        except ProfileSyncError as exc:
            raise ProfileSyncError(f"{method} request failed for {url}. {exc}", exc.status) from exc
        if resp.is_success:
            return
        body = resp.text[:ERROR_BODY_MAX_CHARS]
        raise ProfileSyncError(f"{method} request failed for {url}. {resp.status_code}:{body}", resp.status_code)

    async def create_weak_point(
        self,
        user_id: str,
        point: WeakKnowledgePoint,
        meta: SyncMetadata,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        profile = {
            "user_id": user_id,
            "weak_knowledge": [point.to_dict()],
            "source": "review",
            "mode": meta.mode,
            "round_id": meta.round_id,
            "review_summary": meta.review_summary,
            "run_success": meta.run_success,
        }
        payload = {"user_id": user_id, "profile_json_str": json.dumps(profile, ensure_ascii=False)}
        await self._write("POST", self.profile_url(), payload, cancel_event)

    async def update_weak_point(
        self,
        user_id: str,
        point: WeakKnowledgePoint,
        meta: SyncMetadata,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        update = {
            "weak_score": point.weak_score,
            "weak_reason": point.weak_reason,
            "review_record": {
                "source": "review",
                "mode": meta.mode,
                "round_id": meta.round_id,
                "review_summary": meta.review_summary,
                "run_success": meta.run_success,
                "error_type": meta.error_type,
            },
        }
        payload = {"profile_update_str": json.dumps(update, ensure_ascii=False)}
        await self._write("PUT", self.weak_point_url(user_id, point.knowledge_id), payload, cancel_event)
