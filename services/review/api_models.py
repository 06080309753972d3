from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class ReviewRequest(BaseModel):
    code: Optional[Any] = None
    mode: Optional[Any] = None
    runResult: Optional[Any] = None
    roundId: Optional[Any] = None
