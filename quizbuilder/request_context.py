"""Request context for builder handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

USER_ID_HEADER = "X-User-Id"


class RequestContext(BaseModel):
    """Typed request context shared across builder handlers."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    request: Annotated[Request | None, Field(default=None, exclude=True)]
    user_id: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> RequestContext:
        """Create RequestContext from the identity header set by the gateway."""
        user_id = request.headers.get(USER_ID_HEADER) or None
        return cls(request=request, user_id=user_id)


def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency; rejects requests with no resolved identity."""
    context = RequestContext.from_request(request)
    if not context.user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {USER_ID_HEADER} header",
        )
    return context
