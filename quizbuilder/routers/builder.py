"""Visual builder routes: editing sessions, structural edits, save and publish."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import Field

from ..autosave import SaveFailedError, SaveResult
from ..builder_store import Rejection
from ..document_helpers import (
    duplicate_block_ids,
    extract_intro_media_preview,
    extract_lead_gen_config,
    field_metadata,
    outcome_metadata,
    question_metadata,
)
from ..models.blocks import BLOCK_TYPES, CamelModel, create_block
from ..models.document import Outcome, Step, StepType, create_outcome, create_step
from ..request_context import RequestContext, get_request_context
from ..server import BuilderServer
from ..session import EditingSession
from ..storage import BuilderError, NotFoundError, OwnershipError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/builder/{quiz_id}", tags=["builder"])


class AddStepRequest(CamelModel):
    type: StepType
    insert_after_step_id: str | None = None


class MoveRequest(CamelModel):
    from_index: int
    to_index: int


class AddOutcomeRequest(CamelModel):
    name: str = ""


class AddBlockRequest(CamelModel):
    type: str
    index: int | None = None
    config: dict[str, Any] = Field(default_factory=dict)


class UpdateBlockRequest(CamelModel):
    config: dict[str, Any] | None = None
    enabled: bool | None = None


class ReplaceDocumentRequest(CamelModel):
    """Wholesale replacement, e.g. a generated quiz structure."""

    steps: list[Step] | None = None
    outcomes: list[Outcome] | None = None


def get_builder_server(request: Request) -> BuilderServer:
    return request.app.state.builder_server


def _http_error(exc: BuilderError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, OwnershipError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, SaveFailedError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _check(rejection: Rejection | None) -> None:
    if rejection is None:
        return
    code = (
        status.HTTP_404_NOT_FOUND
        if rejection is Rejection.NOT_FOUND
        else status.HTTP_409_CONFLICT
    )
    raise HTTPException(status_code=code, detail={"rejection": rejection.value})


async def get_session(
    quiz_id: str,
    context: RequestContext = Depends(get_request_context),
    server: BuilderServer = Depends(get_builder_server),
) -> EditingSession:
    try:
        return server.get_session(quiz_id, context)
    except BuilderError as exc:
        raise _http_error(exc) from exc


def _document_response(session: EditingSession) -> dict[str, Any]:
    store = session.store
    return {
        "quizId": session.quiz_id,
        "document": store.document.to_payload(),
        "activeStepId": store.active_step_id,
        "selectedOutcomeId": store.selected_outcome_id,
        "save": session.coordinator.status(),
    }


# -- Sessions ------------------------------------------------------------


@router.post("/session")
async def open_session(
    quiz_id: str,
    context: RequestContext = Depends(get_request_context),
    server: BuilderServer = Depends(get_builder_server),
) -> dict[str, Any]:
    """Open (or rejoin) the editing session, converting legacy quizzes."""
    try:
        session = await server.open_session(quiz_id, context)
    except BuilderError as exc:
        raise _http_error(exc) from exc
    return _document_response(session)


@router.delete("/session")
async def close_session(
    quiz_id: str,
    context: RequestContext = Depends(get_request_context),
    server: BuilderServer = Depends(get_builder_server),
) -> dict[str, str]:
    """Close the session. The final save is best effort and not awaited."""
    task = server.close_session(quiz_id, context)
    return {"status": "closed" if task is not None else "not-open"}


# -- Document ------------------------------------------------------------


@router.get("/document")
async def get_document(session: EditingSession = Depends(get_session)) -> dict[str, Any]:
    return _document_response(session)


@router.put("/document")
async def replace_document(
    request: ReplaceDocumentRequest,
    session: EditingSession = Depends(get_session),
) -> dict[str, Any]:
    if request.steps is not None:
        _check(session.store.set_steps(request.steps))
    if request.outcomes is not None:
        _check(session.store.set_outcomes(request.outcomes))
    return _document_response(session)


# -- Steps ---------------------------------------------------------------


@router.post("/steps")
async def add_step(
    request: AddStepRequest,
    session: EditingSession = Depends(get_session),
) -> dict[str, Any]:
    step = create_step(request.type, session.store.steps)
    _check(session.store.add_step(step, request.insert_after_step_id))
    return _document_response(session)


@router.post("/steps/move")
async def move_step(
    request: MoveRequest,
    session: EditingSession = Depends(get_session),
) -> dict[str, Any]:
    _check(session.store.move_step(request.from_index, request.to_index))
    return _document_response(session)


@router.delete("/steps/{step_id}")
async def delete_step(
    step_id: str,
    session: EditingSession = Depends(get_session),
) -> dict[str, Any]:
    _check(session.store.delete_step(step_id))
    return _document_response(session)


@router.post("/steps/{step_id}/blocks")
async def add_block(
    step_id: str,
    request: AddBlockRequest,
    session: EditingSession = Depends(get_session),
) -> dict[str, Any]:
    if request.type not in BLOCK_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown block type {request.type!r}",
        )
    block = create_block(request.type, config=request.config)
    _check(session.store.add_block(step_id, block, request.index))
    return _document_response(session)


@router.patch("/steps/{step_id}/blocks/{block_id}")
async def update_block(
    step_id: str,
    block_id: str,
    request: UpdateBlockRequest,
    session: EditingSession = Depends(get_session),
) -> dict[str, Any]:
    _check(session.store.update_block(step_id, block_id, request.config, request.enabled))
    return _document_response(session)


@router.delete("/steps/{step_id}/blocks/{block_id}")
async def delete_block(
    step_id: str,
    block_id: str,
    session: EditingSession = Depends(get_session),
) -> dict[str, Any]:
    _check(session.store.delete_block(step_id, block_id))
    return _document_response(session)


# -- Outcomes ------------------------------------------------------------


@router.post("/outcomes")
async def add_outcome(
    request: AddOutcomeRequest,
    session: EditingSession = Depends(get_session),
) -> dict[str, Any]:
    outcome = create_outcome(request.name, with_default_blocks=True)
    _check(session.store.add_outcome(outcome))
    return _document_response(session)


@router.delete("/outcomes/{outcome_id}")
async def delete_outcome(
    outcome_id: str,
    session: EditingSession = Depends(get_session),
) -> dict[str, Any]:
    _check(session.store.delete_outcome(outcome_id))
    return _document_response(session)


@router.patch("/outcomes/{outcome_id}/blocks/{block_id}")
async def update_outcome_block(
    outcome_id: str,
    block_id: str,
    request: UpdateBlockRequest,
    session: EditingSession = Depends(get_session),
) -> dict[str, Any]:
    _check(
        session.store.update_outcome_block(
            outcome_id, block_id, request.config, request.enabled
        )
    )
    return _document_response(session)


# -- Persistence ---------------------------------------------------------


@router.post("/save")
async def save(session: EditingSession = Depends(get_session)) -> dict[str, Any]:
    """Force a save and wait for it."""
    result = await session.coordinator.force_save()
    if result is SaveResult.FAILED:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(session.coordinator.last_error),
        )
    body: dict[str, Any] = {"status": result.value, "save": session.coordinator.status()}
    if result is SaveResult.LIMIT_REACHED:
        body["limit"] = session.coordinator.draft_limit
    return body


@router.post("/publish")
async def publish(session: EditingSession = Depends(get_session)) -> dict[str, Any]:
    try:
        result = await session.coordinator.publish()
    except BuilderError as exc:
        raise _http_error(exc) from exc
    return {"status": result.status, "limit": result.limit, "reason": result.reason}


@router.post("/unpublish")
async def unpublish(session: EditingSession = Depends(get_session)) -> dict[str, Any]:
    try:
        result = await session.coordinator.unpublish()
    except BuilderError as exc:
        raise _http_error(exc) from exc
    return {"status": result.status}


@router.get("/diagnostics")
async def diagnostics(session: EditingSession = Depends(get_session)) -> dict[str, Any]:
    """Advisory checks and read-side projections of the current document."""
    document = session.store.document
    lead_gen = extract_lead_gen_config(document)
    return {
        "brokenReferences": [
            {
                "stepId": ref.step_id,
                "blockId": ref.block_id,
                "optionId": ref.option_id,
                "outcomeId": ref.outcome_id,
            }
            for ref in session.store.broken_references()
        ],
        "duplicateBlockIds": duplicate_block_ids(document),
        "questions": question_metadata(document),
        "outcomes": outcome_metadata(document),
        "fields": field_metadata(document),
        "leadGen": lead_gen.model_dump(by_alias=True, exclude_none=True) if lead_gen else None,
        "mediaPreview": extract_intro_media_preview(document),
    }


@router.delete("")
async def delete_quiz(
    quiz_id: str,
    context: RequestContext = Depends(get_request_context),
    server: BuilderServer = Depends(get_builder_server),
) -> dict[str, str]:
    try:
        await server.delete_quiz(quiz_id, context)
    except BuilderError as exc:
        raise _http_error(exc) from exc
    return {"status": "deleted"}
