"""Resume snapshot persistence routes."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from airesume.dependencies import get_current_user_id, get_store
from airesume.schemas.resume import ResumeResponse, ResumeSnapshotRequest
from airesume.services.backends import SQLAlchemyStore
from airesume.services.resume_service import ResumeService, get_resume_service

router = APIRouter(prefix="/resumes", tags=["resumes"])


@router.put("/{resume_id}", response_model=ResumeResponse)
async def persist_resume_snapshot(
    resume_id: UUID,
    payload: ResumeSnapshotRequest,
    user_id: Annotated[UUID | None, Depends(get_current_user_id)],
    store: Annotated[SQLAlchemyStore, Depends(get_store)],
    resume_service: Annotated[ResumeService, Depends(get_resume_service)],
) -> ResumeResponse | JSONResponse:
    """Upsert the editor's snapshot of a resume."""
    fields = payload.model_dump(exclude_unset=True)
    result = await resume_service.persist_snapshot(store, user_id, resume_id, fields)
    if result.error is not None or result.value is None:
        error = result.error
        return JSONResponse(
            status_code=error.status_code, content={"detail": error.detail, "code": error.code}
        )
    return ResumeResponse.from_record(result.value)
