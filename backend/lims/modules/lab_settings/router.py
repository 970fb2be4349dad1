"""
Lab settings endpoints.
"""

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from lims.core.audit import AuditedSession
from lims.core.security import CurrentActor
from lims.modules.lab_settings.service import LabSettingsService

router = APIRouter()


class LabSettingsResponse(BaseModel):
    """Response model for lab settings."""

    lab_name: str
    lab_logo_url: str | None = None
    disclaimer_text: str | None = None
    coa_template_settings: dict[str, Any] | None = None


class LabSettingsUpdateRequest(BaseModel):
    """Request model for updating lab settings; omitted fields are unchanged."""

    lab_name: str | None = Field(default=None, min_length=1)
    lab_logo_url: str | None = None
    disclaimer_text: str | None = None
    coa_template_settings: dict[str, Any] | None = None
    reason: str | None = None


@router.get("", response_model=LabSettingsResponse)
async def get_lab_settings(
    db: AuditedSession,
    actor: CurrentActor,
) -> LabSettingsResponse:
    settings = await LabSettingsService(db, actor).get_settings()
    return LabSettingsResponse(**settings)


@router.put("", response_model=LabSettingsResponse)
async def update_lab_settings(
    request: LabSettingsUpdateRequest,
    db: AuditedSession,
    actor: CurrentActor,
) -> LabSettingsResponse:
    """
    Update lab settings.

    Requires ADMIN or LAB_MANAGER. The first update creates the settings row.
    """
    changes = request.model_dump(exclude_unset=True, exclude={"reason"})
    if "lab_name" in changes and changes["lab_name"] is None:
        del changes["lab_name"]
    service = LabSettingsService(db, actor)
    await service.update_settings(changes, reason=request.reason)
    return LabSettingsResponse(**await service.get_settings())
