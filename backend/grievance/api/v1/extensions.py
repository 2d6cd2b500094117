"""
Deadline-extension endpoints.

Officers (or admins) open a request against an assigned complaint; only
admins decide it.  Approval grows the complaint's time boundary in the same
transaction as the decision.
"""
import uuid

from fastapi import APIRouter, Depends, status

from grievance.api.deps import get_extension_arbiter
from grievance.core.rbac import ROLE_ADMIN, ROLE_OFFICER, Actor, get_current_actor, require_role
from grievance.schemas.extension import (
    ExtensionDecisionCreate,
    ExtensionRequestCreate,
    ExtensionRequestResponse,
)
from grievance.services.extensions import ExtensionArbiter

router = APIRouter(tags=["extensions"])


@router.post(
    "/complaints/{complaint_id}/extensions",
    response_model=ExtensionRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_extension(
    complaint_id: uuid.UUID,
    payload: ExtensionRequestCreate,
    arbiter: ExtensionArbiter = Depends(get_extension_arbiter),
    actor: Actor = Depends(get_current_actor),
) -> ExtensionRequestResponse:
    request = await arbiter.request(complaint_id, payload.days_requested, payload.reason, actor)
    return ExtensionRequestResponse.model_validate(request)


@router.get(
    "/complaints/{complaint_id}/extensions",
    response_model=list[ExtensionRequestResponse],
)
async def list_extensions(
    complaint_id: uuid.UUID,
    arbiter: ExtensionArbiter = Depends(get_extension_arbiter),
    _actor: Actor = Depends(require_role(ROLE_ADMIN, ROLE_OFFICER)),
) -> list[ExtensionRequestResponse]:
    requests = await arbiter.list_for_complaint(complaint_id)
    return [ExtensionRequestResponse.model_validate(r) for r in requests]


@router.get("/extensions/{request_id}", response_model=ExtensionRequestResponse)
async def get_extension(
    request_id: uuid.UUID,
    arbiter: ExtensionArbiter = Depends(get_extension_arbiter),
    _actor: Actor = Depends(require_role(ROLE_ADMIN, ROLE_OFFICER)),
) -> ExtensionRequestResponse:
    return ExtensionRequestResponse.model_validate(await arbiter.get(request_id))


@router.post("/extensions/{request_id}/decision", response_model=ExtensionRequestResponse)
async def decide_extension(
    request_id: uuid.UUID,
    payload: ExtensionDecisionCreate,
    arbiter: ExtensionArbiter = Depends(get_extension_arbiter),
    actor: Actor = Depends(get_current_actor),
) -> ExtensionRequestResponse:
    """Approve or reject a pending request (admin only)."""
    request = await arbiter.decide(request_id, payload.outcome, actor, payload.notes)
    return ExtensionRequestResponse.model_validate(request)
