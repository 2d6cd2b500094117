"""
Complaint lifecycle endpoints.

Thin adapters over ComplaintService: every rule (transitions, role gates, SLA
arithmetic) lives in the service, and its LifecycleError subclasses are
rendered by the handler registered in grievance.main.

Citizens may file complaints and read the ones they filed; listing and every
workflow action are for officers and admins.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from grievance.api.deps import get_complaint_service
from grievance.core.clock import Clock, get_clock
from grievance.core.db import get_db
from grievance.core.errors import Forbidden
from grievance.core.rbac import ROLE_ADMIN, ROLE_OFFICER, Actor, get_current_actor, require_role
from grievance.schemas.complaint import (
    AssignRequest,
    AttachmentCreate,
    AttachmentResponse,
    Category,
    CloseRequest,
    ComplaintCreate,
    ComplaintListResponse,
    ComplaintResponse,
    NoteCreate,
    NoteResponse,
    Priority,
    PriorityUpdate,
    Status,
    StatusUpdate,
)
from grievance.schemas.event import LifecycleEventResponse
from grievance.services.complaints import ComplaintService
from grievance.services.events import list_events

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/complaints", tags=["complaints"])


@router.post("", response_model=ComplaintResponse, status_code=status.HTTP_201_CREATED)
async def create_complaint(
    payload: ComplaintCreate,
    service: ComplaintService = Depends(get_complaint_service),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(get_current_actor),
) -> ComplaintResponse:
    """File a new complaint; it starts pending with the default time boundary."""
    complaint = await service.create(payload, actor)
    return ComplaintResponse.from_complaint(complaint, clock.now())


@router.get("", response_model=ComplaintListResponse)
async def list_complaints(
    status_filter: Status | None = Query(default=None, alias="status"),
    priority: Priority | None = None,
    category: Category | None = None,
    district_code: str | None = None,
    assigned_officer_id: uuid.UUID | None = None,
    overdue: bool = False,
    page: int = 1,
    page_size: int = 20,
    service: ComplaintService = Depends(get_complaint_service),
    clock: Clock = Depends(get_clock),
    _actor: Actor = Depends(require_role(ROLE_ADMIN, ROLE_OFFICER)),
) -> ComplaintListResponse:
    page = max(page, 1)
    page_size = min(max(page_size, 1), 100)
    complaints, total = await service.list(
        status=status_filter,
        priority=priority,
        category=category,
        district_code=district_code,
        assigned_officer_id=assigned_officer_id,
        overdue=overdue,
        page=page,
        page_size=page_size,
    )
    now = clock.now()
    return ComplaintListResponse(
        items=[ComplaintResponse.from_complaint(c, now) for c in complaints],
        total=total,
        page=page,
        page_size=page_size,
        pages=service.page_count(total, page_size),
    )


@router.get("/{complaint_ref}", response_model=ComplaintResponse)
async def get_complaint(
    complaint_ref: str,
    service: ComplaintService = Depends(get_complaint_service),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(get_current_actor),
) -> ComplaintResponse:
    """Fetch by internal id or public complaint code."""
    complaint = await service.get(complaint_ref)
    if actor.role not in (ROLE_ADMIN, ROLE_OFFICER) and complaint.created_by_user_id != actor.id:
        raise Forbidden("Citizens may only view complaints they filed")
    return ComplaintResponse.from_complaint(complaint, clock.now())


@router.post("/{complaint_id}/assign", response_model=ComplaintResponse)
async def assign_complaint(
    complaint_id: uuid.UUID,
    payload: AssignRequest,
    service: ComplaintService = Depends(get_complaint_service),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(get_current_actor),
) -> ComplaintResponse:
    complaint = await service.assign(complaint_id, payload.officer_id, actor)
    return ComplaintResponse.from_complaint(complaint, clock.now())


@router.post("/{complaint_id}/reassign", response_model=ComplaintResponse)
async def reassign_complaint(
    complaint_id: uuid.UUID,
    payload: AssignRequest,
    service: ComplaintService = Depends(get_complaint_service),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(get_current_actor),
) -> ComplaintResponse:
    """Hand the complaint to another officer; the SLA clock keeps running."""
    complaint = await service.reassign(complaint_id, payload.officer_id, actor)
    return ComplaintResponse.from_complaint(complaint, clock.now())


@router.post("/{complaint_id}/status", response_model=ComplaintResponse)
async def update_status(
    complaint_id: uuid.UUID,
    payload: StatusUpdate,
    service: ComplaintService = Depends(get_complaint_service),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(get_current_actor),
) -> ComplaintResponse:
    complaint = await service.set_status(complaint_id, payload.status, actor)
    return ComplaintResponse.from_complaint(complaint, clock.now())


@router.post("/{complaint_id}/priority", response_model=ComplaintResponse)
async def update_priority(
    complaint_id: uuid.UUID,
    payload: PriorityUpdate,
    service: ComplaintService = Depends(get_complaint_service),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(get_current_actor),
) -> ComplaintResponse:
    complaint = await service.change_priority(complaint_id, payload.priority, actor)
    return ComplaintResponse.from_complaint(complaint, clock.now())


@router.post("/{complaint_id}/close", response_model=ComplaintResponse)
async def close_complaint(
    complaint_id: uuid.UUID,
    payload: CloseRequest,
    service: ComplaintService = Depends(get_complaint_service),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(get_current_actor),
) -> ComplaintResponse:
    """Close a resolved or rejected complaint. A second call returns 409 ALREADY_CLOSED."""
    complaint = await service.close(complaint_id, payload, actor)
    return ComplaintResponse.from_complaint(complaint, clock.now())


@router.post(
    "/{complaint_id}/notes", response_model=NoteResponse, status_code=status.HTTP_201_CREATED
)
async def add_note(
    complaint_id: uuid.UUID,
    payload: NoteCreate,
    service: ComplaintService = Depends(get_complaint_service),
    actor: Actor = Depends(get_current_actor),
) -> NoteResponse:
    note = await service.add_note(complaint_id, payload, actor)
    return NoteResponse.model_validate(note)


@router.post(
    "/{complaint_id}/attachments",
    response_model=AttachmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_attachment(
    complaint_id: uuid.UUID,
    payload: AttachmentCreate,
    service: ComplaintService = Depends(get_complaint_service),
    actor: Actor = Depends(get_current_actor),
) -> AttachmentResponse:
    """Record a reference to a file already held by document storage."""
    attachment = await service.add_attachment(complaint_id, payload, actor)
    return AttachmentResponse.model_validate(attachment)


@router.get("/{complaint_id}/events", response_model=list[LifecycleEventResponse])
async def get_timeline(
    complaint_id: uuid.UUID,
    service: ComplaintService = Depends(get_complaint_service),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_role(ROLE_ADMIN, ROLE_OFFICER)),
) -> list[LifecycleEventResponse]:
    """Ordered lifecycle events for one complaint."""
    complaint = await service.get(complaint_id)
    events = await list_events(db, complaint.id)
    return [LifecycleEventResponse.model_validate(e) for e in events]
