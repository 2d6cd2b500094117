"""
Complaint lifecycle state machine.

Status graph (monotone, no way back):

    pending ──assign──▶ in_progress ──set_status──▶ resolved | rejected

Closure is a separate, later act on an orthogonal axis: close() is only legal
once the status is resolved or rejected, and it can happen once.

SLA: deadline = assigned_time + time_boundary days.  It is derived on read,
never stored, so extensions and the deadline cannot drift apart.  Reassignment
keeps assigned_time: the SLA clock does not restart when the officer changes.

Every mutation runs under the complaint's lock (grievance.core.locks), in one
transaction together with the lifecycle event it emits, and publishes that
event only after commit.
"""
import logging
import math
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from grievance.core.clock import Clock, system_clock
from grievance.core.config import Settings, get_settings
from grievance.core.errors import (
    AlreadyClosed,
    Conflict,
    Forbidden,
    InvalidState,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from grievance.core.locks import ComplaintLocks, complaint_locks
from grievance.core.rbac import ROLE_ADMIN, ROLE_OFFICER, Actor, ensure_role
from grievance.models.complaint import Complaint, ComplaintAttachment, ComplaintNote
from grievance.models.sequence import ComplaintSequence
from grievance.models.user import User
from grievance.schemas.complaint import (
    AttachmentCreate,
    CloseRequest,
    ClosingDetails,
    ComplaintCreate,
    NoteCreate,
)
from grievance.services.events import EventEmitter, EventPublisher, EventType, get_publisher
from grievance.services.geography import GeographyService

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_RESOLVED = "resolved"
STATUS_REJECTED = "rejected"
STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_RESOLVED, STATUS_REJECTED)
CLOSABLE_STATUSES = frozenset({STATUS_RESOLVED, STATUS_REJECTED})

# Targets reachable through set_status(); assignment is the only way out of pending
_STATUS_TARGETS: dict[str, frozenset[str]] = {
    STATUS_IN_PROGRESS: CLOSABLE_STATUSES,
}

PRIORITIES = ("low", "medium", "high", "urgent")


def compute_deadline(assigned_time: datetime | None, time_boundary: int) -> datetime | None:
    if assigned_time is None:
        return None
    return assigned_time + timedelta(days=time_boundary)


def is_overdue_at(complaint: Complaint, now: datetime) -> bool:
    """True iff now is past the deadline and the complaint is still open."""
    if complaint.is_complaint_closed:
        return False
    deadline = compute_deadline(complaint.assigned_time, complaint.time_boundary)
    return deadline is not None and now > deadline


def _validate(model: type[BaseModel], payload: Any) -> Any:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {model.__name__}",
            errors=exc.errors(include_url=False, include_context=False),
        ) from exc


def as_uuid(value: Any, resource: str = "Complaint") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise NotFound(resource, value) from exc


class ComplaintService:
    def __init__(
        self,
        db: AsyncSession,
        *,
        publisher: EventPublisher | None = None,
        clock: Clock = system_clock,
        locks: ComplaintLocks = complaint_locks,
        settings: Settings | None = None,
    ):
        self.db = db
        self.clock = clock
        self.locks = locks
        self.settings = settings or get_settings()
        self.events = EventEmitter(db, publisher or get_publisher(), clock)
        self.geography = GeographyService(db)

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def get(self, ref: uuid.UUID | str) -> Complaint:
        """Look up by internal id or public complaint code."""
        if isinstance(ref, uuid.UUID):
            condition = Complaint.id == ref
        else:
            try:
                condition = Complaint.id == uuid.UUID(ref)
            except ValueError:
                condition = Complaint.complaint_code == ref
        result = await self.db.execute(
            select(Complaint).where(condition).execution_options(populate_existing=True)
        )
        complaint = result.scalars().first()
        if complaint is None:
            raise NotFound("Complaint", ref)
        return complaint

    async def list(
        self,
        *,
        status: str | None = None,
        priority: str | None = None,
        category: str | None = None,
        district_code: str | None = None,
        assigned_officer_id: uuid.UUID | None = None,
        overdue: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Complaint], int]:
        page = max(page, 1)
        page_size = min(max(page_size, 1), 100)

        conditions = []
        if status is not None:
            conditions.append(Complaint.status == status)
        if priority is not None:
            conditions.append(Complaint.priority == priority)
        if category is not None:
            conditions.append(Complaint.category == category)
        if district_code is not None:
            conditions.append(Complaint.district_code == district_code)
        if assigned_officer_id is not None:
            conditions.append(Complaint.assigned_officer_id == assigned_officer_id)

        if overdue:
            # Deadline is derived, so filter in Python and page the result
            conditions += [
                Complaint.is_complaint_closed.is_(False),
                Complaint.assigned_time.is_not(None),
            ]
            result = await self.db.execute(
                select(Complaint)
                .where(*conditions)
                .order_by(Complaint.created_at.desc(), Complaint.complaint_code.desc())
            )
            now = self.clock.now()
            matches = [c for c in result.scalars().all() if is_overdue_at(c, now)]
            start = (page - 1) * page_size
            return matches[start : start + page_size], len(matches)

        total = (
            await self.db.execute(select(func.count()).select_from(Complaint).where(*conditions))
        ).scalar_one()
        result = await self.db.execute(
            select(Complaint)
            .where(*conditions)
            .order_by(Complaint.created_at.desc(), Complaint.complaint_code.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    @staticmethod
    def page_count(total: int, page_size: int) -> int:
        return math.ceil(total / page_size) if total else 0

    async def is_overdue(self, complaint_id: uuid.UUID | str, now: datetime | None = None) -> bool:
        complaint = await self.get(complaint_id)
        return is_overdue_at(complaint, now or self.clock.now())

    # ------------------------------------------------------------------ #
    # Mutation plumbing
    # ------------------------------------------------------------------ #

    async def _rollback(self) -> None:
        self.events.discard()
        await self.db.rollback()

    async def _load_for_update(self, complaint_id: uuid.UUID) -> Complaint:
        result = await self.db.execute(
            select(Complaint)
            .where(Complaint.id == complaint_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        complaint = result.scalars().first()
        if complaint is None:
            raise NotFound("Complaint", complaint_id)
        return complaint

    @asynccontextmanager
    async def mutation(self, complaint_id: uuid.UUID | str) -> AsyncIterator[Complaint]:
        """
        Lock, load, yield, commit, publish.

        Any exception inside the block rolls back the mutation and its events.
        A version mismatch or constraint violation at flush means another writer
        won the race and is reported as Conflict.
        """
        complaint_id = as_uuid(complaint_id)
        async with self.locks.hold(complaint_id):
            try:
                complaint = await self._load_for_update(complaint_id)
                yield complaint
                await self.db.commit()
            except StaleDataError as exc:
                await self._rollback()
                raise Conflict(f"Complaint {complaint_id} was modified concurrently") from exc
            except IntegrityError as exc:
                await self._rollback()
                raise Conflict(f"Conflicting write on complaint {complaint_id}") from exc
            except Exception:
                await self._rollback()
                raise
            self.events.flush()

    async def _resolve_officer(self, officer_id: uuid.UUID | str) -> User:
        officer_id = as_uuid(officer_id, "Officer")
        result = await self.db.execute(select(User).where(User.id == officer_id))
        officer = result.scalars().first()
        if officer is None or officer.role != ROLE_OFFICER or not officer.is_active:
            raise NotFound("Officer", officer_id)
        return officer

    @staticmethod
    def _ensure_handler(actor: Actor, complaint: Complaint, action: str) -> None:
        """Admins, or the officer the complaint is assigned to."""
        ensure_role(actor, ROLE_ADMIN, ROLE_OFFICER, action=action)
        if actor.is_officer and complaint.assigned_officer_id != actor.id:
            raise Forbidden(f"Only the assigned officer may {action}")

    # ------------------------------------------------------------------ #
    # create
    # ------------------------------------------------------------------ #

    async def _next_complaint_code(self, day: date) -> str:
        seq = await self.db.get(
            ComplaintSequence, day, with_for_update=True, populate_existing=True
        )
        if seq is None:
            seq = ComplaintSequence(day=day, last_seq=0)
            self.db.add(seq)
        seq.last_seq += 1
        return f"{day:%d%m%Y}{self.settings.complaint_code_suffix}{seq.last_seq:03d}"

    async def _check_geography(self, data: ComplaintCreate) -> None:
        if data.subdistrict_code:
            area = await self.geography.get(data.subdistrict_code)
            if area is not None and area.parent_code != data.district_code:
                raise ValidationError(
                    f"Sub-district {data.subdistrict_code} is not in district {data.district_code}"
                )
        if data.village_code:
            area = await self.geography.get(data.village_code)
            parent = data.subdistrict_code or data.district_code
            if area is not None and data.subdistrict_code and area.parent_code != parent:
                raise ValidationError(
                    f"Village {data.village_code} is not in sub-district {parent}"
                )

    async def create(self, payload: ComplaintCreate | dict[str, Any], actor: Actor) -> Complaint:
        data = _validate(ComplaintCreate, payload)
        await self._check_geography(data)

        now = self.clock.now()
        fields = data.model_dump(exclude={"time_boundary", "priority"})
        try:
            complaint = Complaint(
                id=uuid.uuid4(),
                complaint_code=await self._next_complaint_code(now.date()),
                status=STATUS_PENDING,
                priority=data.priority,
                time_boundary=data.time_boundary or self.settings.default_time_boundary_days,
                is_extended=False,
                is_officer_assigned=False,
                is_complaint_closed=False,
                arrival_time=now,
                created_by_user_id=actor.id,
                event_seq=0,
                created_at=now,
                updated_at=now,
                **fields,
            )
            self.db.add(complaint)
            await self.db.flush()
            self.events.record(
                complaint,
                EventType.COMPLAINT_CREATED,
                actor,
                {
                    "complaint_code": complaint.complaint_code,
                    "title": complaint.title,
                    "category": complaint.category,
                    "priority": complaint.priority,
                    "district_code": complaint.district_code,
                    "time_boundary": complaint.time_boundary,
                    "status": STATUS_PENDING,
                },
            )
            await self.db.commit()
        except IntegrityError as exc:
            await self._rollback()
            raise Conflict("Complaint code collision; retry the request") from exc
        except Exception:
            await self._rollback()
            raise
        self.events.flush()
        logger.info(
            "Created complaint %s (%s, %s) in %s",
            complaint.complaint_code,
            complaint.category,
            complaint.priority,
            complaint.district_code,
        )
        return complaint

    # ------------------------------------------------------------------ #
    # assignment
    # ------------------------------------------------------------------ #

    async def assign(
        self, complaint_id: uuid.UUID | str, officer_id: uuid.UUID | str, actor: Actor
    ) -> Complaint:
        ensure_role(actor, ROLE_ADMIN, action="assign complaints")
        async with self.mutation(complaint_id) as complaint:
            if complaint.is_complaint_closed:
                raise InvalidTransition("Closed complaints cannot be assigned")
            if complaint.is_officer_assigned or complaint.status != STATUS_PENDING:
                raise InvalidTransition(
                    f"Complaint is already assigned (status={complaint.status}); use reassign"
                )
            officer = await self._resolve_officer(officer_id)

            now = self.clock.now()
            floor = complaint.arrival_time or complaint.created_at
            complaint.assigned_officer_id = officer.id
            complaint.is_officer_assigned = True
            complaint.assigned_time = max(now, floor) if floor else now
            complaint.status = STATUS_IN_PROGRESS
            self.events.record(
                complaint,
                EventType.COMPLAINT_ASSIGNED,
                actor,
                {
                    "officer_id": officer.id,
                    "officer_name": officer.full_name,
                    "old_status": STATUS_PENDING,
                    "new_status": STATUS_IN_PROGRESS,
                    "assigned_time": complaint.assigned_time,
                    "time_boundary": complaint.time_boundary,
                    "deadline": complaint.deadline,
                },
            )
        logger.info("Complaint %s assigned to officer %s", complaint.complaint_code, officer.id)
        return complaint

    async def reassign(
        self, complaint_id: uuid.UUID | str, new_officer_id: uuid.UUID | str, actor: Actor
    ) -> Complaint:
        ensure_role(actor, ROLE_ADMIN, action="reassign complaints")
        async with self.mutation(complaint_id) as complaint:
            if complaint.is_complaint_closed:
                raise InvalidTransition("Closed complaints cannot be reassigned")
            if complaint.status != STATUS_IN_PROGRESS:
                raise InvalidTransition(
                    f"Only in-progress complaints can be reassigned (status={complaint.status})"
                )
            officer = await self._resolve_officer(new_officer_id)
            previous = complaint.assigned_officer_id
            if previous == officer.id:
                raise InvalidTransition("Complaint is already assigned to this officer")

            complaint.assigned_officer_id = officer.id
            self.events.record(
                complaint,
                EventType.COMPLAINT_REASSIGNED,
                actor,
                {
                    "previous_officer_id": previous,
                    "new_officer_id": officer.id,
                    "new_officer_name": officer.full_name,
                    "assigned_time": complaint.assigned_time,
                },
            )
        logger.info(
            "Complaint %s reassigned from %s to %s", complaint.complaint_code, previous, officer.id
        )
        return complaint

    # ------------------------------------------------------------------ #
    # status / priority
    # ------------------------------------------------------------------ #

    async def set_status(
        self, complaint_id: uuid.UUID | str, new_status: str, actor: Actor
    ) -> Complaint:
        ensure_role(actor, ROLE_ADMIN, ROLE_OFFICER, action="change complaint status")
        async with self.mutation(complaint_id) as complaint:
            self._ensure_handler(actor, complaint, "change complaint status")
            old_status = complaint.status
            if complaint.is_complaint_closed:
                raise InvalidTransition("Closed complaints cannot change status")
            if new_status not in _STATUS_TARGETS.get(old_status, frozenset()):
                raise InvalidTransition(f"Cannot move complaint from {old_status} to {new_status}")

            complaint.status = new_status
            self.events.record(
                complaint,
                EventType.COMPLAINT_STATUS_CHANGED,
                actor,
                {"old_status": old_status, "new_status": new_status},
            )
        logger.info("Complaint %s status %s → %s", complaint.complaint_code, old_status, new_status)
        return complaint

    async def change_priority(
        self, complaint_id: uuid.UUID | str, priority: str, actor: Actor
    ) -> Complaint:
        ensure_role(actor, ROLE_ADMIN, action="change complaint priority")
        if priority not in PRIORITIES:
            raise ValidationError(f"priority must be one of {list(PRIORITIES)}")
        async with self.mutation(complaint_id) as complaint:
            if complaint.is_complaint_closed:
                raise InvalidState("Closed complaints cannot change priority")
            old_priority = complaint.priority
            if old_priority != priority:
                complaint.priority = priority
                self.events.record(
                    complaint,
                    EventType.COMPLAINT_PRIORITY_CHANGED,
                    actor,
                    {"old_priority": old_priority, "new_priority": priority},
                )
        return complaint

    # ------------------------------------------------------------------ #
    # closure
    # ------------------------------------------------------------------ #

    async def close(
        self,
        complaint_id: uuid.UUID | str,
        closing: CloseRequest | dict[str, Any],
        actor: Actor,
    ) -> Complaint:
        async with self.mutation(complaint_id) as complaint:
            # A repeated close reports AlreadyClosed whatever the payload or caller
            if complaint.is_complaint_closed:
                raise AlreadyClosed(f"Complaint {complaint.complaint_code} is already closed")
            self._ensure_handler(actor, complaint, "close this complaint")
            request = _validate(CloseRequest, closing)
            if complaint.status not in CLOSABLE_STATUSES:
                raise InvalidTransition(
                    f"Complaint must be resolved or rejected before closing (status={complaint.status})"
                )

            now = self.clock.now()
            details = ClosingDetails(
                **request.model_dump(),
                closed_at=now,
                closed_by_id=actor.id,
                closed_by_name=actor.name,
                closed_by_role=actor.role,
            )
            complaint.closing_details = details.model_dump(mode="json")
            complaint.is_complaint_closed = True
            complaint.closed_at = now
            self.events.record(
                complaint,
                EventType.COMPLAINT_CLOSED,
                actor,
                {
                    "status": complaint.status,
                    "remarks": request.remarks,
                    "proof_reference": request.proof_reference,
                    "attachment_count": len(request.attachments),
                    "closed_by_id": actor.id,
                },
            )
        logger.info("Complaint %s closed by %s", complaint.complaint_code, actor.id)
        return complaint

    # ------------------------------------------------------------------ #
    # SLA
    # ------------------------------------------------------------------ #

    async def extend_deadline(self, complaint_id: uuid.UUID | str, days: int) -> tuple[int, int]:
        """
        Grow the time boundary by *days*; returns (old, new).

        Only the extension arbiter calls this, inside its own mutation(): it
        neither locks, commits nor emits an event.
        """
        complaint = await self.db.get(Complaint, as_uuid(complaint_id))
        if complaint is None:
            raise NotFound("Complaint", complaint_id)
        if complaint.is_complaint_closed:
            raise InvalidState("Closed complaints cannot be extended")
        if days < 1:
            raise ValidationError("Extension must be at least one day")

        old = complaint.time_boundary
        complaint.time_boundary = old + days
        complaint.is_extended = True
        await self.db.flush()
        return old, complaint.time_boundary

    # ------------------------------------------------------------------ #
    # notes & attachments
    # ------------------------------------------------------------------ #

    async def add_note(
        self, complaint_id: uuid.UUID | str, note: NoteCreate | dict[str, Any], actor: Actor
    ) -> ComplaintNote:
        data = _validate(NoteCreate, note)
        ensure_role(actor, ROLE_ADMIN, ROLE_OFFICER, action="add notes")
        async with self.mutation(complaint_id) as complaint:
            self._ensure_handler(actor, complaint, "add notes to this complaint")
            if complaint.is_complaint_closed:
                raise InvalidState("Closed complaints cannot take new notes")
            record = ComplaintNote(
                id=uuid.uuid4(),
                complaint_id=complaint.id,
                note=data.note,
                author_id=actor.id,
                author_role=actor.role,
                author_name=actor.name,
                created_at=self.clock.now(),
            )
            self.db.add(record)
            self.events.record(
                complaint,
                EventType.NOTE_ADDED,
                actor,
                {"note_id": record.id, "excerpt": data.note[:120]},
            )
        return record

    async def add_attachment(
        self,
        complaint_id: uuid.UUID | str,
        attachment: AttachmentCreate | dict[str, Any],
        actor: Actor,
    ) -> ComplaintAttachment:
        data = _validate(AttachmentCreate, attachment)
        ensure_role(actor, ROLE_ADMIN, ROLE_OFFICER, action="attach documents")
        async with self.mutation(complaint_id) as complaint:
            self._ensure_handler(actor, complaint, "attach documents to this complaint")
            if complaint.is_complaint_closed:
                raise InvalidState("Closed complaints cannot take new attachments")
            record = ComplaintAttachment(
                id=uuid.uuid4(),
                complaint_id=complaint.id,
                storage_key=data.storage_key,
                file_name=data.file_name,
                content_type=data.content_type,
                file_size_bytes=data.file_size_bytes,
                uploaded_by_user_id=actor.id,
                uploaded_at=self.clock.now(),
            )
            self.db.add(record)
            self.events.record(
                complaint,
                EventType.ATTACHMENT_ADDED,
                actor,
                {
                    "attachment_id": record.id,
                    "file_name": data.file_name,
                    "content_type": data.content_type,
                },
            )
        return record
