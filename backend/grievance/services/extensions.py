"""
Extension arbiter: the officer-requests / admin-decides sub-workflow.

    pending ──decide(approved)──▶ approved   (time_boundary += days_requested)
            ──decide(rejected)──▶ rejected   (complaint untouched)

Both operations run inside the parent complaint's mutation, so the request row,
the complaint change and the lifecycle event commit together or not at all.
The one-pending-per-complaint rule is checked under the complaint lock and
backed by the uq_extension_requests_one_pending partial index.
"""
import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from grievance.core.clock import Clock, system_clock
from grievance.core.config import Settings
from grievance.core.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from grievance.core.locks import ComplaintLocks, complaint_locks
from grievance.core.rbac import ROLE_ADMIN, ROLE_OFFICER, Actor, ensure_role
from grievance.models.extension import ExtensionRequest
from grievance.services.complaints import ComplaintService, as_uuid
from grievance.services.events import EventPublisher, EventType

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
OUTCOME_APPROVED = "approved"
OUTCOME_REJECTED = "rejected"
OUTCOMES = (OUTCOME_APPROVED, OUTCOME_REJECTED)


class ExtensionArbiter:
    def __init__(
        self,
        db: AsyncSession,
        *,
        publisher: EventPublisher | None = None,
        clock: Clock = system_clock,
        locks: ComplaintLocks = complaint_locks,
        settings: Settings | None = None,
        complaints: ComplaintService | None = None,
    ):
        self.db = db
        self.complaints = complaints or ComplaintService(
            db, publisher=publisher, clock=clock, locks=locks, settings=settings
        )
        self.clock = self.complaints.clock
        self.settings = self.complaints.settings

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def get(self, request_id: uuid.UUID | str) -> ExtensionRequest:
        request_id = as_uuid(request_id, "Extension request")
        result = await self.db.execute(
            select(ExtensionRequest)
            .where(ExtensionRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        request = result.scalars().first()
        if request is None:
            raise NotFound("Extension request", request_id)
        return request

    async def list_for_complaint(self, complaint_id: uuid.UUID | str) -> list[ExtensionRequest]:
        complaint = await self.complaints.get(complaint_id)
        result = await self.db.execute(
            select(ExtensionRequest)
            .where(ExtensionRequest.complaint_id == complaint.id)
            .order_by(ExtensionRequest.created_at, ExtensionRequest.id)
        )
        return list(result.scalars().all())

    async def _pending_for(self, complaint_id: uuid.UUID) -> list[ExtensionRequest]:
        """Oldest first; more than one entry is a data-integrity violation."""
        result = await self.db.execute(
            select(ExtensionRequest)
            .where(
                ExtensionRequest.complaint_id == complaint_id,
                ExtensionRequest.status == STATUS_PENDING,
            )
            .order_by(ExtensionRequest.created_at, ExtensionRequest.id)
        )
        return list(result.scalars().all())

    def _validate_days(self, days: Any) -> int:
        cap = self.settings.extension_max_days
        if isinstance(days, bool) or not isinstance(days, int):
            raise ValidationError("days_requested must be an integer")
        if not 1 <= days <= cap:
            raise ValidationError(f"days_requested must be between 1 and {cap}")
        return days

    # ------------------------------------------------------------------ #
    # request
    # ------------------------------------------------------------------ #

    async def request(
        self,
        complaint_id: uuid.UUID | str,
        days: int,
        reason: str | None,
        actor: Actor,
    ) -> ExtensionRequest:
        ensure_role(actor, ROLE_OFFICER, ROLE_ADMIN, action="request deadline extensions")
        days = self._validate_days(days)

        async with self.complaints.mutation(complaint_id) as complaint:
            if actor.is_officer and complaint.assigned_officer_id != actor.id:
                raise Forbidden("Only the assigned officer may request an extension")
            if complaint.is_complaint_closed:
                raise InvalidState("Closed complaints cannot be extended")
            if not complaint.is_officer_assigned:
                raise InvalidState("Complaint has no officer assigned and no deadline to extend")

            pending = await self._pending_for(complaint.id)
            if pending:
                raise Conflict(
                    f"Complaint {complaint.complaint_code} already has a pending "
                    f"extension request ({pending[0].id})"
                )

            now = self.clock.now()
            record = ExtensionRequest(
                id=uuid.uuid4(),
                complaint_id=complaint.id,
                requested_by=actor.id,
                requested_by_role=actor.role,
                days_requested=days,
                reason=reason,
                status=STATUS_PENDING,
                created_at=now,
                updated_at=now,
            )
            self.db.add(record)
            self.complaints.events.record(
                complaint,
                EventType.EXTENSION_REQUESTED,
                actor,
                {
                    "request_id": record.id,
                    "days_requested": days,
                    "reason": reason,
                    "current_time_boundary": complaint.time_boundary,
                    "current_deadline": complaint.deadline,
                },
            )
        logger.info(
            "Extension of %d days requested on complaint %s by %s",
            days,
            complaint.complaint_code,
            actor.id,
        )
        return record

    # ------------------------------------------------------------------ #
    # decide
    # ------------------------------------------------------------------ #

    async def decide(
        self,
        request_id: uuid.UUID | str,
        outcome: str,
        actor: Actor,
        notes: str | None = None,
    ) -> ExtensionRequest:
        ensure_role(actor, ROLE_ADMIN, action="decide extension requests")
        if outcome not in OUTCOMES:
            raise ValidationError(f"outcome must be one of {list(OUTCOMES)}")
        request = await self.get(request_id)

        async with self.complaints.mutation(request.complaint_id) as complaint:
            request = await self.get(request.id)
            if request.status != STATUS_PENDING:
                raise InvalidTransition(
                    f"Extension request {request.id} was already {request.status}"
                )

            pending = await self._pending_for(complaint.id)
            if len(pending) > 1:
                logger.error(
                    "Integrity violation: complaint %s has %d pending extension requests: %s",
                    complaint.complaint_code,
                    len(pending),
                    ", ".join(str(p.id) for p in pending),
                )
            if pending[0].id != request.id:
                raise Conflict(
                    f"Extension request {pending[0].id} is older and must be decided first"
                )

            old_boundary = new_boundary = complaint.time_boundary
            if outcome == OUTCOME_APPROVED:
                old_boundary, new_boundary = await self.complaints.extend_deadline(
                    complaint.id, request.days_requested
                )

            now = self.clock.now()
            request.status = outcome
            request.decided_by = actor.id
            request.decided_by_role = actor.role
            request.decided_at = now
            request.notes = notes
            request.updated_at = now
            self.complaints.events.record(
                complaint,
                EventType.EXTENSION_DECIDED,
                actor,
                {
                    "request_id": request.id,
                    "outcome": outcome,
                    "days_requested": request.days_requested,
                    "old_time_boundary": old_boundary,
                    "new_time_boundary": new_boundary,
                    "deadline": complaint.deadline,
                    "notes": notes,
                },
            )
        logger.info(
            "Extension request %s on complaint %s %s by %s",
            request.id,
            complaint.complaint_code,
            outcome,
            actor.id,
        )
        return request
