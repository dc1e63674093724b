"""
Ticket lifecycle engine.

State machine, set-once timestamps and the append-only event trail. Every
function takes the caller's ``AccessScope`` and authorizes against the
ticket row as stored, never against ids supplied in the request body.

Set-once fields are written with a conditional ``UPDATE ... WHERE field IS
NULL`` and the affected row count decides the outcome, so two concurrent
requests cannot both win.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Mapping, Optional, Set

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from careportal.core.config import settings
from careportal.core.errors import (
    AlreadyAcknowledged,
    AlreadyRated,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationError,
)
from careportal.core.logging import current_request_id
from careportal.db.models import (
    AuditLog,
    Hardware,
    Location,
    Membership,
    Notification,
    Organization,
    Principal,
    PriorityEnum,
    Ticket,
    TicketComment,
    TicketEvent,
    TicketEventTypeEnum,
    TicketStatusEnum,
    as_utc,
    utcnow,
)
from careportal.services import gating, notifications
from careportal.services.scope import AccessScope

log = logging.getLogger(__name__)

Status = TicketStatusEnum

# Allowed transitions (state machine)
ALLOWED_TRANSITIONS: dict[Status, Set[Status]] = {
    Status.open: {Status.in_progress, Status.resolved, Status.closed, Status.cancelled},
    Status.in_progress: {Status.open, Status.resolved, Status.closed, Status.cancelled},
    Status.resolved: {Status.open, Status.in_progress, Status.closed},
    Status.closed: set(),
    Status.cancelled: set(),
}

TERMINAL_STATUSES: frozenset[Status] = frozenset({Status.closed, Status.cancelled})

EDITABLE_FIELDS = ("title", "description", "priority")


def can_transition(src: Status, dst: Status) -> bool:
    return dst in ALLOWED_TRANSITIONS.get(src, set())


def _value(v: Any) -> Optional[str]:
    if v is None:
        return None
    return getattr(v, "value", str(v))


# ---- audit trail ----


async def append_event(
    db: AsyncSession,
    ticket_id: int,
    event_type: TicketEventTypeEnum,
    *,
    actor_id: Optional[int],
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
    comment: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> TicketEvent:
    """
    Insert one event. ``created_at`` is strictly increasing per ticket: when
    the clock has not moved past the latest event, the new one is placed one
    microsecond after it.
    """
    latest = (
        await db.execute(select(func.max(TicketEvent.created_at)).where(TicketEvent.ticket_id == ticket_id))
    ).scalar_one_or_none()
    now = utcnow()
    latest = as_utc(latest)
    if latest is not None and now <= latest:
        now = latest + timedelta(microseconds=1)

    ev = TicketEvent(
        ticket_id=ticket_id,
        actor_id=actor_id,
        event_type=event_type,
        old_value=old_value,
        new_value=new_value,
        comment=comment,
        metadata_=dict(metadata or {}),
        created_at=now,
    )
    db.add(ev)
    await db.flush()
    return ev


# ---- loading ----


async def get_ticket(db: AsyncSession, scope: AccessScope, ticket_id: int) -> Ticket:
    """Out-of-scope tickets are reported exactly like missing ones."""
    t = await db.get(Ticket, ticket_id)
    if t is None or not scope.can_access_location(t.org_id, t.location_id):
        raise NotFound("Ticket not found")
    return t


async def _load_for_write(db: AsyncSession, scope: AccessScope, ticket_id: int) -> Ticket:
    t = await db.get(Ticket, ticket_id)
    if t is None:
        raise NotFound("Ticket not found")
    if not scope.can_access_location(t.org_id, t.location_id):
        raise Forbidden("No access to this ticket")
    if not scope.can_write:
        raise Forbidden("Read-only platform admins cannot modify data")
    return t


async def list_tickets(
    db: AsyncSession,
    scope: AccessScope,
    *,
    status: Optional[Status] = None,
    priority: Optional[PriorityEnum] = None,
    location_id: Optional[int] = None,
    hardware_id: Optional[int] = None,
    assigned_to: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Ticket]:
    q = select(Ticket)
    scoped = scope.location_filter(Ticket.org_id, Ticket.location_id)
    if scoped is not None:
        q = q.where(scoped)
    if status:
        q = q.where(Ticket.status == status)
    if priority:
        q = q.where(Ticket.priority == priority)
    if location_id is not None:
        q = q.where(Ticket.location_id == location_id)
    if hardware_id is not None:
        q = q.where(Ticket.hardware_id == hardware_id)
    if assigned_to is not None:
        q = q.where(Ticket.assigned_to == assigned_to)
    if search:
        like = f"%{search.strip()}%"
        q = q.where(or_(
            Ticket.title.ilike(like),
            Ticket.description.ilike(like),
            Ticket.ticket_number.ilike(like),
        ))
    q = q.order_by(Ticket.created_at.desc(), Ticket.id.desc()).limit(limit).offset(offset)
    return list((await db.execute(q)).scalars().all())


async def list_events(db: AsyncSession, scope: AccessScope, ticket_id: int) -> list[TicketEvent]:
    await get_ticket(db, scope, ticket_id)
    q = (
        select(TicketEvent)
        .where(TicketEvent.ticket_id == ticket_id)
        .order_by(TicketEvent.created_at, TicketEvent.id)
    )
    return list((await db.execute(q)).scalars().all())


# ---- create ----


async def _next_ticket_number(db: AsyncSession, org_id: int) -> str:
    # the UPDATE row-locks the organization until commit, so numbers never repeat
    await db.execute(
        update(Organization)
        .where(Organization.id == org_id)
        .values(ticket_seq=Organization.ticket_seq + 1)
        .execution_options(synchronize_session=False)
    )
    seq = (
        await db.execute(select(Organization.ticket_seq).where(Organization.id == org_id))
    ).scalar_one()
    return f"{settings.ticket_number_prefix}-{seq:05d}"


async def create_ticket(
    db: AsyncSession,
    scope: AccessScope,
    principal: Principal,
    *,
    location_id: int,
    title: str,
    description: str,
    priority: PriorityEnum = PriorityEnum.normal,
    hardware_id: Optional[int] = None,
    org_id: Optional[int] = None,
) -> Ticket:
    location = await db.get(Location, location_id)
    if location is None:
        raise NotFound("Location not found")
    # the organization always comes from the stored location
    if org_id is not None and org_id != location.org_id:
        raise ValidationError("Location does not belong to the given organization")
    scope.require_location_write(location.org_id, location.id)

    ack = None
    if hardware_id is not None:
        hw = await db.get(Hardware, hardware_id)
        if hw is None or hw.location_id != location.id:
            raise ValidationError("Hardware does not belong to this location")
        ack = await gating.require_acknowledgment(db, principal.id, hw.id)

    t = Ticket(
        ticket_number=await _next_ticket_number(db, location.org_id),
        org_id=location.org_id,
        location_id=location.id,
        hardware_id=hardware_id,
        title=title,
        description=description,
        priority=priority,
        status=Status.open,
        submitted_by=principal.id,
        sop_acknowledgment_id=ack.id if ack else None,
        sop_acknowledged_at=ack.acknowledged_at if ack else None,
        acknowledged_sop_ids=sorted(int(k) for k in ack.sop_versions) if ack else [],
    )
    db.add(t)
    await db.flush()
    await append_event(
        db, t.id, TicketEventTypeEnum.created,
        actor_id=principal.id,
        new_value=Status.open.value,
    )
    await db.commit()
    await db.refresh(t)

    log.info("Ticket created", extra={"ticket_id": t.id, "ticket_number": t.ticket_number, "org_id": t.org_id})
    notifications.notify_ticket_created(t)
    return t


# ---- status ----


async def change_status(
    db: AsyncSession,
    scope: AccessScope,
    principal: Principal,
    ticket_id: int,
    new_status: Status,
    *,
    comment: Optional[str] = None,
) -> Ticket:
    t = await _load_for_write(db, scope, ticket_id)
    old = t.status

    if not scope.is_org_admin(t.org_id):
        # employees may only withdraw their own tickets
        if not (new_status == Status.cancelled and t.submitted_by == principal.id):
            raise Forbidden("Not allowed to change the status of this ticket")

    if not can_transition(old, new_status):
        raise InvalidState(f"Illegal status transition: {old.value} -> {new_status.value}")

    now = utcnow()
    values: dict[str, Any] = {"status": new_status}
    if old == Status.open and new_status == Status.in_progress:
        values["first_response_at"] = func.coalesce(Ticket.first_response_at, now)
    if new_status == Status.resolved:
        values["resolved_at"] = func.coalesce(Ticket.resolved_at, now)
    if new_status == Status.closed:
        values["closed_at"] = func.coalesce(Ticket.closed_at, now)

    res = await db.execute(
        update(Ticket)
        .where(Ticket.id == t.id, Ticket.status == old)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        await db.rollback()
        raise InvalidState("Ticket status was changed by someone else, reload and retry")

    await append_event(
        db, t.id, TicketEventTypeEnum.status_changed,
        actor_id=principal.id,
        old_value=old.value,
        new_value=new_status.value,
        comment=comment,
    )
    await db.commit()
    await db.refresh(t)

    log.info(
        "Ticket status changed",
        extra={"ticket_id": t.id, "from": old.value, "to": new_status.value, "actor_id": principal.id},
    )
    notifications.notify_status_changed(t, old.value, new_status.value, principal.id)
    if new_status == Status.closed:
        notifications.enqueue_summary(t.id)
    return t


# ---- assignment ----


async def _is_assignable(db: AsyncSession, principal_id: int, org_id: int) -> bool:
    p = await db.get(Principal, principal_id)
    if p is None or not p.is_active:
        return False
    if p.is_platform_admin:
        return True
    member = (
        await db.execute(
            select(Membership.id).where(Membership.principal_id == principal_id, Membership.org_id == org_id)
        )
    ).scalar_one_or_none()
    return member is not None


async def assign_ticket(
    db: AsyncSession,
    scope: AccessScope,
    principal: Principal,
    ticket_id: int,
    assigned_to: Optional[int],
) -> Ticket:
    t = await _load_for_write(db, scope, ticket_id)
    if t.status in TERMINAL_STATUSES:
        raise InvalidState(f"Cannot reassign a {t.status.value} ticket")
    old = t.assigned_to
    if old == assigned_to:
        return t
    if assigned_to is not None and not await _is_assignable(db, assigned_to, t.org_id):
        raise ValidationError("Assignee is not a member of this organization")

    current = Ticket.assigned_to.is_(None) if old is None else Ticket.assigned_to == old
    res = await db.execute(
        update(Ticket)
        .where(Ticket.id == t.id, current, Ticket.status.not_in(list(TERMINAL_STATUSES)))
        .values(assigned_to=assigned_to)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        await db.rollback()
        raise InvalidState("Ticket changed while being reassigned, reload and retry")

    await append_event(
        db, t.id, TicketEventTypeEnum.assigned,
        actor_id=principal.id,
        old_value=str(old) if old is not None else None,
        new_value=str(assigned_to) if assigned_to is not None else None,
    )
    await db.commit()
    await db.refresh(t)

    notifications.notify_ticket_assigned(t, principal.id)
    return t


# ---- acknowledge ----


async def acknowledge_ticket(
    db: AsyncSession,
    scope: AccessScope,
    principal: Principal,
    ticket_id: int,
) -> Ticket:
    t = await _load_for_write(db, scope, ticket_id)
    if not (scope.is_platform_admin or t.assigned_to == principal.id):
        raise Forbidden("Only the assigned technician or a platform admin can acknowledge this ticket")
    if t.status in TERMINAL_STATUSES:
        raise InvalidState(f"Cannot acknowledge a {t.status.value} ticket")
    if t.acknowledged_at is not None:
        raise AlreadyAcknowledged()

    now = utcnow()
    res = await db.execute(
        update(Ticket)
        .where(
            Ticket.id == t.id,
            Ticket.acknowledged_at.is_(None),
            Ticket.status.not_in(list(TERMINAL_STATUSES)),
        )
        .values(acknowledged_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        await db.rollback()
        current = await db.get(Ticket, t.id, populate_existing=True)
        if current is not None and current.status in TERMINAL_STATUSES:
            raise InvalidState(f"Cannot acknowledge a {current.status.value} ticket")
        raise AlreadyAcknowledged()

    await append_event(
        db, t.id, TicketEventTypeEnum.updated,
        actor_id=principal.id,
        new_value="acknowledged",
        metadata={"acknowledged_at": now.isoformat()},
    )
    await db.commit()
    await db.refresh(t)
    return t


# ---- edit ----


async def edit_ticket(
    db: AsyncSession,
    scope: AccessScope,
    principal: Principal,
    ticket_id: int,
    changes: Mapping[str, Any],
) -> Ticket:
    """Descriptive fields only; status and assignment have their own operations."""
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be edited here: {', '.join(sorted(unknown))}")

    t = await _load_for_write(db, scope, ticket_id)
    if not scope.is_org_admin(t.org_id):
        raise Forbidden("Only organization admins can edit tickets")
    if t.status in TERMINAL_STATUSES:
        raise InvalidState(f"Cannot edit a {t.status.value} ticket")

    diff: dict[str, dict[str, Optional[str]]] = {}
    values: dict[str, Any] = {}
    for name in EDITABLE_FIELDS:
        if name not in changes or changes[name] is None:
            continue
        new = changes[name]
        if new != getattr(t, name):
            diff[name] = {"old": _value(getattr(t, name)), "new": _value(new)}
            values[name] = new
    if not diff:
        return t

    res = await db.execute(
        update(Ticket)
        .where(Ticket.id == t.id, Ticket.status.not_in(list(TERMINAL_STATUSES)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        await db.rollback()
        raise InvalidState("Ticket was closed while being edited")

    await append_event(
        db, t.id, TicketEventTypeEnum.updated,
        actor_id=principal.id,
        metadata={"changes": diff},
    )
    await db.commit()
    await db.refresh(t)

    if "priority" in diff:
        notifications.notify_priority_changed(t, diff["priority"]["old"], diff["priority"]["new"], principal.id)
    return t


# ---- delete ----


async def delete_ticket(
    db: AsyncSession,
    scope: AccessScope,
    principal: Principal,
    ticket_id: int,
) -> None:
    """
    Hard delete. No event can be written for a row that no longer exists, so
    the audit_log table and a WARNING record carry the trace instead.
    """
    scope.require_platform_admin(write=True)
    t = await db.get(Ticket, ticket_id)
    if t is None:
        raise NotFound("Ticket not found")

    number, org_id, title = t.ticket_number, t.org_id, t.title
    await db.execute(delete(Notification).where(Notification.ticket_id == ticket_id))
    await db.execute(delete(TicketComment).where(TicketComment.ticket_id == ticket_id))
    await db.execute(delete(TicketEvent).where(TicketEvent.ticket_id == ticket_id))
    await db.execute(delete(Ticket).where(Ticket.id == ticket_id))
    db.add(AuditLog(
        actor_id=principal.id,
        action="ticket.delete",
        ticket_id=ticket_id,
        org_id=org_id,
        request_id=current_request_id(),
        payload={"ticket_number": number, "title": title},
    ))
    await db.commit()

    log.warning(
        "Ticket %s hard-deleted by platform admin %s",
        number, principal.email,
        extra={"ticket_id": ticket_id, "org_id": org_id, "actor_id": principal.id},
    )


# ---- comments ----


async def add_comment(
    db: AsyncSession,
    scope: AccessScope,
    principal: Principal,
    ticket_id: int,
    *,
    body: str,
    is_internal: bool = False,
) -> TicketComment:
    t = await _load_for_write(db, scope, ticket_id)
    if is_internal and not scope.is_org_admin(t.org_id):
        raise Forbidden("Only staff can add internal notes")

    c = TicketComment(ticket_id=t.id, author_id=principal.id, body=body, is_internal=is_internal)
    db.add(c)
    await db.flush()
    await append_event(
        db, t.id, TicketEventTypeEnum.comment_added,
        actor_id=principal.id,
        comment="[Internal Note]" if is_internal else body,
        metadata={"comment_id": c.id, "is_internal": is_internal},
    )
    await db.commit()
    await db.refresh(c)

    notifications.notify_comment(t, body, principal.id, is_internal=is_internal)
    return c


async def list_comments(db: AsyncSession, scope: AccessScope, ticket_id: int) -> list[TicketComment]:
    t = await get_ticket(db, scope, ticket_id)
    q = select(TicketComment).where(TicketComment.ticket_id == t.id)
    if not scope.is_org_admin(t.org_id):
        q = q.where(TicketComment.is_internal.is_(False))
    q = q.order_by(TicketComment.created_at, TicketComment.id)
    return list((await db.execute(q)).scalars().all())


# ---- satisfaction ----


async def rate_satisfaction(
    db: AsyncSession,
    scope: AccessScope,
    principal: Principal,
    ticket_id: int,
    *,
    rating: int,
    feedback: Optional[str] = None,
) -> Ticket:
    if not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")

    t = await db.get(Ticket, ticket_id)
    if t is None:
        raise NotFound("Ticket not found")
    # an unclosed ticket is rejected before any caller check
    if t.status != Status.closed:
        raise InvalidState("Can only rate closed tickets")
    t = await _load_for_write(db, scope, ticket_id)
    if t.submitted_by != principal.id:
        raise Forbidden("Only the ticket submitter can rate this ticket")
    if t.customer_satisfaction_rating is not None:
        raise AlreadyRated()

    res = await db.execute(
        update(Ticket)
        .where(
            Ticket.id == t.id,
            Ticket.customer_satisfaction_rating.is_(None),
            Ticket.status == Status.closed,
        )
        .values(customer_satisfaction_rating=rating, customer_satisfaction_feedback=feedback)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        await db.rollback()
        raise AlreadyRated()

    await append_event(
        db, t.id, TicketEventTypeEnum.updated,
        actor_id=principal.id,
        new_value=f"satisfaction_rated_{rating}",
        metadata={"rating": rating, "feedback": feedback},
    )
    await db.commit()
    await db.refresh(t)
    return t
