# careportal/api/routes/tickets.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import Response

from careportal.core.logging import log_extra
from careportal.db.models import PriorityEnum as Priority, TicketStatusEnum as Status
from careportal.schemas.tickets import (
    AssignIn,
    BatchSummaryOut,
    CommentCreate,
    CommentOut,
    SatisfactionIn,
    StatusChangeIn,
    SummaryOut,
    TicketCreate,
    TicketEventOut,
    TicketOut,
    TicketUpdate,
)
from careportal.services import summaries, tickets as svc

from ..deps import DBDep, PrincipalDep, ScopeDep, SummarizerDep

router = APIRouter()
log = logging.getLogger(__name__)


@router.post("", response_model=TicketOut, status_code=status.HTTP_201_CREATED)
async def create_ticket(payload: TicketCreate, db: DBDep, current: PrincipalDep, scope: ScopeDep):
    return await svc.create_ticket(
        db, scope, current,
        location_id=payload.location_id,
        org_id=payload.org_id,
        hardware_id=payload.hardware_id,
        title=payload.title,
        description=payload.description,
        priority=payload.priority,
    )


@router.get("", response_model=list[TicketOut])
async def list_tickets(
    db: DBDep,
    scope: ScopeDep,
    status_: Status | None = Query(default=None, alias="status"),
    priority: Priority | None = None,
    location_id: int | None = None,
    hardware_id: int | None = None,
    assigned_to: int | None = None,
    search: str | None = Query(default=None, max_length=200),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    return await svc.list_tickets(
        db, scope,
        status=status_,
        priority=priority,
        location_id=location_id,
        hardware_id=hardware_id,
        assigned_to=assigned_to,
        search=search,
        limit=limit,
        offset=offset,
    )


# declared before /{ticket_id} so the path is not parsed as an id
@router.get("/generate-all-summaries", response_model=BatchSummaryOut)
async def generate_all_summaries(request: Request, db: DBDep, scope: ScopeDep, summarizer: SummarizerDep):
    result = await summaries.generate_all_summaries(db, scope, summarizer)
    log.info("generate-all-summaries done", extra={**log_extra(request), "failed": result.failed})
    return result.as_dict()


@router.get("/{ticket_id}", response_model=TicketOut)
async def get_ticket(ticket_id: int, db: DBDep, scope: ScopeDep):
    return await svc.get_ticket(db, scope, ticket_id)


@router.get("/{ticket_id}/events", response_model=list[TicketEventOut])
async def list_events(ticket_id: int, db: DBDep, scope: ScopeDep):
    return await svc.list_events(db, scope, ticket_id)


@router.put("/{ticket_id}", response_model=TicketOut)
async def edit_ticket(ticket_id: int, payload: TicketUpdate, db: DBDep, current: PrincipalDep, scope: ScopeDep):
    return await svc.edit_ticket(db, scope, current, ticket_id, payload.model_dump(exclude_unset=True))


@router.post("/{ticket_id}/status", response_model=TicketOut)
async def change_status(ticket_id: int, payload: StatusChangeIn, db: DBDep, current: PrincipalDep, scope: ScopeDep):
    return await svc.change_status(db, scope, current, ticket_id, payload.status, comment=payload.comment)


@router.post("/{ticket_id}/assign", response_model=TicketOut)
async def assign_ticket(ticket_id: int, payload: AssignIn, db: DBDep, current: PrincipalDep, scope: ScopeDep):
    return await svc.assign_ticket(db, scope, current, ticket_id, payload.assigned_to)


@router.post("/{ticket_id}/acknowledge", response_model=TicketOut)
async def acknowledge_ticket(ticket_id: int, db: DBDep, current: PrincipalDep, scope: ScopeDep):
    return await svc.acknowledge_ticket(db, scope, current, ticket_id)


@router.post("/{ticket_id}/satisfaction", response_model=TicketOut)
async def rate_satisfaction(
    ticket_id: int,
    payload: SatisfactionIn,
    db: DBDep,
    current: PrincipalDep,
    scope: ScopeDep,
):
    return await svc.rate_satisfaction(
        db, scope, current, ticket_id,
        rating=payload.rating,
        feedback=payload.feedback,
    )


@router.post("/{ticket_id}/summary", response_model=SummaryOut)
async def generate_summary(ticket_id: int, db: DBDep, scope: ScopeDep, summarizer: SummarizerDep):
    summary = await summaries.summarize_ticket(db, scope, ticket_id, summarizer)
    return {"ticket_id": ticket_id, "summary": summary}


# === HARD DELETE (platform admins only) ===
@router.delete("/{ticket_id}", status_code=204)
async def delete_ticket(ticket_id: int, db: DBDep, current: PrincipalDep, scope: ScopeDep):
    await svc.delete_ticket(db, scope, current, ticket_id)
    return Response(status_code=204)


# --- comments -----------------------------------------------------------------

@router.post("/{ticket_id}/comments", response_model=CommentOut, status_code=status.HTTP_201_CREATED)
async def add_comment(ticket_id: int, payload: CommentCreate, db: DBDep, current: PrincipalDep, scope: ScopeDep):
    return await svc.add_comment(
        db, scope, current, ticket_id,
        body=payload.body,
        is_internal=payload.is_internal,
    )


@router.get("/{ticket_id}/comments", response_model=list[CommentOut])
async def list_comments(ticket_id: int, db: DBDep, scope: ScopeDep):
    return await svc.list_comments(db, scope, ticket_id)
