"""
Closed-ticket summaries: single (manual or post-closure) and batch.

``closed_summary`` is set once. The write is conditional on the column still
being NULL and the ticket still being closed, so concurrent generators cannot
overwrite each other.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from careportal.core.errors import InvalidState, NotFound
from careportal.db.models import Ticket, TicketComment, TicketEvent, TicketStatusEnum
from careportal.services.scope import AccessScope
from careportal.services.summarizer import Summarizer, format_ticket_for_prompt

log = logging.getLogger(__name__)


@dataclass
class BatchSummaryResult:
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


async def _prompt_for(db: AsyncSession, ticket: Ticket) -> str:
    comments = (
        await db.execute(
            select(TicketComment)
            .where(TicketComment.ticket_id == ticket.id, TicketComment.is_internal.is_(False))
            .order_by(TicketComment.created_at, TicketComment.id)
        )
    ).scalars().all()
    events = (
        await db.execute(
            select(TicketEvent)
            .where(TicketEvent.ticket_id == ticket.id)
            .order_by(TicketEvent.created_at, TicketEvent.id)
        )
    ).scalars().all()
    return format_ticket_for_prompt(ticket, comments, events)


async def _store(db: AsyncSession, ticket: Ticket, summary: str) -> str:
    res = await db.execute(
        update(Ticket)
        .where(
            Ticket.id == ticket.id,
            Ticket.closed_summary.is_(None),
            Ticket.status == TicketStatusEnum.closed,
        )
        .values(closed_summary=summary)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(ticket)
    if res.rowcount != 1:
        # another generator won the race; theirs is the summary
        log.info("Summary already stored", extra={"ticket_id": ticket.id})
    return ticket.closed_summary or summary


async def generate_summary(db: AsyncSession, ticket: Ticket, summarizer: Summarizer) -> str:
    """Raises SummaryGenerationError when the generator fails."""
    if ticket.closed_summary:
        return ticket.closed_summary
    prompt = await _prompt_for(db, ticket)
    summary = await run_in_threadpool(summarizer.summarize, prompt)
    return await _store(db, ticket, summary)


async def summarize_ticket(
    db: AsyncSession,
    scope: AccessScope,
    ticket_id: int,
    summarizer: Summarizer,
) -> str:
    scope.require_platform_admin(write=True)
    t = await db.get(Ticket, ticket_id)
    if t is None:
        raise NotFound("Ticket not found")
    if t.status != TicketStatusEnum.closed:
        raise InvalidState("Summary can only be generated for closed tickets")
    return await generate_summary(db, t, summarizer)


async def summarize_closed_ticket(db: AsyncSession, ticket_id: int, summarizer: Summarizer) -> Optional[str]:
    """Post-closure hook used by the worker. Quietly does nothing for tickets that are not closed."""
    t = await db.get(Ticket, ticket_id)
    if t is None:
        log.warning("Summary requested for missing ticket", extra={"ticket_id": ticket_id})
        return None
    if t.status != TicketStatusEnum.closed:
        log.info("Ticket not closed, skipping summary", extra={"ticket_id": ticket_id})
        return None
    return await generate_summary(db, t, summarizer)


async def generate_all_summaries(
    db: AsyncSession,
    scope: AccessScope,
    summarizer: Summarizer,
) -> BatchSummaryResult:
    """
    Walk every closed ticket once, sequentially. A failure on one ticket is
    recorded and the walk continues; each stored summary is committed on its
    own, so re-running after a partial failure only retries what is missing.
    """
    scope.require_platform_admin(write=True)
    result = BatchSummaryResult()

    rows = (
        await db.execute(
            select(Ticket.id, Ticket.ticket_number, Ticket.closed_summary)
            .where(Ticket.status == TicketStatusEnum.closed)
            .order_by(Ticket.id)
        )
    ).all()
    result.total = len(rows)

    for ticket_id, number, existing in rows:
        if existing:
            result.skipped += 1
            continue
        try:
            t = await db.get(Ticket, ticket_id)
            if t is None or t.status != TicketStatusEnum.closed:
                result.skipped += 1
                continue
            await generate_summary(db, t, summarizer)
            result.successful += 1
        except Exception as e:
            await db.rollback()
            log.exception("Summary generation failed", extra={"ticket_id": ticket_id})
            result.failed += 1
            result.errors.append({"ticket_id": ticket_id, "ticket_number": number, "error": str(e)})

    log.info(
        "Batch summary generation finished",
        extra={k: v for k, v in result.as_dict().items() if k != "errors"},
    )
    return result
