# careportal/services/notifications.py
"""
Best-effort side effects.

Everything that leaves the request (inbox notifications, emails, webhooks,
summary generation) is queued to RQ here and handled by
``careportal.workers.rq_worker``. Enqueue failures are logged and swallowed:
the triggering operation has already committed and must not fail because
Redis is unreachable.
"""
import logging
from html import escape
from typing import Any, Iterable, Mapping, Optional

import redis
from rq import Queue, Retry

from careportal.core.config import settings
from careportal.core.logging import current_request_id
from careportal.db.models import NotificationTypeEnum, Ticket

log = logging.getLogger(__name__)

_queue: Queue | None = None


def _get_queue() -> Queue:
    global _queue
    if _queue is None:
        _queue = Queue(settings.notifications_queue, connection=redis.from_url(settings.redis_url))
    return _queue


def enqueue(event_type: str, payload: Mapping[str, Any]) -> str | None:
    """
    Put an event on the queue for ``handle_event`` in the worker.
    Returns the job id, or None when enqueueing failed.
    """
    body = dict(payload)
    rid = current_request_id()
    if rid:
        body.setdefault("request_id", rid)
    try:
        job = _get_queue().enqueue(
            "careportal.workers.rq_worker.handle_event",
            event_type,
            body,
            job_timeout=60,
            retry=Retry(max=3, interval=[5, 15, 30]),
        )
        return getattr(job, "id", None)
    except Exception as e:
        log.exception("Failed to enqueue event '%s': %s", event_type, e)
        return None


def ticket_payload(t: Ticket) -> dict[str, Any]:
    return {
        "id": t.id,
        "ticket_number": t.ticket_number,
        "title": t.title,
        "org_id": t.org_id,
        "location_id": t.location_id,
        "status": getattr(t.status, "value", str(t.status)),
        "priority": getattr(t.priority, "value", str(t.priority)),
        "submitted_by": t.submitted_by,
        "assigned_to": t.assigned_to,
    }


def _recipients(ids: Iterable[Optional[int]], actor_id: int) -> list[int]:
    seen: list[int] = []
    for pid in ids:
        if pid is not None and pid != actor_id and pid not in seen:
            seen.append(pid)
    return seen


def notify(
    recipient_id: int,
    kind: NotificationTypeEnum,
    ticket: Ticket,
    *,
    title: str,
    message: str,
    actor_id: int | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> str | None:
    return enqueue("ticket.notify", {
        "recipient_id": recipient_id,
        "kind": kind.value,
        "ticket": ticket_payload(ticket),
        "title": title,
        "message": message,
        "actor_id": actor_id,
        "metadata": dict(metadata or {}),
    })


def notify_ticket_created(ticket: Ticket) -> None:
    enqueue("ticket.created", {"ticket": ticket_payload(ticket)})


def notify_ticket_assigned(ticket: Ticket, actor_id: int) -> None:
    if ticket.assigned_to is None or ticket.assigned_to == actor_id:
        return
    notify(
        ticket.assigned_to,
        NotificationTypeEnum.ticket_assigned,
        ticket,
        title=f"Ticket Assigned: {ticket.ticket_number}",
        message=f'Ticket "{ticket.title}" was assigned to you',
        actor_id=actor_id,
    )


def notify_status_changed(ticket: Ticket, old: str, new: str, actor_id: int) -> None:
    for pid in _recipients([ticket.submitted_by, ticket.assigned_to], actor_id):
        notify(
            pid,
            NotificationTypeEnum.ticket_status_changed,
            ticket,
            title=f"Status Updated: {ticket.ticket_number}",
            message=f'Status changed from {old} to {new} for "{ticket.title}"',
            actor_id=actor_id,
            metadata={"old_status": old, "new_status": new},
        )


def notify_priority_changed(ticket: Ticket, old: str, new: str, actor_id: int) -> None:
    for pid in _recipients([ticket.assigned_to], actor_id):
        notify(
            pid,
            NotificationTypeEnum.ticket_priority_changed,
            ticket,
            title=f"Priority Updated: {ticket.ticket_number}",
            message=f'Priority changed from {old} to {new} for "{ticket.title}"',
            actor_id=actor_id,
            metadata={"old_priority": old, "new_priority": new},
        )


def notify_comment(ticket: Ticket, preview: str, actor_id: int, *, is_internal: bool) -> None:
    recipients = [ticket.assigned_to] if is_internal else [ticket.submitted_by, ticket.assigned_to]
    text = preview[:100] + ("..." if len(preview) > 100 else "")
    for pid in _recipients(recipients, actor_id):
        notify(
            pid,
            NotificationTypeEnum.ticket_comment,
            ticket,
            title=f"New Comment: {ticket.ticket_number}",
            message=f'New comment on "{ticket.title}": {text}',
            actor_id=actor_id,
        )


def enqueue_summary(ticket_id: int) -> None:
    enqueue("ticket.closed", {"ticket_id": ticket_id})


def send_email(
    to: str,
    subject: str,
    body: str,
    *,
    html: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> str | None:
    """Fire-and-forget email; the caller never sees delivery failures."""
    payload: dict[str, Any] = {"to": to, "subject": subject, "body": body}
    if html:
        payload["html"] = html
    if reply_to:
        payload["reply_to"] = reply_to
    return enqueue("email.send", payload)


def send_welcome_email(to: str, *, org_name: str, temporary_password: str | None) -> str | None:
    lines = [
        f"You have been added to {org_name} on the Care Portal.",
        f"Sign in at {settings.app_url}/login with this email address.",
    ]
    if temporary_password:
        lines.append(f"Temporary password: {temporary_password}")
        lines.append("Please change it after your first sign-in.")
    return send_email(to, f"Welcome to {org_name}", "\n".join(lines))


REPORT_PERIODS = {"7": "Weekly", "30": "Monthly", "90": "Quarterly"}


def share_report(
    to: str,
    *,
    sender_name: str,
    reply_to: Optional[str],
    report_html: str,
    org_name: Optional[str] = None,
    date_range: str = "30",
    recipient_name: Optional[str] = None,
) -> str | None:
    period = REPORT_PERIODS.get(date_range, "Annual")
    title = f"{period} Service Report"
    if org_name and org_name != "All Organizations":
        title = f"{title} - {org_name}"
    greeting = f"Hello {recipient_name}," if recipient_name else "Hello,"
    body = "\n".join([
        greeting,
        f"{sender_name} shared the {title.lower()} with you.",
        "Open this email in an HTML-capable client to read it.",
    ])
    html = (
        f"<h1>{escape(title)}</h1>"
        f"<p>Prepared by {escape(sender_name)}</p>"
        f"<div>{report_html}</div>"
        "<p>This report was shared from the Care Portal. Reply to this email with any questions.</p>"
    )
    return send_email(to, f"{title} | Care Portal", body, html=html, reply_to=reply_to)
