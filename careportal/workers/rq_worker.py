# careportal/workers/rq_worker.py
import asyncio
import hashlib
import hmac
import json
import logging
import os
import smtplib
from email.message import EmailMessage
from typing import Any, Callable, Mapping

import redis
import requests
from rq import Queue, Worker

from careportal.core.config import settings
from careportal.core.errors import DependencyFailure
from careportal.core.logging import setup_logging
from careportal.db.models import Notification, NotificationTypeEnum
from careportal.db.session import AsyncSessionLocal, engine
from careportal.services import summaries
from careportal.services.summarizer import OpenAISummarizer

logger = logging.getLogger("worker.notifications")


# ---------- webhook ----------

def _sign(payload: Mapping[str, Any]) -> str | None:
    if not settings.webhook_secret:
        return None
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return hmac.new(settings.webhook_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _post(url: str | None, event_type: str, payload: Mapping[str, Any]) -> None:
    if not url:
        return
    headers = {"Content-Type": "application/json", "X-CarePortal-Event": event_type}
    sig = _sign(payload)
    if sig:
        headers["X-CarePortal-Signature"] = f"sha256={sig}"
    r = requests.post(url, json=payload, headers=headers, timeout=10)
    logger.info("webhook_sent", extra={"event_type": event_type, "status": r.status_code})


# ---------- email ----------

def send_mail_mock(to: str, subject: str, body: str) -> None:
    logger.info("SEND_MAIL (mock) to=%s subject=%s", to, subject, extra={"body_len": len(body)})


def send_mail(to: str, subject: str, body: str, html: str | None = None, reply_to: str | None = None) -> None:
    if not settings.smtp_host:
        send_mail_mock(to, subject, body)
        return
    msg = EmailMessage()
    msg["From"] = settings.mail_from
    msg["To"] = to
    msg["Subject"] = subject
    if reply_to:
        msg["Reply-To"] = reply_to
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
        smtp.starttls()
        if settings.smtp_user:
            smtp.login(settings.smtp_user, settings.smtp_password or "")
        smtp.send_message(msg)
    logger.info("mail_sent", extra={"to": to})


# ---------- handlers ----------

async def _in_session(fn):
    try:
        async with AsyncSessionLocal() as db:
            return await fn(db)
    finally:
        # each job runs in its own event loop; pooled connections cannot outlive it
        await engine.dispose()


async def _persist_notification(db, payload: Mapping[str, Any]) -> int:
    ticket = payload.get("ticket") or {}
    n = Notification(
        recipient_id=int(payload["recipient_id"]),
        type=NotificationTypeEnum(payload["kind"]),
        title=str(payload.get("title") or ""),
        message=str(payload.get("message") or ""),
        ticket_id=ticket.get("id"),
        related_principal_id=payload.get("actor_id"),
        metadata_=dict(payload.get("metadata") or {}),
    )
    db.add(n)
    await db.commit()
    return n.id


def on_ticket_notify(payload: Mapping[str, Any]) -> None:
    notification_id = asyncio.run(_in_session(lambda db: _persist_notification(db, payload)))
    logger.info(
        "notification_stored",
        extra={"notification_id": notification_id, "recipient_id": payload.get("recipient_id")},
    )
    _post(settings.webhook_url, "ticket.notify", payload)


def on_ticket_created(payload: Mapping[str, Any]) -> None:
    ticket = payload.get("ticket") or {}
    logger.info("ticket_created", extra={"ticket_id": ticket.get("id"), "ticket_number": ticket.get("ticket_number")})
    _post(settings.webhook_url, "ticket.created", payload)


async def _summarize(db, ticket_id: int) -> str | None:
    return await summaries.summarize_closed_ticket(db, ticket_id, OpenAISummarizer())


def on_ticket_closed(payload: Mapping[str, Any]) -> None:
    ticket_id = int(payload["ticket_id"])
    try:
        summary = asyncio.run(_in_session(lambda db: _summarize(db, ticket_id)))
    except DependencyFailure as e:
        # the batch endpoint picks up whatever is still missing
        logger.error("summary_failed ticket_id=%s: %s", ticket_id, e.detail)
        return
    logger.info("summary_done", extra={"ticket_id": ticket_id, "generated": summary is not None})


def on_email_send(payload: Mapping[str, Any]) -> None:
    send_mail(
        str(payload["to"]),
        str(payload.get("subject") or ""),
        str(payload.get("body") or ""),
        html=payload.get("html"),
        reply_to=payload.get("reply_to"),
    )


EVENT_HANDLERS: dict[str, Callable[[Mapping[str, Any]], None]] = {
    "ticket.notify": on_ticket_notify,
    "ticket.created": on_ticket_created,
    "ticket.closed": on_ticket_closed,
    "email.send": on_email_send,
}


def handle_event(event_type: str, payload: Mapping[str, Any] | None = None) -> None:
    handler = EVENT_HANDLERS.get(event_type)
    if not handler:
        logger.warning("unknown_event", extra={"event_type": event_type})
        return
    handler(payload or {})


def main() -> None:
    setup_logging(settings.log_level)
    logger.info("worker_starting", extra={"queue": settings.notifications_queue})
    conn = redis.from_url(settings.redis_url)
    queue = Queue(settings.notifications_queue, connection=conn)
    worker = Worker([queue], connection=conn, name=os.getenv("WORKER_NAME", "notifications-worker"))
    worker.work(logging_level=logging.INFO)


if __name__ == "__main__":
    main()
