# careportal/services/summarizer.py
"""
Closed-ticket summary generator.

Talks to the OpenAI chat completions endpoint over plain HTTP, trying each
configured model in turn. Blocking; route handlers call it through a thread
pool and the worker calls it directly.
"""
import logging
from typing import Iterable, Optional, Protocol, Sequence

import requests

from careportal.core.config import settings
from careportal.core.errors import SummaryGenerationError
from careportal.db.models import Ticket, TicketComment, TicketEvent, TicketEventTypeEnum

log = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert IT support agent summarizing a closed support ticket.\n\n"
    "Write a professional, concise summary (2-4 sentences) that:\n"
    "1. Clearly identifies the technical problem that was reported\n"
    "2. Describes the resolution steps taken by the support team\n"
    "3. Confirms the issue is resolved and the system is operational\n\n"
    "Write from the perspective of the support team speaking to the customer. "
    "Be specific about what was wrong and how it was fixed; avoid vague phrases "
    'like "the issue was resolved".'
)


class Summarizer(Protocol):
    def summarize(self, ticket_text: str) -> str: ...


def format_ticket_for_prompt(
    ticket: Ticket,
    comments: Iterable[TicketComment] = (),
    events: Iterable[TicketEvent] = (),
) -> str:
    """Title, description, public comments and status history. Internal notes never leave."""
    out = [f"Ticket Title: {ticket.title}", "", f"Description: {ticket.description}", ""]

    public = [c for c in comments if not c.is_internal]
    if public:
        out.append("Comments:")
        out.extend(f"{i}. {c.body}" for i, c in enumerate(public, start=1))
        out.append("")

    changes = [e for e in events if e.event_type == TicketEventTypeEnum.status_changed]
    if changes:
        out.append("Status History:")
        out.extend(f"- {e.old_value or 'N/A'} -> {e.new_value or 'N/A'}" for e in changes)

    return "\n".join(out).strip() + "\n"


class OpenAISummarizer:
    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        models: Optional[Sequence[str]] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_tokens: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.models = list(models or settings.openai_models)
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self.timeout = timeout or settings.summary_timeout_seconds
        self.max_tokens = max_tokens or settings.summary_max_tokens
        self.session = session or requests.Session()

    def summarize(self, ticket_text: str) -> str:
        if not self.api_key:
            raise SummaryGenerationError("OPENAI_API_KEY is not configured")

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": ticket_text},
        ]
        last_error = "no models configured"
        for model in self.models:
            try:
                r = self.session.post(
                    f"{self.base_url}/chat/completions",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "model": model,
                        "messages": messages,
                        "max_tokens": self.max_tokens,
                        "temperature": 0.7,
                    },
                    timeout=self.timeout,
                )
            except requests.Timeout:
                # a slow upstream will be slow for every model
                log.error("OpenAI timeout", extra={"model": model})
                raise SummaryGenerationError("Summary generation timed out")
            except requests.RequestException as e:
                log.error("OpenAI request failed: %s", e, extra={"model": model})
                last_error = str(e)
                continue

            if r.status_code == 429:
                log.error("OpenAI rate limit exceeded", extra={"model": model})
                raise SummaryGenerationError("Summary generation rate limited")
            if r.status_code >= 400:
                log.warning("OpenAI model %s unavailable (%s), trying next", model, r.status_code)
                last_error = f"{model}: HTTP {r.status_code}"
                continue

            try:
                content = r.json()["choices"][0]["message"]["content"]
            except (ValueError, KeyError, IndexError, TypeError):
                last_error = f"{model}: malformed response"
                continue
            if content and content.strip():
                log.info("Summary generated", extra={"model": model})
                return content.strip()
            last_error = f"{model}: empty response"

        raise SummaryGenerationError(f"Failed to generate summary ({last_error})")
