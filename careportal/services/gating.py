"""
Troubleshooting gate in front of ticket creation.

Two halves:

* ``GateState`` is the presentation-side state machine. The confirm control
  stays disabled until the procedure content has been scrolled to (near) the
  bottom, and nothing happens until the user explicitly confirms.
* The persisted acknowledgment (``record_acknowledgment`` /
  ``require_acknowledgment``) is the server-side precondition, so the gate
  cannot be skipped by a client that never renders it.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from careportal.core.config import settings
from careportal.core.errors import Forbidden, GatingRequired, NotFound, ValidationError
from careportal.db.models import (
    SOP,
    Hardware,
    HardwareSOP,
    Principal,
    SOPAcknowledgment,
    as_utc,
    utcnow,
)
from careportal.services.scope import AccessScope

log = logging.getLogger(__name__)


class GateOutcome(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    declined = "declined"


@dataclass
class GateState:
    """
    >>> gate = GateState(procedure_ids=[3, 7])
    >>> gate.can_confirm
    False
    >>> gate.on_scroll(scroll_height=900, scroll_top=480, client_height=400)
    >>> gate.confirm()
    True
    """

    procedure_ids: Sequence[int] = ()
    threshold_px: int = field(default_factory=lambda: settings.gating_scroll_threshold_px)
    scrolled_to_end: bool = False
    outcome: GateOutcome = GateOutcome.pending

    def on_scroll(self, *, scroll_height: float, scroll_top: float, client_height: float) -> None:
        # latches: scrolling back up does not lock the gate again
        if scroll_height - scroll_top - client_height <= self.threshold_px:
            self.scrolled_to_end = True

    @property
    def can_confirm(self) -> bool:
        return self.outcome == GateOutcome.pending and self.scrolled_to_end

    def confirm(self) -> bool:
        if not self.can_confirm:
            return False
        self.outcome = GateOutcome.confirmed
        return True

    def decline(self) -> None:
        if self.outcome == GateOutcome.pending:
            self.outcome = GateOutcome.declined

    @property
    def can_proceed(self) -> bool:
        return self.outcome == GateOutcome.confirmed


async def get_hardware(db: AsyncSession, hardware_id: int) -> Hardware:
    hw = await db.get(Hardware, hardware_id)
    if hw is None:
        raise NotFound("Hardware not found")
    return hw


async def procedures_for_hardware(db: AsyncSession, hardware_id: int) -> list[SOP]:
    """Active procedures linked to the hardware item, oldest first."""
    q = (
        select(SOP)
        .join(HardwareSOP, HardwareSOP.sop_id == SOP.id)
        .where(HardwareSOP.hardware_id == hardware_id, SOP.is_active.is_(True))
        .order_by(SOP.id)
    )
    return list((await db.execute(q)).scalars().all())


async def list_procedures(db: AsyncSession, scope: AccessScope, hardware_id: int) -> list[SOP]:
    hw = await get_hardware(db, hardware_id)
    if not scope.can_read_org(hw.org_id):
        raise NotFound("Hardware not found")
    return await procedures_for_hardware(db, hardware_id)


def _version_map(procedures: Iterable[SOP]) -> dict[str, int]:
    # JSON object keys are strings
    return {str(p.id): int(p.version) for p in procedures}


async def record_acknowledgment(
    db: AsyncSession,
    scope: AccessScope,
    principal: Principal,
    hardware_id: int,
    *,
    sop_ids: Sequence[int],
    scrolled_to_end: bool,
    confirmed: bool,
) -> SOPAcknowledgment:
    hw = await get_hardware(db, hardware_id)
    if not scope.can_access_location(hw.org_id, hw.location_id):
        raise Forbidden("No access to this location")

    if not (scrolled_to_end and confirmed):
        raise ValidationError("Procedures must be read to the end and confirmed")

    procedures = await procedures_for_hardware(db, hardware_id)
    if not procedures:
        raise ValidationError("No troubleshooting procedures are linked to this hardware")
    if set(sop_ids) != {p.id for p in procedures}:
        raise ValidationError("Acknowledged procedures do not match the current procedures")

    ack = SOPAcknowledgment(
        principal_id=principal.id,
        hardware_id=hardware_id,
        sop_versions=_version_map(procedures),
        acknowledged_at=utcnow(),
    )
    db.add(ack)
    await db.commit()
    await db.refresh(ack)
    log.info(
        "SOP acknowledgment recorded",
        extra={"principal_id": principal.id, "hardware_id": hardware_id, "ack_id": ack.id},
    )
    return ack


async def require_acknowledgment(
    db: AsyncSession,
    principal_id: int,
    hardware_id: int,
) -> Optional[SOPAcknowledgment]:
    """
    Precondition for filing a ticket against ``hardware_id``.

    Returns None when the hardware has no active procedures (nothing to gate),
    otherwise the acknowledgment that satisfies the gate. Raises
    GatingRequired when the latest acknowledgment is missing, older than the
    TTL, or was given for a different set or version of procedures.
    """
    procedures = await procedures_for_hardware(db, hardware_id)
    if not procedures:
        return None

    ack = (
        await db.execute(
            select(SOPAcknowledgment)
            .where(
                SOPAcknowledgment.principal_id == principal_id,
                SOPAcknowledgment.hardware_id == hardware_id,
            )
            .order_by(SOPAcknowledgment.acknowledged_at.desc(), SOPAcknowledgment.id.desc())
            .limit(1)
        )
    ).scalar_one_or_none()
    if ack is None:
        raise GatingRequired()

    if utcnow() - as_utc(ack.acknowledged_at) > timedelta(minutes=settings.sop_ack_ttl_minutes):
        raise GatingRequired("Procedure acknowledgment has expired, please review them again")

    if dict(ack.sop_versions or {}) != _version_map(procedures):
        raise GatingRequired("Procedures have changed since they were acknowledged")

    return ack
