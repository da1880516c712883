"""
Transition outbox: append side runs inside the engine's unit of work; the
claim/mark side is used by the audit relay with leases, so a crashed relay's
batch is picked up again once its lease runs out.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from swap_engine.models.targeting import TargetingEdge
from swap_engine.models.transition_event import DeliveryStatus, TransitionEvent


class TransitionOutbox:
    def __init__(self, session: AsyncSession):
        self.session = session

    def append(
        self,
        event_type: str,
        *,
        listing_id: Optional[int] = None,
        related_listing_id: Optional[int] = None,
        edge: Optional[TargetingEdge] = None,
        actor_id: Optional[int] = None,
        previous_status: Optional[str] = None,
        new_status: Optional[str] = None,
        reason: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
        recipients: Iterable[int] = (),
        now: Optional[datetime] = None,
    ) -> TransitionEvent:
        body = dict(payload or {})
        if edge is not None:
            listing_id = listing_id if listing_id is not None else edge.source_listing_id
            related_listing_id = related_listing_id if related_listing_id is not None else edge.target_listing_id
            body.setdefault("edge_id", edge.id)
            body.setdefault("source_listing_id", edge.source_listing_id)
            body.setdefault("target_listing_id", edge.target_listing_id)
        if reason:
            body.setdefault("reason", reason)

        event = TransitionEvent(
            event_type=event_type,
            edge_id=edge.id if edge is not None else None,
            listing_id=listing_id,
            related_listing_id=related_listing_id,
            actor_id=actor_id,
            previous_status=previous_status,
            new_status=new_status,
            reason=reason,
            payload=body,
            recipients=sorted({r for r in recipients if r is not None and r != actor_id}),
        )
        if now is not None:
            event.created_at = now
        self.session.add(event)
        return event

    async def history(self, listing_id: int, limit: int = 100) -> list[TransitionEvent]:
        result = await self.session.execute(
            select(TransitionEvent)
            .where(
                or_(
                    TransitionEvent.listing_id == listing_id,
                    TransitionEvent.related_listing_id == listing_id,
                )
            )
            .order_by(TransitionEvent.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def requeue_expired_leases(self, now: datetime) -> int:
        result = await self.session.execute(
            update(TransitionEvent)
            .where(
                TransitionEvent.delivery_status == DeliveryStatus.PROCESSING,
                TransitionEvent.lease_expires_at.is_not(None),
                TransitionEvent.lease_expires_at < now,
            )
            .values(
                delivery_status=DeliveryStatus.PENDING,
                lease_id=None,
                lease_expires_at=None,
                last_error="requeued: lease expired",
            )
        )
        return int(result.rowcount or 0)

    async def claim_due(self, now: datetime, batch_size: int, lease_seconds: int) -> tuple[str, list[TransitionEvent]]:
        lease_id = uuid.uuid4().hex

        stmt = (
            select(TransitionEvent.id)
            .where(
                TransitionEvent.delivery_status == DeliveryStatus.PENDING,
                or_(TransitionEvent.next_attempt_at.is_(None), TransitionEvent.next_attempt_at <= now),
            )
            .order_by(TransitionEvent.id.asc())
            .with_for_update(skip_locked=True)
            .limit(batch_size)
        )
        ids = list((await self.session.execute(stmt)).scalars().all())
        if not ids:
            return lease_id, []

        await self.session.execute(
            update(TransitionEvent)
            .where(TransitionEvent.id.in_(ids))
            .values(
                delivery_status=DeliveryStatus.PROCESSING,
                attempts=TransitionEvent.attempts + 1,
                lease_id=lease_id,
                lease_expires_at=now + timedelta(seconds=lease_seconds),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            select(TransitionEvent)
            .where(TransitionEvent.id.in_(ids))
            .order_by(TransitionEvent.id)
            .execution_options(populate_existing=True)
        )
        return lease_id, list(result.scalars().all())

    async def mark_sent(self, event_id: int, lease_id: str, ledger_ref: str, now: datetime) -> None:
        await self.session.execute(
            update(TransitionEvent)
            .where(TransitionEvent.id == event_id, TransitionEvent.lease_id == lease_id)
            .values(
                delivery_status=DeliveryStatus.SENT,
                ledger_ref=ledger_ref,
                delivered_at=now,
                last_error=None,
                lease_id=None,
                lease_expires_at=None,
            )
        )

    async def mark_failed(
        self,
        event_id: int,
        lease_id: str,
        error: str,
        next_attempt_at: Optional[datetime],
        dead: bool = False,
    ) -> None:
        await self.session.execute(
            update(TransitionEvent)
            .where(TransitionEvent.id == event_id, TransitionEvent.lease_id == lease_id)
            .values(
                delivery_status=DeliveryStatus.DEAD if dead else DeliveryStatus.PENDING,
                last_error=error,
                next_attempt_at=next_attempt_at,
                lease_id=None,
                lease_expires_at=None,
            )
        )

    async def mark_notified(self, event_id: int, now: datetime) -> None:
        await self.session.execute(
            update(TransitionEvent).where(TransitionEvent.id == event_id).values(notified_at=now)
        )
