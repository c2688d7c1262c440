"""
SECURITY: All queries MUST include owner_id filter.
Failure to do so will result in data leakage between tenants.
"""
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from playgram.models.webhook import DeliveryStatus, WebhookDelivery, WebhookSubscription
from playgram.services.signature_service import SecretCipher, generate_secret
from playgram.services.webhook_service import WEBHOOK_EVENTS


def validate_events(events: list[str]) -> list[str]:
    """Raise ValueError for names outside the event catalogue ("*" is allowed)."""
    unknown = [event for event in events if event != "*" and event not in WEBHOOK_EVENTS]
    if unknown:
        raise ValueError(f"Unknown webhook events: {', '.join(unknown)}")
    if not events:
        raise ValueError("At least one event is required")
    return list(dict.fromkeys(events))


class SubscriptionService:
    """Service for managing webhook subscriptions and reading their delivery log."""

    def __init__(self, db: AsyncSession, cipher: SecretCipher):
        self.db = db
        self.cipher = cipher

    async def list_for_owner(self, owner_id: str) -> list[tuple[WebhookSubscription, dict]]:
        """
        All subscriptions of an owner with their delivery counters.

        Returns:
            (subscription, stats) pairs, newest subscription first
        """
        stmt = (
            select(WebhookSubscription)
            .where(WebhookSubscription.owner_id == owner_id)
            .order_by(WebhookSubscription.created_at.desc())
        )
        subscriptions = (await self.db.execute(stmt)).scalars().all()
        if not subscriptions:
            return []

        stats_stmt = (
            select(
                WebhookDelivery.subscription_id,
                func.count(WebhookDelivery.id),
                func.sum(case((WebhookDelivery.status == DeliveryStatus.SUCCESS.value, 1), else_=0)),
                func.sum(case((WebhookDelivery.status == DeliveryStatus.FAILED.value, 1), else_=0)),
                func.max(WebhookDelivery.created_at),
            )
            .where(WebhookDelivery.subscription_id.in_([sub.id for sub in subscriptions]))
            .group_by(WebhookDelivery.subscription_id)
        )
        stats = {
            row[0]: {
                "total": row[1],
                "succeeded": int(row[2] or 0),
                "failed": int(row[3] or 0),
                "last_delivery_at": row[4].isoformat() if row[4] else None,
            }
            for row in (await self.db.execute(stats_stmt)).all()
        }
        empty = {"total": 0, "succeeded": 0, "failed": 0, "last_delivery_at": None}
        return [(sub, stats.get(sub.id, empty)) for sub in subscriptions]

    async def get(self, owner_id: str, subscription_id: str) -> WebhookSubscription | None:
        stmt = select(WebhookSubscription).where(
            WebhookSubscription.id == subscription_id,
            WebhookSubscription.owner_id == owner_id,
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def create(
        self,
        owner_id: str,
        url: str,
        events: list[str],
        custom_headers: dict[str, str] | None = None,
    ) -> tuple[WebhookSubscription, str]:
        """
        Create a subscription with a fresh signing secret.

        Returns:
            (subscription, plaintext secret). The secret is only stored encrypted.
        """
        secret = generate_secret()
        subscription = WebhookSubscription(
            owner_id=owner_id,
            url=url,
            encrypted_secret=self.cipher.encrypt(secret),
            events=validate_events(events),
            custom_headers=custom_headers,
        )
        self.db.add(subscription)
        await self.db.commit()
        await self.db.refresh(subscription)
        return subscription, secret

    async def update(self, subscription: WebhookSubscription, **changes) -> WebhookSubscription:
        """Apply the given field changes. Only custom_headers can be cleared with None."""
        for field in ("url", "events", "is_active"):
            if field in changes and changes[field] is None:
                raise ValueError(f"{field} cannot be null")
        if "events" in changes:
            changes["events"] = validate_events(changes["events"])
        for field, value in changes.items():
            setattr(subscription, field, value)
        await self.db.commit()
        await self.db.refresh(subscription)
        return subscription

    async def delete(self, subscription: WebhookSubscription) -> None:
        await self.db.delete(subscription)
        await self.db.commit()

    async def list_deliveries(
        self,
        owner_id: str,
        status: str | None = None,
        event: str | None = None,
        subscription_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[WebhookDelivery], int]:
        """Delivery attempts of the owner's subscriptions, newest first, with the total count."""
        filters = [WebhookSubscription.owner_id == owner_id]
        if status:
            filters.append(WebhookDelivery.status == status)
        if event:
            filters.append(WebhookDelivery.event == event)
        if subscription_id:
            filters.append(WebhookDelivery.subscription_id == subscription_id)

        base = select(WebhookDelivery).join(WebhookSubscription).where(*filters)
        total = (await self.db.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
        rows = (await self.db.execute(
            base.order_by(WebhookDelivery.created_at.desc()).limit(limit).offset(offset)
        )).scalars().all()
        return list(rows), total
