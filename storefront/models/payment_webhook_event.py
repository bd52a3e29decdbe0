"""Payment processor webhook event model for idempotency."""
from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from storefront.database import Base, BigIntegerPK


class WebhookEventStatus:
    RECEIVED = 'RECEIVED'
    PROCESSED = 'PROCESSED'
    IGNORED = 'IGNORED'
    FAILED = 'FAILED'


class PaymentWebhookEvent(Base):
    """Log of verified processor webhook events, deduplicated by event id."""
    __tablename__ = 'payment_webhook_event'

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    event_type = Column(String(100), nullable=False, index=True)
    resource_id = Column(String(255), index=True)
    payload_json = Column(JSON().with_variant(JSONB(), 'postgresql'), nullable=False)
    dedupe_key = Column(String(255), nullable=False, unique=True)
    received_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    processed_at = Column(DateTime(timezone=True))
    status = Column(String(20), nullable=False, default=WebhookEventStatus.RECEIVED, index=True)
    error = Column(String(500))

    def __repr__(self):
        return f"<PaymentWebhookEvent(type='{self.event_type}', resource_id='{self.resource_id}', status='{self.status}')>"
