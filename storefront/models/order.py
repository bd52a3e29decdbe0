"""Order model (one row per confirmed purchase)."""
from sqlalchemy import (
    Column, String, Boolean, Numeric, DateTime, Enum, ForeignKey, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntegerPK
import enum

NOT_AVAILABLE = 'N/A'


class PaymentMethod(str, enum.Enum):
    """How the order is paid."""
    CARD = 'card'
    CASH_ON_DELIVERY = 'cash_on_delivery'


class Order(Base):
    """
    Persisted order.

    payment_external_id holds the checkout session id for card orders and is
    the idempotency key: the unique constraint is what guarantees a single
    order per session when the redirect confirmation and the webhook race.
    """

    __tablename__ = 'customer_order'
    __table_args__ = (
        CheckConstraint('NOT is_paid OR paid_at IS NOT NULL', name='ck_order_paid_at'),
        CheckConstraint('NOT is_delivered OR delivered_at IS NOT NULL', name='ck_order_delivered_at'),
        CheckConstraint('items_price >= 0 AND shipping_price >= 0 AND total_price >= 0', name='ck_order_amounts'),
    )

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    user_id = Column(BigIntegerPK, ForeignKey('app_user.id'), nullable=True, index=True)

    # Shipping address
    address_line = Column(String(255), nullable=False, default=NOT_AVAILABLE)
    city = Column(String(120), nullable=False, default=NOT_AVAILABLE)
    postal_code = Column(String(32), nullable=False, default=NOT_AVAILABLE)
    country = Column(String(64), nullable=False, default=NOT_AVAILABLE)

    payment_method = Column(Enum(PaymentMethod, name='payment_method'), nullable=False)

    # Amounts (discount already folded into items_price)
    items_price = Column(Numeric(10, 2), nullable=False, default=0)
    shipping_price = Column(Numeric(10, 2), nullable=False, default=0)
    total_price = Column(Numeric(10, 2), nullable=False, default=0)

    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    is_delivered = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    # Payment result
    payment_external_id = Column(String(255), unique=True, nullable=True, index=True)
    payment_status = Column(String(50), nullable=True)
    payer_email = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    # Relationships
    user = relationship('AppUser', back_populates='orders')
    items = relationship(
        'OrderItem',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderItem.position'
    )

    @property
    def is_guest(self):
        return self.user_id is None

    @property
    def shipping_address(self):
        return {
            'address': self.address_line,
            'city': self.city,
            'postalCode': self.postal_code,
            'country': self.country,
        }

    @property
    def short_reference(self):
        """Short order reference used in customer emails."""
        return f"{self.id:08d}"[-8:]

    @property
    def notification_email(self):
        """Owner email, falling back to the payer email for guest orders."""
        if self.user is not None and self.user.email:
            return self.user.email
        return self.payer_email or None

    def to_dict(self, include_user=False):
        """Convert to dictionary for JSON serialization."""
        data = {
            'id': self.id,
            'user': self.user_id,
            'items': [item.to_dict() for item in self.items],
            'shippingAddress': self.shipping_address,
            'paymentMethod': self.payment_method.value if self.payment_method else None,
            'itemsPrice': float(self.items_price or 0),
            'shippingPrice': float(self.shipping_price or 0),
            'totalPrice': float(self.total_price or 0),
            'isPaid': self.is_paid,
            'paidAt': self.paid_at.isoformat() if self.paid_at else None,
            'isDelivered': self.is_delivered,
            'deliveredAt': self.delivered_at.isoformat() if self.delivered_at else None,
            'paymentResult': {
                'id': self.payment_external_id,
                'status': self.payment_status,
                'email_address': self.payer_email,
            },
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }
        if include_user and self.user is not None:
            data['user'] = {
                'id': self.user.id,
                'name': self.user.display_name,
                'email': self.user.email,
            }
        return data

    def __repr__(self):
        return f"<Order(id={self.id}, total={self.total_price}, method={self.payment_method})>"
