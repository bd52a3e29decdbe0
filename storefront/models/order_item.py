"""Order Item model."""
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from storefront.database import Base, BigIntegerPK


class OrderItem(Base):
    """Order Item (line of a persisted order)."""

    __tablename__ = 'order_item'

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    order_id = Column(BigIntegerPK, ForeignKey('customer_order.id'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    name = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    # Null when the processor could not give us a resolvable catalog reference
    product_id = Column(BigIntegerPK, ForeignKey('product.id'), nullable=True)
    image = Column(String(500), nullable=False, default='')

    # Relationships
    order = relationship('Order', back_populates='items')
    product = relationship('Product')

    def to_dict(self):
        data = {
            'name': self.name,
            'qty': self.quantity,
            'price': float(self.unit_price or 0),
            'image': self.image or '',
        }
        if self.product_id is not None:
            data['product'] = self.product_id
        return data

    def __repr__(self):
        return f"<OrderItem(id={self.id}, product_id={self.product_id}, qty={self.quantity})>"
