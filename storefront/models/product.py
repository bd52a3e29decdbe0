"""Product model."""
import re

from sqlalchemy import Column, String, Boolean, Numeric, DateTime, Integer, Text
from sqlalchemy.sql import func
from storefront.database import Base, BigIntegerPK

# Catalog ids are positive integers; anything else (mock ids like "e1") is rejected
CATALOG_ID_PATTERN = re.compile(r'^[1-9][0-9]{0,17}$')


def is_valid_catalog_id(value) -> bool:
    """Check whether a value is syntactically a catalog product id."""
    if value is None or isinstance(value, bool):
        return False
    return bool(CATALOG_ID_PATTERN.match(str(value).strip()))


class Product(Base):
    """Catalog product. Read-only from the order service's point of view."""

    __tablename__ = 'product'

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    brand = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    category = Column(String(100), nullable=True)
    stock = Column(Integer, nullable=False, default=0, server_default='0')
    image_path = Column(String(255), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}')>"
