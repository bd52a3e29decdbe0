"""Catalog lookups used by checkout to resolve product references."""
from typing import Optional

from sqlalchemy.orm import Session

from storefront.models import Product, is_valid_catalog_id


def get_product_by_id(session: Session, product_id) -> Optional[Product]:
    """
    Return the product for a catalog id, or None if the id is malformed or unknown.

    Cash on delivery treats None as an invalid line, so a well-formed id that
    is missing from the catalog is rejected too, not just a malformed one.
    """
    if not is_valid_catalog_id(product_id):
        return None
    return session.query(Product).filter(Product.id == int(str(product_id).strip())).first()


def resolve_product_ref(session: Session, raw_ref) -> Optional[int]:
    """Best-effort resolution of a product reference to a catalog product id."""
    product = get_product_by_id(session, raw_ref)
    return product.id if product else None
