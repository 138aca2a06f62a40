"""Creator plan API routes"""
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from eventhub.core.security import require_auth
from eventhub.db.session import get_db
from eventhub.schemas.products import CreateProductRequest
from eventhub.services.errors import ServiceError
from eventhub.services.product_service import create_creator_product, delete_creator_product

router = APIRouter(prefix="/api/stripe-products", tags=["products"])
logger = logging.getLogger(__name__)


def serialize_product(product) -> dict:
    return {
        "id": product.id,
        "stripe_product_id": product.stripe_product_id,
        "name": product.name,
        "description": product.description,
        "active": product.active,
        "is_deleted": product.is_deleted,
        "prices": [
            {
                "id": price.id,
                "stripe_price_id": price.stripe_price_id,
                "amount": str(price.amount),
                "currency": price.currency,
                "interval": price.interval,
                "active": price.active,
            }
            for price in product.prices
            if not price.is_deleted
        ],
    }


@router.post("", status_code=201)
def create_product(
    product_request: CreateProductRequest,
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Create a subscription plan for the caller's audience"""
    try:
        product = create_creator_product(
            user_id,
            product_request.name,
            product_request.amount,
            product_request.interval,
            db,
            description=product_request.description,
        )
    except ServiceError as e:
        raise HTTPException(e.status_code, e.message)
    return {"product": serialize_product(product)}


@router.delete("/{product_id}")
def delete_product(
    product_id: str,
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Delete a plan and cancel its active subscriptions at period end"""
    try:
        product = delete_creator_product(product_id, user_id, db)
    except ServiceError as e:
        raise HTTPException(e.status_code, e.message)
    return {"message": "Product deleted", "product_id": product.id}
