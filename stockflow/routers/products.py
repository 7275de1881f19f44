from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.id_utils import generate_id
from stockflow.core.permissions import Capability, require_capability
from stockflow.core.security_current import ActorContext
from stockflow.models.product import Product, ProductVariation
from stockflow.schemas.common import pagination_meta
from stockflow.schemas.product import ProductCreate, ProductListOut, ProductOut, VariationOut

router = APIRouter(prefix="/products", tags=["products"])


def _variation_out(variation: ProductVariation) -> VariationOut:
    return VariationOut(
        id=variation.id,
        product_id=variation.product_id,
        name=variation.name,
        sku=variation.sku,
        selling_price=variation.selling_price,
        created_at=variation.created_at,
    )


def _product_out(product: Product, variations: list[ProductVariation]) -> ProductOut:
    return ProductOut(
        id=product.id,
        name=product.name,
        sku=product.sku,
        active=product.active,
        created_at=product.created_at,
        variations=[_variation_out(v) for v in variations],
    )


@router.post(
    "",
    response_model=ProductOut,
    status_code=201,
    summary="Create product with variations",
    responses=error_responses(400, 401, 403, 409, 422, 500),
)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.PRODUCT_MANAGE)),
):
    skus = [v.sku.lower() for v in payload.variations if v.sku]
    if len(skus) != len(set(skus)):
        raise HTTPException(status_code=409, detail="Duplicate variation SKU in request")
    if skus:
        clash = db.execute(
            select(ProductVariation.id).where(
                ProductVariation.business_id == actor.business_id,
                func.lower(ProductVariation.sku).in_(skus),
            )
        ).first()
        if clash:
            raise HTTPException(status_code=409, detail="Variation SKU already exists")

    product = Product(
        id=generate_id(),
        business_id=actor.business_id,
        name=payload.name,
        sku=payload.sku,
        active=True,
    )
    db.add(product)
    variations = [
        ProductVariation(
            id=generate_id(),
            business_id=actor.business_id,
            product_id=product.id,
            name=v.name,
            sku=v.sku,
            selling_price=v.selling_price,
        )
        for v in payload.variations
    ]
    db.add_all(variations)
    db.commit()
    db.refresh(product)
    for variation in variations:
        db.refresh(variation)
    return _product_out(product, variations)


@router.get(
    "",
    response_model=ProductListOut,
    summary="List products",
    responses=error_responses(401, 403, 422, 500),
)
def list_products(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.INVENTORY_VIEW)),
):
    total = int(
        db.execute(select(func.count(Product.id)).where(Product.business_id == actor.business_id)).scalar_one()
    )
    products = db.execute(
        select(Product)
        .where(Product.business_id == actor.business_id)
        .order_by(Product.created_at.desc(), Product.name.asc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()

    by_product: dict[str, list[ProductVariation]] = {}
    if products:
        variations = db.execute(
            select(ProductVariation)
            .where(ProductVariation.product_id.in_([p.id for p in products]))
            .order_by(ProductVariation.created_at.asc(), ProductVariation.name.asc())
        ).scalars().all()
        for variation in variations:
            by_product.setdefault(variation.product_id, []).append(variation)

    items = [_product_out(p, by_product.get(p.id, [])) for p in products]
    return ProductListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )
