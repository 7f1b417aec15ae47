"""Products API: the deployable catalog."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ark.api.deps import get_db
from ark.schemas.products import ProductCreate, ProductList, ProductRead, ProductUpdate
from ark.services.catalog_service import CatalogService

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=ProductList)
def list_products(db: Session = Depends(get_db)):
    products = CatalogService(db).list_products()
    return {"products": products, "total": len(products)}


@router.get("/{product_id}", response_model=ProductRead)
def get_product(product_id: str, db: Session = Depends(get_db)):
    return CatalogService(db).get_product(product_id)


@router.post("", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
def create_product(payload: ProductCreate, db: Session = Depends(get_db)):
    product = CatalogService(db).create_product(
        payload.id,
        payload.name,
        description=payload.description,
        release_tag=payload.release_tag,
        deploy_jobs=payload.deploy_jobs,
        delete_job=payload.delete_job,
        web_service=payload.web_service,
        web_port=payload.web_port,
    )
    db.commit()
    db.refresh(product)
    return product


@router.put("/{product_id}", response_model=ProductRead)
def update_product(product_id: str, payload: ProductUpdate, db: Session = Depends(get_db)):
    product = CatalogService(db).update_product(product_id, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(product)
    return product


@router.delete("/{product_id}")
def delete_product(product_id: str, db: Session = Depends(get_db)):
    CatalogService(db).delete_product(product_id)
    db.commit()
    return {"message": "Product deleted", "id": product_id}
