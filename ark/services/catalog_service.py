"""Catalog Service: CRUD over deployable product definitions."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ark.errors import Conflict, InvalidArgument, NotFound
from ark.models.instance import Instance, InstanceStatus
from ark.models.product import Product
from ark.services.common import (
    normalize_environment,
    validate_job_name,
    validate_service_name,
    validate_slug,
)

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "name",
    "description",
    "release_tag",
    "deploy_jobs",
    "delete_job",
    "web_service",
    "web_port",
)


def normalize_deploy_jobs(raw: dict[str, str | None] | None) -> dict[str, str]:
    """Canonicalise environment keys and drop environments with no job."""
    jobs: dict[str, str] = {}
    for key, value in (raw or {}).items():
        job = (value or "").strip()
        if not job:
            continue
        env = normalize_environment(key)
        jobs[env.value] = validate_job_name(job, f"deploy job for {env.value}")
    return jobs


def _clean_name(value: str | None) -> str:
    name = (value or "").strip()
    if not name:
        raise InvalidArgument("name is required")
    if len(name) > 200:
        raise InvalidArgument("name must be at most 200 characters")
    return name


def _clean_delete_job(value: str | None) -> str:
    value = (value or "").strip()
    if not value:
        return ""
    return validate_job_name(value, "delete job")


def _clean_web_service(value: str | None) -> str | None:
    value = (value or "").strip()
    if not value:
        return None
    return validate_service_name(value)


def _clean_web_port(value: int | None) -> int:
    if value is None:
        return 80
    if not 1 <= int(value) <= 65535:
        raise InvalidArgument(f"web_port must be between 1 and 65535, got {value}")
    return int(value)


class CatalogService:
    def __init__(self, db: Session):
        self.db = db

    def list_products(self) -> list[Product]:
        return list(self.db.scalars(select(Product).order_by(Product.id)).all())

    def get_product(self, product_id: str) -> Product:
        product = self.db.get(Product, product_id)
        if not product:
            raise NotFound(f"Product {product_id!r} not found")
        return product

    def create_product(
        self,
        product_id: str,
        name: str,
        description: str | None = "",
        release_tag: str | None = None,
        deploy_jobs: dict[str, str | None] | None = None,
        delete_job: str | None = "",
        web_service: str | None = None,
        web_port: int | None = 80,
    ) -> Product:
        product_id = validate_slug(product_id)
        if self.db.get(Product, product_id):
            raise Conflict(f"Product {product_id!r} already exists")

        product = Product(
            id=product_id,
            name=_clean_name(name),
            description=(description or "").strip(),
            release_tag=(release_tag or "").strip() or None,
            deploy_jobs=normalize_deploy_jobs(deploy_jobs),
            delete_job=_clean_delete_job(delete_job),
            web_service=_clean_web_service(web_service),
            web_port=_clean_web_port(web_port),
        )
        self.db.add(product)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise Conflict(f"Product {product_id!r} already exists") from exc
        logger.info("Created product %s", product_id)
        return product

    def update_product(self, product_id: str, changes: dict[str, Any]) -> Product:
        product = self.get_product(product_id)
        new_id = changes.get("id")
        if new_id is not None and new_id != product.id:
            raise InvalidArgument("Product id cannot be changed")

        for field in _UPDATABLE_FIELDS:
            if field not in changes:
                continue
            value = changes[field]
            if field == "name":
                value = _clean_name(value)
            elif field == "description":
                value = (value or "").strip()
            elif field == "release_tag":
                value = (value or "").strip() or None
            elif field == "deploy_jobs":
                value = normalize_deploy_jobs(value)
            elif field == "delete_job":
                value = _clean_delete_job(value)
            elif field == "web_service":
                value = _clean_web_service(value)
            elif field == "web_port":
                value = _clean_web_port(value)
            setattr(product, field, value)

        self.db.flush()
        logger.info("Updated product %s", product_id)
        return product

    def count_live_instances(self, product_id: str) -> int:
        stmt = select(func.count(Instance.instance_id)).where(
            Instance.product_id == product_id,
            Instance.status != InstanceStatus.stopped,
        )
        return self.db.scalar(stmt) or 0

    def delete_product(self, product_id: str) -> None:
        product = self.get_product(product_id)
        live = self.count_live_instances(product_id)
        if live:
            raise Conflict(f"Product {product_id!r} has {live} live instance(s); delete them first")
        # stopped instances are history only and go with the product
        self.db.execute(
            delete(Instance).where(
                Instance.product_id == product_id,
                Instance.status == InstanceStatus.stopped,
            )
        )
        self.db.delete(product)
        self.db.flush()
        logger.info("Deleted product %s", product_id)
