from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ProductCreate(BaseModel):
    id: str
    name: str
    description: str | None = ""
    release_tag: str | None = None
    deploy_jobs: dict[str, str | None] | None = None
    delete_job: str | None = ""
    web_service: str | None = None
    web_port: int | None = 80


class ProductUpdate(BaseModel):
    id: str | None = None
    name: str | None = None
    description: str | None = None
    release_tag: str | None = None
    deploy_jobs: dict[str, str | None] | None = None
    delete_job: str | None = None
    web_service: str | None = None
    web_port: int | None = None


class ProductRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str = ""
    release_tag: str | None = None
    deploy_jobs: dict[str, str] = {}
    delete_job: str = ""
    web_service: str | None = None
    web_port: int = 80
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProductList(BaseModel):
    products: list[ProductRead]
    total: int
