from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ark.models.instance import Environment, InstanceStatus


class DeploymentCreate(BaseModel):
    product_id: str
    target_host: str
    environment: str
    ssh_user: str | None = None


class DeploymentCreated(BaseModel):
    instance_id: str
    build_id: str
    job_name: str
    url: str | None = None
    status: str
    target_host: str


class InstanceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID = Field(validation_alias="instance_id")
    product_id: str
    target_host: str
    device_id: str | None = None
    device_address: str | None = None
    environment: Environment
    status: InstanceStatus
    url: str | None = None
    job_name: str
    build_id: str | None = None
    delete_job_name: str | None = None
    delete_build_id: str | None = None
    ssh_user: str | None = None
    last_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    running_at: datetime | None = None


class InstanceList(BaseModel):
    instances: list[InstanceRead]
    total: int


class DeleteOutcome(BaseModel):
    message: str
    instance_id: str
    status: str
    delete_build_id: str | None = None


class InstanceLogs(BaseModel):
    instance_id: str
    product_id: str
    status: str
    logs: dict[str, str]


class BuildStatusRead(BaseModel):
    build_id: str
    status: str


class PendingBuild(BaseModel):
    id: int | None = None
    job_name: str | None = None
    why: str | None = None
    blocked: bool = False
    stuck: bool = False
    in_queue_since: int | None = None


class PendingBuildList(BaseModel):
    items: list[PendingBuild]
    total: int


class InstanceRegister(BaseModel):
    instance_id: str
    target_host: str
    target_port: int
    container_name: str | None = None
    web_port: str | None = None
    local_url: str | None = None
    friendly_url: str | None = None
