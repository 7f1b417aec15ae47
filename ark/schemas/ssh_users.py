from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class SSHUserUpdate(BaseModel):
    ssh_user: str


class SSHUserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    host: str
    ssh_user: str


class SSHUserMap(BaseModel):
    map: dict[str, str]
    total: int
