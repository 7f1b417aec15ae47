from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class DeviceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    hostname: str
    host: str
    addresses: list[str]
    os: str
    online: bool
    reachable: bool
    status: str
    last_seen: datetime | None = None


class DeviceList(BaseModel):
    devices: list[DeviceRead]
    total: int
    degraded: bool
    fetched_at: datetime | None = None
