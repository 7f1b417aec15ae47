from __future__ import annotations

from fastapi import APIRouter, Depends

from ark.api.deps import get_mesh_directory
from ark.schemas.devices import DeviceList, DeviceRead
from ark.services.mesh_directory import MeshDirectory

router = APIRouter(prefix="/tailscale", tags=["tailscale"])


@router.get("/devices", response_model=DeviceList)
def list_devices(mesh: MeshDirectory = Depends(get_mesh_directory)):
    listing = mesh.list_devices()
    return {
        "devices": listing.devices,
        "total": listing.total,
        "degraded": listing.degraded,
        "fetched_at": listing.fetched_at,
    }


@router.get("/devices/{device_id}", response_model=DeviceRead)
def get_device(device_id: str, mesh: MeshDirectory = Depends(get_mesh_directory)):
    return mesh.get_device(device_id)
