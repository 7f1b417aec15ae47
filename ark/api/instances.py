"""Callback endpoint the deploy jobs hit once the service is up."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ark.api.deps import get_db, get_registry
from ark.schemas.deployments import InstanceRegister
from ark.services.deployment_registry import DeploymentRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/instances", tags=["instances"])


@router.post("/register")
def register_instance(
    payload: InstanceRegister,
    db: Session = Depends(get_db),
    registry: DeploymentRegistry = Depends(get_registry),
):
    result = registry.register_callback(
        payload.instance_id,
        payload.target_host,
        payload.target_port,
        local_url=payload.local_url,
        friendly_url=payload.friendly_url,
    )
    db.commit()
    result["upstream_reachable"] = registry.probe(result["upstream_url"])
    logger.info("Instance %s registered at %s", result["instance_id"], result["url"])
    return result
