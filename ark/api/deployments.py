"""
Deployments API: product instances from trigger to teardown.

Creates and deletes return as soon as Jenkins has accepted the job; progress
is picked up by the reconciler (or ``?refresh=true`` on a single instance).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from ark.api.deps import get_db, get_job_runner, get_registry
from ark.schemas.deployments import (
    BuildStatusRead,
    DeleteOutcome,
    DeploymentCreate,
    DeploymentCreated,
    InstanceList,
    InstanceLogs,
    InstanceRead,
    PendingBuildList,
)
from ark.services.deployment_registry import DeploymentRegistry
from ark.services.job_runner import JobRunner

router = APIRouter(prefix="/deployments", tags=["deployments"])


@router.get("", response_model=InstanceList)
def list_deployments(registry: DeploymentRegistry = Depends(get_registry)):
    instances = registry.list_instances()
    return {"instances": instances, "total": len(instances)}


@router.post("", response_model=DeploymentCreated, status_code=status.HTTP_202_ACCEPTED)
def create_deployment(
    payload: DeploymentCreate,
    db: Session = Depends(get_db),
    registry: DeploymentRegistry = Depends(get_registry),
):
    result = registry.create_instance(
        payload.product_id,
        payload.target_host,
        payload.environment,
        ssh_user=payload.ssh_user,
    )
    db.commit()
    return result


@router.get("/pending", response_model=PendingBuildList)
def pending_builds(job_runner: JobRunner = Depends(get_job_runner)):
    items = job_runner.pending_jobs()
    return {"items": items, "total": len(items)}


@router.get("/builds/{build_id:path}/status", response_model=BuildStatusRead)
def build_status(build_id: str, job_runner: JobRunner = Depends(get_job_runner)):
    result = job_runner.get_status(build_id)
    return {"build_id": result.build_id, "status": result.status.value}


@router.get("/builds/{build_id:path}/logs", response_class=PlainTextResponse)
def build_logs(build_id: str, job_runner: JobRunner = Depends(get_job_runner)):
    logs = job_runner.get_logs(build_id)
    return PlainTextResponse("".join(logs.values()))


@router.get("/{instance_id}", response_model=InstanceRead)
def get_deployment(
    instance_id: str,
    refresh: bool = Query(default=False),
    db: Session = Depends(get_db),
    registry: DeploymentRegistry = Depends(get_registry),
):
    if refresh:
        instance = registry.reconcile_instance(instance_id)
        db.commit()
        return instance
    return registry.get_instance(instance_id)


@router.delete("/{instance_id}", response_model=DeleteOutcome, status_code=status.HTTP_202_ACCEPTED)
def delete_deployment(
    instance_id: str,
    force: bool = Query(default=False),
    db: Session = Depends(get_db),
    registry: DeploymentRegistry = Depends(get_registry),
):
    outcome = registry.delete_instance(instance_id, force=force)
    db.commit()
    return outcome


@router.get("/{instance_id}/logs", response_model=InstanceLogs)
def deployment_logs(instance_id: str, registry: DeploymentRegistry = Depends(get_registry)):
    return registry.get_logs(instance_id)
