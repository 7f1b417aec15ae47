"""
Reconcile Task: Celery beat task that advances open instances.
"""

import logging
import time

from celery import shared_task

from ark.db import SessionLocal
from ark.metrics import observe_job

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=0)
def reconcile_instances(self) -> dict:
    """Poll Jenkins and the deployed services for every non-terminal instance."""
    from ark.services.deployment_registry import DeploymentRegistry
    from ark.services.job_runner import build_job_runner
    from ark.services.mesh_directory import build_mesh_directory

    started = time.monotonic()
    status = "success"
    try:
        with SessionLocal() as db:
            registry = DeploymentRegistry(db, build_job_runner(), build_mesh_directory())
            results = registry.reconcile_all()
    except Exception:
        status = "error"
        raise
    finally:
        observe_job("reconcile_instances", status, time.monotonic() - started)

    if results["total"]:
        logger.info(
            "Reconcile pass: %s reconciled, %s skipped, %s errors (of %s)",
            results["reconciled"],
            results["skipped"],
            results["errors"],
            results["total"],
        )
    return results
