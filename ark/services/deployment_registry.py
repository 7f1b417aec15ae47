"""
Deployment Registry: instance lifecycle driven by Jenkins builds on mesh devices.

Status flow::

    provisioning -> running -> success
         |            |
         v            v
       failed       failed   (verification timeout)

    provisioning|running|success|failed -> deleting -> stopped
                                              |
                                              v
                                     previous status (delete job failed)

Create inserts the row inside the request transaction, triggers the deploy
job and only then lets the caller commit, so no reader ever sees an instance
without a build id. The ``active_key`` unique column keeps a single live
instance per product/host/environment triple.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ark.config import settings
from ark.errors import ArkError, Conflict, FailedPrecondition, InvalidArgument, NotFound, Unavailable
from ark.metrics import DEPLOYMENTS_TRIGGERED, record_transition
from ark.models.instance import RECONCILABLE_STATUSES, Instance, InstanceStatus
from ark.models.product import Product
from ark.services.common import normalize_environment, parse_uuid
from ark.services.job_runner import JobRunner, JobStatus
from ark.services.mesh_directory import MeshDirectory, address_for
from ark.services.ssh_user_service import SSHUserService

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 2.0


def probe_url(url: str, timeout: float = PROBE_TIMEOUT_SECONDS) -> bool:
    """True when something answers on ``url`` without a server error."""
    try:
        resp = httpx.get(url, timeout=timeout, follow_redirects=False)
    except httpx.HTTPError:
        return False
    return resp.status_code < 500


def active_key(product_id: str, target_host: str, environment: str) -> str:
    return f"{product_id}:{target_host}:{environment}"


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class DeploymentRegistry:
    def __init__(
        self,
        db: Session,
        job_runner: JobRunner,
        mesh: MeshDirectory,
        probe: Callable[[str], bool] = probe_url,
    ):
        self.db = db
        self.job_runner = job_runner
        self.mesh = mesh
        self.probe = probe

    # ── reads ──────────────────────────────────────────────────────────

    def list_instances(self) -> list[Instance]:
        stmt = (
            select(Instance)
            .where(Instance.status != InstanceStatus.stopped)
            .order_by(Instance.created_at.desc())
        )
        return list(self.db.scalars(stmt).all())

    def get_instance(self, instance_id: str | UUID) -> Instance:
        uid = parse_uuid(instance_id)
        instance = self.db.get(Instance, uid) if uid else None
        if not instance or instance.status == InstanceStatus.stopped:
            raise NotFound(f"Instance {instance_id} not found")
        return instance

    def _get_for_update(self, instance_id: str | UUID) -> Instance:
        uid = parse_uuid(instance_id)
        instance = None
        if uid:
            stmt = select(Instance).where(Instance.instance_id == uid).with_for_update()
            instance = self.db.scalar(stmt)
        if not instance or instance.status == InstanceStatus.stopped:
            raise NotFound(f"Instance {instance_id} not found")
        return instance

    # ── create ─────────────────────────────────────────────────────────

    def create_instance(
        self,
        product_id: str,
        target_host: str,
        environment: str,
        ssh_user: str | None = None,
    ) -> dict:
        env = normalize_environment(environment)
        target_host = (target_host or "").strip()
        if not target_host:
            raise InvalidArgument("target_host is required")

        product = self.db.get(Product, (product_id or "").strip())
        if not product:
            raise NotFound(f"Product {product_id!r} not found")
        job_name = (product.deploy_jobs or {}).get(env.value, "").strip()
        if not job_name:
            raise InvalidArgument(f"No deploy job configured for product {product.id} in environment {env.value}")

        device = self.mesh.resolve(target_host)
        if not device.deployable:
            raise InvalidArgument(f"Host {target_host!r} is offline")
        address = address_for(device) or target_host

        resolved_user = (
            SSHUserService(self.db).resolve(ssh_user, address, target_host) or settings.default_ssh_user
        )

        instance = Instance(
            product_id=product.id,
            target_host=target_host,
            device_id=device.id or None,
            device_address=address,
            environment=env,
            status=InstanceStatus.provisioning,
            active_key=active_key(product.id, address, env.value),
            ssh_user=resolved_user,
            job_name=job_name,
        )
        self.db.add(instance)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise Conflict(
                f"An instance of {product.id} already exists on {target_host} for {env.value}; delete it first"
            ) from exc

        params = {
            "INSTANCE_ID": str(instance.instance_id),
            "PRODUCT_ID": product.id,
            "ENV": env.value.lower(),
            "TARGET_HOST": address,
            "SSH_USER": resolved_user,
        }
        if settings.ark_public_host:
            params["ARK_CALLBACK_URL"] = f"{settings.ark_public_host}/api/instances/register"
        if product.web_service:
            params["WEB_SERVICE"] = product.web_service
            params["WEB_PORT"] = str(product.web_port or 80)

        try:
            ref = self.job_runner.trigger(job_name, params)
        except ArkError:
            self.db.rollback()
            logger.warning("Deploy trigger for %s on %s failed; instance discarded", product.id, target_host)
            raise

        instance.build_id = str(ref)
        self.db.flush()
        DEPLOYMENTS_TRIGGERED.labels(environment=env.value).inc()
        logger.info(
            "Instance %s provisioning: %s on %s (%s) build %s",
            instance.instance_id,
            product.id,
            target_host,
            env.value,
            instance.build_id,
        )
        return {
            "instance_id": str(instance.instance_id),
            "build_id": instance.build_id,
            "job_name": job_name,
            "url": instance.url,
            "status": instance.status.value,
            "target_host": target_host,
        }

    # ── delete ─────────────────────────────────────────────────────────

    @staticmethod
    def _delete_outcome(instance: Instance, message: str) -> dict:
        return {
            "message": message,
            "instance_id": str(instance.instance_id),
            "status": instance.status.value,
            "delete_build_id": instance.delete_build_id,
        }

    def delete_instance(self, instance_id: str | UUID, force: bool = False) -> dict:
        instance = self._get_for_update(instance_id)

        if force:
            self._set_status(instance, InstanceStatus.stopped)
            self._release(instance)
            self.db.flush()
            logger.warning("Instance %s force-stopped without a delete job", instance.instance_id)
            return self._delete_outcome(instance, "Instance removed without running the delete job")

        if instance.status == InstanceStatus.deleting:
            return self._delete_outcome(instance, "Delete already in progress")

        product = self.db.get(Product, instance.product_id)
        delete_job = (product.delete_job if product else "") or ""
        if not delete_job.strip():
            raise FailedPrecondition(f"Product {instance.product_id} has no delete job configured")

        params = {
            "INSTANCE_ID": str(instance.instance_id),
            "PRODUCT_ID": instance.product_id,
            "ENV": instance.environment.value.lower(),
            "TARGET_HOST": instance.device_address or instance.target_host,
            "SSH_USER": instance.ssh_user or settings.default_ssh_user,
        }
        ref = self.job_runner.trigger(delete_job, params)

        instance.status_before_delete = instance.status
        instance.delete_job_name = delete_job
        instance.delete_build_id = str(ref)
        instance.last_error = None
        self._set_status(instance, InstanceStatus.deleting)
        self.db.flush()
        logger.info("Instance %s deleting via build %s", instance.instance_id, instance.delete_build_id)
        return self._delete_outcome(instance, "Delete job triggered")

    # ── callbacks ──────────────────────────────────────────────────────

    def register_callback(
        self,
        instance_id: str | UUID,
        target_host: str,
        target_port: int,
        local_url: str | None = None,
        friendly_url: str | None = None,
    ) -> dict:
        """Deploy jobs report where the service ended up listening.

        Reachability of ``upstream_url`` is left to the caller, after commit,
        so the row lock is not held across a network call.
        """
        target_host = (target_host or "").strip()
        if not target_host:
            raise InvalidArgument("target_host is required")
        if not 1 <= target_port <= 65535:
            raise InvalidArgument("invalid target_port")

        instance = self._get_for_update(instance_id)
        upstream = f"http://{target_host}:{target_port}/"
        instance.url = (local_url or "").strip() or (friendly_url or "").strip() or upstream
        if instance.status == InstanceStatus.provisioning:
            self._mark_running(instance)
        self.db.flush()
        return {
            "status": "ok",
            "instance_id": str(instance.instance_id),
            "url": instance.url,
            "upstream_url": upstream,
        }

    # ── logs ───────────────────────────────────────────────────────────

    def _read_logs(self, build_id: str | None, fallback_name: str | None) -> dict[str, str]:
        if not build_id:
            return {}
        try:
            return self.job_runner.get_logs(build_id)
        except ArkError as exc:
            return {fallback_name or build_id: f"Error fetching log: {exc.detail}"}

    def get_logs(self, instance_id: str | UUID) -> dict:
        instance = self.get_instance(instance_id)
        logs = self._read_logs(instance.build_id, instance.job_name)
        logs.update(self._read_logs(instance.delete_build_id, instance.delete_job_name))
        return {
            "instance_id": str(instance.instance_id),
            "product_id": instance.product_id,
            "status": instance.status.value,
            "logs": logs,
        }

    # ── reconciliation ─────────────────────────────────────────────────

    def _set_status(self, instance: Instance, status: InstanceStatus) -> None:
        if instance.status == status:
            return
        record_transition(instance.status.value, status.value)
        logger.info("Instance %s: %s -> %s", instance.instance_id, instance.status.value, status.value)
        instance.status = status

    def _release(self, instance: Instance) -> None:
        instance.active_key = None
        instance.status_before_delete = None
        instance.stopped_at = datetime.now(UTC)

    def _compute_url(self, instance: Instance, product: Product | None) -> str | None:
        if not product or not product.web_service:
            return None
        address = instance.device_address
        if not address:
            try:
                address = address_for(self.mesh.resolve(instance.target_host))
            except (NotFound, Unavailable) as exc:
                logger.warning("No address for instance %s yet: %s", instance.instance_id, exc.detail)
                return None
            if not address:
                return None
            instance.device_address = address
        return f"http://{address}:{product.web_port or 80}/"

    def _mark_running(self, instance: Instance) -> None:
        product = self.db.get(Product, instance.product_id)
        if not instance.url:
            instance.url = self._compute_url(instance, product)
        instance.running_at = datetime.now(UTC)
        instance.last_error = None
        self._set_status(instance, InstanceStatus.running)

    def _fail(self, instance: Instance, reason: str) -> None:
        instance.last_error = reason
        self._set_status(instance, InstanceStatus.failed)

    def _reconcile_provisioning(self, instance: Instance) -> None:
        try:
            status = self.job_runner.get_status(instance.build_id)
        except NotFound as exc:
            self._fail(instance, f"Deploy build lost: {exc.detail}")
            return
        if status.build_id != instance.build_id:
            instance.build_id = status.build_id
        if status.status == JobStatus.success:
            self._mark_running(instance)
        elif status.status == JobStatus.failed:
            self._fail(instance, f"Deploy build {status.build_id} failed: {status.detail or status.result}")

    def _reconcile_running(self, instance: Instance) -> None:
        product = self.db.get(Product, instance.product_id)
        if not product or not product.web_service:
            return
        if not instance.url:
            instance.url = self._compute_url(instance, product)
            if not instance.url:
                return
        if self.probe(instance.url):
            self._set_status(instance, InstanceStatus.success)
            return
        started = _as_utc(instance.running_at) or _as_utc(instance.created_at)
        if started and datetime.now(UTC) - started > timedelta(seconds=settings.verify_timeout_seconds):
            self._fail(instance, f"{instance.url} not reachable after {settings.verify_timeout_seconds}s")

    def _reconcile_deleting(self, instance: Instance) -> None:
        try:
            status = self.job_runner.get_status(instance.delete_build_id)
        except NotFound as exc:
            status = None
            reason = f"Delete build lost: {exc.detail}"
        else:
            if status.build_id != instance.delete_build_id:
                instance.delete_build_id = status.build_id
            reason = f"Delete build {status.build_id} failed: {status.detail or status.result}"

        if status is not None and status.status == JobStatus.success:
            self._set_status(instance, InstanceStatus.stopped)
            self._release(instance)
        elif status is None or status.status == JobStatus.failed:
            previous = instance.status_before_delete or InstanceStatus.failed
            instance.status_before_delete = None
            instance.last_error = reason
            self._set_status(instance, previous)

    def reconcile(self, instance: Instance) -> Instance:
        """Advance one instance from the job runner's view. Caller holds the row lock."""
        try:
            if instance.status == InstanceStatus.provisioning:
                self._reconcile_provisioning(instance)
            elif instance.status == InstanceStatus.running:
                self._reconcile_running(instance)
            elif instance.status == InstanceStatus.deleting:
                self._reconcile_deleting(instance)
        except Unavailable as exc:
            # transient; try again on the next pass
            logger.warning("Reconcile of %s deferred: %s", instance.instance_id, exc.detail)
        self.db.flush()
        return instance

    def reconcile_instance(self, instance_id: str | UUID) -> Instance:
        return self.reconcile(self._get_for_update(instance_id))

    def reconcile_all(self) -> dict:
        """Reconcile every open instance, committing after each one.

        Rows another worker holds (an in-flight delete, a parallel pass) are
        skipped and picked up next time.
        """
        stmt = select(Instance.instance_id).where(Instance.status.in_(RECONCILABLE_STATUSES))
        ids = list(self.db.scalars(stmt).all())
        results = {"total": len(ids), "reconciled": 0, "skipped": 0, "errors": 0}
        for uid in ids:
            locked = select(Instance).where(
                Instance.instance_id == uid,
                Instance.status.in_(RECONCILABLE_STATUSES),
            ).with_for_update(skip_locked=True)
            instance = self.db.scalar(locked)
            if instance is None:
                results["skipped"] += 1
                self.db.rollback()
                continue
            started = time.monotonic()
            try:
                self.reconcile(instance)
                self.db.commit()
                results["reconciled"] += 1
            except Exception:
                logger.exception("Reconcile of instance %s failed", uid)
                self.db.rollback()
                results["errors"] += 1
            logger.debug("Reconciled %s in %.2fs", uid, time.monotonic() - started)
        return results
