"""Job Runner adapter.

The registry only talks to a :class:`JobRunner`; :class:`JenkinsJobRunner`
is the production implementation. Build ids are opaque strings of the form
``<job>#<number>`` for started builds and ``<job>@queue/<id>`` while Jenkins
still holds the request in its queue (neither ``#`` nor ``@`` may appear in
a Jenkins job name).
"""

from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol

from ark.errors import ArkError, InvalidArgument, Unavailable
from ark.services.common import validate_job_name
from ark.services.jenkins_client import JenkinsClient, queue_id_from_location

logger = logging.getLogger(__name__)

QUEUE_POLL_INTERVAL_SECONDS = 0.35

_STARTED_RE = re.compile(r"^(?P<job>[^#@]+)#(?P<number>\d+)$")
_QUEUED_RE = re.compile(r"^(?P<job>[^#@]+)@queue/(?P<queue>\d+)$")

_FAILED_RESULTS = {"FAILURE", "ABORTED", "UNSTABLE", "NOT_BUILT"}


class JobStatus(str, enum.Enum):
    queued = "queued"
    running = "running"
    success = "success"
    failed = "failed"


@dataclass(frozen=True)
class BuildRef:
    job_name: str
    number: int | None = None
    queue_id: int | None = None

    @property
    def started(self) -> bool:
        return self.number is not None

    def __str__(self) -> str:
        if self.number is not None:
            return f"{self.job_name}#{self.number}"
        return f"{self.job_name}@queue/{self.queue_id}"

    @classmethod
    def parse(cls, build_id: str) -> BuildRef:
        value = (build_id or "").strip()
        match = _STARTED_RE.match(value)
        if match:
            return cls(job_name=match["job"], number=int(match["number"]))
        match = _QUEUED_RE.match(value)
        if match:
            return cls(job_name=match["job"], queue_id=int(match["queue"]))
        raise InvalidArgument(f"Malformed build id: {build_id!r}")


@dataclass
class BuildStatus:
    ref: BuildRef
    status: JobStatus
    result: str | None = None
    detail: str | None = None

    @property
    def build_id(self) -> str:
        return str(self.ref)


class JobRunner(Protocol):
    def trigger(self, job_name: str, parameters: dict[str, str]) -> BuildRef: ...

    def get_status(self, build_id: str) -> BuildStatus: ...

    def get_logs(self, build_id: str) -> dict[str, str]: ...

    def list_jobs(self) -> list[str]: ...

    def pending_jobs(self) -> list[dict]: ...


class JenkinsJobRunner:
    def __init__(
        self,
        client: JenkinsClient,
        queue_resolve_seconds: float = 6.0,
        poll_interval: float = QUEUE_POLL_INTERVAL_SECONDS,
    ):
        self.client = client
        self.queue_resolve_seconds = queue_resolve_seconds
        self.poll_interval = poll_interval

    def trigger(self, job_name: str, parameters: dict[str, str]) -> BuildRef:
        job_name = validate_job_name(job_name)
        location = self.client.trigger(job_name, parameters)
        queue_id = queue_id_from_location(location)
        if queue_id is None:
            raise Unavailable(f"Unexpected Jenkins queue location: {location!r}")
        queued = BuildRef(job_name=job_name, queue_id=queue_id)
        # the job is queued from here on; a failed lookup must not hide that
        try:
            return self._wait_for_build(queued)
        except ArkError as exc:
            logger.warning("Could not resolve queued build %s yet: %s", queued, exc.detail)
            return queued

    def _wait_for_build(self, ref: BuildRef) -> BuildRef:
        """Poll the queue briefly so callers usually get a started build id."""
        deadline = time.monotonic() + self.queue_resolve_seconds
        while True:
            resolved, cancelled = self._resolve_queued(ref)
            if resolved.started or cancelled:
                return resolved
            if time.monotonic() >= deadline:
                logger.info("Build %s still queued after %.1fs", ref, self.queue_resolve_seconds)
                return ref
            time.sleep(self.poll_interval)

    def _resolve_queued(self, ref: BuildRef) -> tuple[BuildRef, bool]:
        """Returns (ref, cancelled); ref carries a number once the build started."""
        item = self.client.read_queue_item(ref.queue_id)
        if item is None:
            number = self.client.find_build_by_queue_id(ref.job_name, ref.queue_id)
            if number is None:
                return ref, False
            return BuildRef(job_name=ref.job_name, number=number), False
        if item.get("cancelled"):
            return ref, True
        executable = item.get("executable") or {}
        number = executable.get("number")
        if number is not None:
            return BuildRef(job_name=ref.job_name, number=int(number)), False
        return ref, False

    def get_status(self, build_id: str) -> BuildStatus:
        ref = BuildRef.parse(build_id)
        if not ref.started:
            ref, cancelled = self._resolve_queued(ref)
            if cancelled:
                return BuildStatus(ref, JobStatus.failed, result="CANCELLED", detail="queue item cancelled")
            if not ref.started:
                return BuildStatus(ref, JobStatus.queued)

        build = self.client.get_build(ref.job_name, ref.number)
        if build.get("building"):
            return BuildStatus(ref, JobStatus.running)
        result = build.get("result")
        if result == "SUCCESS":
            return BuildStatus(ref, JobStatus.success, result=result)
        if result in _FAILED_RESULTS:
            return BuildStatus(ref, JobStatus.failed, result=result, detail=f"build finished with {result}")
        # not building and no result yet: the executor is still picking it up
        return BuildStatus(ref, JobStatus.running, result=result)

    def get_logs(self, build_id: str) -> dict[str, str]:
        ref = BuildRef.parse(build_id)
        if not ref.started:
            ref, _ = self._resolve_queued(ref)
            if not ref.started:
                return {ref.job_name: ""}
        return {ref.job_name: self.client.get_console_text(ref.job_name, ref.number)}

    def list_jobs(self) -> list[str]:
        return sorted(job["name"] for job in self.client.list_jobs() if job.get("name"))

    def pending_jobs(self) -> list[dict]:
        items = []
        for item in self.client.get_queue():
            items.append(
                {
                    "id": item.get("id"),
                    "job_name": (item.get("task") or {}).get("name"),
                    "why": item.get("why"),
                    "blocked": bool(item.get("blocked")),
                    "stuck": bool(item.get("stuck")),
                    "in_queue_since": item.get("inQueueSince"),
                }
            )
        return items


@lru_cache(maxsize=1)
def build_job_runner() -> JenkinsJobRunner:
    from ark.config import settings

    if not settings.jenkins_base_url:
        raise Unavailable("Jenkins is not configured")
    client = JenkinsClient(
        settings.jenkins_base_url,
        settings.jenkins_user or "",
        settings.jenkins_api_token or "",
        timeout=settings.jenkins_timeout_seconds,
    )
    return JenkinsJobRunner(client, queue_resolve_seconds=settings.jenkins_queue_resolve_seconds)
