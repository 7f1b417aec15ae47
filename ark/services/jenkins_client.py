"""Jenkins REST client: crumbs, parameterised triggers, queue and build reads.

Every call has a bounded timeout. Transport errors and gateway answers
(502/503/504) are retried with linear backoff; any other 4xx/5xx answer is
terminal and surfaces immediately.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any
from urllib.parse import quote

import httpx

from ark.errors import NotFound, Unavailable
from ark.metrics import JENKINS_REQUESTS

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 1.0
RETRYABLE_STATUS = {502, 503, 504}
RECENT_BUILDS_WINDOW = 20

_QUEUE_ID_RE = re.compile(r"/queue/item/(\d+)")


def queue_id_from_location(location: str) -> int | None:
    match = _QUEUE_ID_RE.search(location or "")
    return int(match.group(1)) if match else None


def _job_path(job_name: str) -> str:
    return f"/job/{quote(job_name, safe='')}"


class JenkinsClient:
    def __init__(
        self,
        base_url: str,
        user: str,
        api_token: str,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        backoff_seconds: float = RETRY_BACKOFF_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.backoff_seconds = backoff_seconds
        self._http = httpx.Client(
            base_url=self.base_url,
            auth=(user, api_token),
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        last_error = ""
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                resp = self._http.request(method, path, **kwargs)
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                if resp.status_code not in RETRYABLE_STATUS:
                    JENKINS_REQUESTS.labels(outcome="ok" if resp.status_code < 400 else "error").inc()
                    return resp
                last_error = f"HTTP {resp.status_code}"

            JENKINS_REQUESTS.labels(outcome="retry").inc()
            if attempt < MAX_ATTEMPTS:
                delay = self.backoff_seconds * attempt
                logger.warning(
                    "Jenkins %s %s failed (attempt %d/%d): %s; retrying in %.1fs",
                    method,
                    path,
                    attempt,
                    MAX_ATTEMPTS,
                    last_error,
                    delay,
                )
                time.sleep(delay)

        JENKINS_REQUESTS.labels(outcome="unavailable").inc()
        raise Unavailable(f"Jenkins unavailable: {method} {path}: {last_error}")

    @staticmethod
    def _raise_for_status(resp: httpx.Response, what: str) -> None:
        if resp.status_code == 404:
            raise NotFound(f"{what} not found in Jenkins")
        if resp.status_code >= 400:
            raise Unavailable(f"Jenkins rejected {what}: HTTP {resp.status_code} {resp.text[:200]}")

    def get_crumb(self) -> dict[str, str]:
        """CSRF crumb header; empty when the crumb issuer is disabled."""
        resp = self._request("GET", "/crumbIssuer/api/json")
        if resp.status_code == 404:
            return {}
        self._raise_for_status(resp, "crumb issuer")
        data = resp.json()
        field, crumb = data.get("crumbRequestField"), data.get("crumb")
        if not field or not crumb:
            raise Unavailable("Jenkins crumb response missing fields")
        return {field: crumb}

    def trigger(self, job_name: str, params: dict[str, str]) -> str:
        """Queue a parameterised build and return the queue item URL."""
        headers = self.get_crumb()
        resp = self._request(
            "POST",
            f"{_job_path(job_name)}/buildWithParameters",
            data=params,
            headers=headers,
        )
        self._raise_for_status(resp, f"Job {job_name!r}")
        location = resp.headers.get("Location", "")
        if not location:
            raise Unavailable("Jenkins did not return a queue Location header")
        logger.info("Queued Jenkins job %s at %s", job_name, location)
        return location

    def read_queue_item(self, queue_id: int) -> dict | None:
        """Queue item JSON, or None once Jenkins has forgotten the item."""
        resp = self._request("GET", f"/queue/item/{queue_id}/api/json")
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, f"Queue item {queue_id}")
        return resp.json()

    def find_build_by_queue_id(self, job_name: str, queue_id: int) -> int | None:
        resp = self._request(
            "GET",
            f"{_job_path(job_name)}/api/json",
            params={"tree": f"builds[number,queueId]{{0,{RECENT_BUILDS_WINDOW}}}"},
        )
        self._raise_for_status(resp, f"Job {job_name!r}")
        for build in resp.json().get("builds") or []:
            if build.get("queueId") == queue_id:
                return build.get("number")
        return None

    def get_build(self, job_name: str, number: int) -> dict:
        resp = self._request("GET", f"{_job_path(job_name)}/{number}/api/json")
        self._raise_for_status(resp, f"Build {job_name}#{number}")
        return resp.json()

    def get_console_text(self, job_name: str, number: int) -> str:
        resp = self._request("GET", f"{_job_path(job_name)}/{number}/consoleText")
        self._raise_for_status(resp, f"Build {job_name}#{number}")
        return resp.text

    def list_jobs(self) -> list[dict]:
        resp = self._request("GET", "/api/json", params={"tree": "jobs[name,url,color]"})
        self._raise_for_status(resp, "Job list")
        return resp.json().get("jobs") or []

    def get_queue(self) -> list[dict]:
        resp = self._request(
            "GET",
            "/queue/api/json",
            params={"tree": "items[id,task[name],why,blocked,stuck,inQueueSince]"},
        )
        self._raise_for_status(resp, "Build queue")
        return resp.json().get("items") or []
