"""Mesh Directory: Tailscale device discovery with a short-lived cache.

Listing never fails. When the Tailscale API is unreachable the last good
device list is served (flagged ``degraded``) for up to ten minutes, after
which an empty degraded listing is returned instead.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Any

import httpx
import redis

from ark import __version__
from ark.errors import NotFound, Unavailable
from ark.metrics import MESH_DEGRADED

logger = logging.getLogger(__name__)

RECENTLY_SEEN = timedelta(minutes=10)
STALE_WINDOW_SECONDS = 600
TAILSCALE_TIMEOUT_SECONDS = 30

_REDIS_RETRY_SECONDS = 5
_CACHE_KEY = "ark:mesh:devices"

MESH_NETWORKS = (
    ipaddress.ip_network("100.64.0.0/10"),
    ipaddress.ip_network("fd7a:115c:a1e0::/48"),
)


def is_mesh_address(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address.split("/")[0])
    except ValueError:
        return False
    return any(ip.version == net.version and ip in net for net in MESH_NETWORKS)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    # the API reports the zero time for nodes that never connected
    if parsed.year < 2000:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass
class Device:
    id: str
    name: str
    hostname: str
    addresses: list[str]
    os: str
    online: bool
    reachable: bool
    last_seen: datetime | None

    @property
    def host(self) -> str:
        return self.name.split(".")[0] if self.name else self.hostname

    @property
    def status(self) -> str:
        if self.online:
            return "online"
        if self.reachable:
            return "reachable"
        return "offline"

    @property
    def deployable(self) -> bool:
        return self.online or self.reachable

    def matches(self, needle: str) -> bool:
        return needle in (self.id, self.name, self.host, self.hostname) or needle in self.addresses


def classify(raw: dict[str, Any], now: datetime | None = None) -> Device:
    """Build a Device from a Tailscale API record and classify it."""
    now = now or datetime.now(UTC)
    addresses = [str(a) for a in raw.get("addresses") or []]
    last_seen = _parse_timestamp(raw.get("lastSeen"))
    online = bool(raw.get("online") or raw.get("connectedToControl"))
    reachable = (
        not online
        and any(is_mesh_address(a) for a in addresses)
        and last_seen is not None
        and now - last_seen <= RECENTLY_SEEN
    )
    return Device(
        id=str(raw.get("id") or raw.get("nodeId") or ""),
        name=str(raw.get("name") or ""),
        hostname=str(raw.get("hostname") or ""),
        addresses=addresses,
        os=str(raw.get("os") or ""),
        online=online,
        reachable=reachable,
        last_seen=last_seen,
    )


def address_for(device: Device) -> str | None:
    """Preferred address: the first mesh IPv4, else the first listed."""
    for address in device.addresses:
        if ":" not in address and is_mesh_address(address):
            return address
    return device.addresses[0] if device.addresses else None


@dataclass
class DeviceListing:
    devices: list[Device] = field(default_factory=list)
    degraded: bool = False
    fetched_at: datetime | None = None

    @property
    def total(self) -> int:
        return len(self.devices)


class TailscaleClient:
    def __init__(
        self,
        api_key: str,
        tailnet: str,
        base_url: str = "https://api.tailscale.com/api/v2",
        timeout: float = TAILSCALE_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ):
        self.tailnet = tailnet.strip()
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            auth=(api_key.strip(), ""),
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json", "User-Agent": f"ark-deploy/{__version__}"},
        )

    def list_devices(self) -> list[dict]:
        path = f"/tailnet/{self.tailnet}/devices"
        try:
            resp = self._http.get(path)
        except httpx.HTTPError as exc:
            raise Unavailable(f"Tailscale API unreachable: {exc}") from exc
        if resp.status_code >= 400:
            raise Unavailable(f"Tailscale API error: HTTP {resp.status_code}")
        try:
            return list(resp.json().get("devices") or [])
        except (ValueError, AttributeError) as exc:
            raise Unavailable("Tailscale API returned an unexpected payload") from exc


class DeviceCache:
    """Raw device records plus fetch time, in Redis when available."""

    def __init__(self, redis_url: str | None = None):
        self.redis_url = redis_url
        self._redis_client: redis.Redis | None = None
        self._redis_retry_after = 0.0
        self._memory: tuple[float, list[dict]] | None = None
        self._lock = threading.Lock()

    def _get_redis_client(self) -> redis.Redis | None:
        if not self.redis_url:
            return None
        if self._redis_client is not None:
            return self._redis_client
        now = time.time()
        if now < self._redis_retry_after:
            return None
        try:
            client = redis.Redis.from_url(self.redis_url, socket_timeout=2)
            client.ping()
            self._redis_client = client
            return client
        except redis.RedisError:
            self._redis_retry_after = now + _REDIS_RETRY_SECONDS
            self._redis_client = None
            return None

    def _drop_redis(self) -> None:
        self._redis_retry_after = time.time() + _REDIS_RETRY_SECONDS
        self._redis_client = None

    def get(self) -> tuple[float, list[dict]] | None:
        client = self._get_redis_client()
        if client is not None:
            try:
                raw = client.get(_CACHE_KEY)
            except redis.RedisError:
                self._drop_redis()
            else:
                if raw is None:
                    return None
                try:
                    payload = json.loads(raw)
                    return float(payload["fetched_at"]), list(payload["devices"])
                except (ValueError, KeyError, TypeError):
                    logger.warning("Ignoring malformed device cache entry in Redis")
                    return None
        with self._lock:
            return self._memory

    def put(self, devices: list[dict], fetched_at: float) -> None:
        client = self._get_redis_client()
        if client is not None:
            payload = json.dumps({"fetched_at": fetched_at, "devices": devices})
            try:
                client.set(_CACHE_KEY, payload, ex=STALE_WINDOW_SECONDS)
                return
            except redis.RedisError:
                self._drop_redis()
        with self._lock:
            self._memory = (fetched_at, devices)

    def clear(self) -> None:
        client = self._get_redis_client()
        if client is not None:
            try:
                client.delete(_CACHE_KEY)
            except redis.RedisError:
                self._drop_redis()
        with self._lock:
            self._memory = None


class MeshDirectory:
    def __init__(self, client: TailscaleClient, cache: DeviceCache | None = None, ttl_seconds: int = 30):
        self.client = client
        self.cache = cache or DeviceCache()
        self.ttl_seconds = ttl_seconds

    def _listing(self, raw: list[dict], fetched_at: float, degraded: bool) -> DeviceListing:
        now = datetime.now(UTC)
        MESH_DEGRADED.set(1 if degraded else 0)
        return DeviceListing(
            devices=[classify(item, now) for item in raw],
            degraded=degraded,
            fetched_at=datetime.fromtimestamp(fetched_at, UTC),
        )

    def list_devices(self) -> DeviceListing:
        now = time.time()
        cached = self.cache.get()
        if cached and now - cached[0] < self.ttl_seconds:
            return self._listing(cached[1], cached[0], degraded=False)

        try:
            raw = self.client.list_devices()
        except Unavailable as exc:
            if cached and now - cached[0] < STALE_WINDOW_SECONDS:
                logger.warning("Serving cached device list (%.0fs old): %s", now - cached[0], exc.detail)
                return self._listing(cached[1], cached[0], degraded=True)
            logger.warning("Device list unavailable and no usable cache: %s", exc.detail)
            MESH_DEGRADED.set(1)
            return DeviceListing(devices=[], degraded=True, fetched_at=None)

        self.cache.put(raw, now)
        return self._listing(raw, now, degraded=False)

    def resolve(self, host: str) -> Device:
        needle = (host or "").strip()
        if not needle:
            raise NotFound("Host is required")
        listing = self.list_devices()
        for device in listing.devices:
            if device.matches(needle):
                return device
        if listing.degraded:
            raise Unavailable(f"Mesh directory degraded; cannot resolve host {needle!r}")
        raise NotFound(f"Host {needle!r} not found in mesh")

    def get_device(self, device_id: str) -> Device:
        return self.resolve(device_id)


@lru_cache(maxsize=1)
def build_mesh_directory() -> MeshDirectory:
    from ark.config import settings

    client = TailscaleClient(
        settings.tailscale_api_key or "",
        settings.tailscale_tailnet or "",
        base_url=settings.tailscale_api_url,
    )
    return MeshDirectory(client, DeviceCache(settings.redis_url), ttl_seconds=settings.mesh_cache_ttl_seconds)
