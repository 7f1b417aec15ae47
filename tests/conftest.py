import asyncio
import os
import sys
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from types import ModuleType

import fastapi.dependencies.utils as fastapi_deps_utils
import fastapi.routing as fastapi_routing
import httpx
import pytest
import starlette.concurrency as starlette_concurrency
import starlette.routing as starlette_routing
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker


async def _patched_run_in_threadpool(func, *args, **kwargs):
    """Run inline in tests to avoid cross-thread sqlite/session deadlocks."""
    return func(*args, **kwargs)


starlette_concurrency.run_in_threadpool = _patched_run_in_threadpool
starlette_routing.run_in_threadpool = _patched_run_in_threadpool
fastapi_routing.run_in_threadpool = _patched_run_in_threadpool
fastapi_deps_utils.run_in_threadpool = _patched_run_in_threadpool


class SyncASGIClient:
    def __init__(self, app):
        self._app = app

    async def _request(self, method: str, url: str, **kwargs):
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=self._app, raise_app_exceptions=False),
            base_url="http://testserver",
        ) as client:
            return await client.request(method, url, **kwargs)

    def request(self, method: str, url: str, **kwargs):
        return asyncio.run(self._request(method, url, **kwargs))

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs):
        return self.request("PUT", url, **kwargs)

    def delete(self, url: str, **kwargs):
        return self.request("DELETE", url, **kwargs)

    def close(self) -> None:
        return None


# Create a test engine BEFORE any ark imports
_test_engine = create_engine(
    "sqlite+pysqlite:///file:ark_test?mode=memory&cache=shared",
    connect_args={"check_same_thread": False, "uri": True},
)


class TestBase(DeclarativeBase):
    __test__ = False


_TestSessionLocal = sessionmaker(bind=_test_engine, autoflush=False, autocommit=False)

mock_db_module = ModuleType("ark.db")
mock_db_module.Base = TestBase  # type: ignore[attr-defined]
mock_db_module.SessionLocal = _TestSessionLocal  # type: ignore[attr-defined]
mock_db_module.get_engine = lambda: _test_engine  # type: ignore[attr-defined]

# Also mock ark.config to prevent .env loading and required-setting checks
mock_config_module = ModuleType("ark.config")


class MockSettings:
    database_url = "sqlite+pysqlite:///:memory:"
    db_pool_size = 5
    db_max_overflow = 10
    db_pool_timeout = 30
    db_pool_recycle = 1800
    redis_url = None
    celery_broker_url = "memory://"
    celery_result_backend = "cache+memory://"
    jenkins_base_url = "http://jenkins.test"
    jenkins_user = "ark"
    jenkins_api_token = "token"
    jenkins_timeout_seconds = 1.0
    jenkins_queue_resolve_seconds = 0.0
    tailscale_api_key = "tskey-test"
    tailscale_tailnet = "example.com"
    tailscale_api_url = "https://api.tailscale.test/api/v2"
    mesh_cache_ttl_seconds = 30
    ark_public_host = "http://ark.test"
    default_ssh_user = "root"
    reconcile_interval_seconds = 5
    verify_timeout_seconds = 600
    log_level = "INFO"
    log_format = "text"
    testing = True


mock_config_module.settings = MockSettings()  # type: ignore[attr-defined]
mock_config_module.Settings = MockSettings  # type: ignore[attr-defined]

# Insert mocks before any ark imports
sys.modules["ark.config"] = mock_config_module
sys.modules["ark.db"] = mock_db_module

os.environ["TESTING"] = "1"

# Now import the models - they'll use our mocked db module
from ark.errors import Unavailable  # noqa: E402
from ark.models.instance import Instance  # noqa: E402,F401
from ark.models.product import Product  # noqa: E402
from ark.models.ssh_user import SSHUser  # noqa: E402,F401
from ark.services.job_runner import BuildRef, BuildStatus, JobStatus  # noqa: E402
from ark.services.mesh_directory import DeviceCache, MeshDirectory  # noqa: E402

# Create all tables
TestBase.metadata.create_all(_test_engine)

Base = TestBase


# ============ Fakes for external systems ============


class FakeJobRunner:
    """In-memory job runner: every trigger starts build N of the job."""

    def __init__(self):
        self.triggered: list[tuple[str, dict]] = []
        self.statuses: dict[str, JobStatus] = {}
        self.logs: dict[str, str] = {}
        self.jobs = ["delete-api", "deploy-api-prod"]
        self.trigger_error: Exception | None = None
        self._numbers: dict[str, int] = {}

    def trigger(self, job_name: str, parameters: dict[str, str]) -> BuildRef:
        if self.trigger_error is not None:
            raise self.trigger_error
        self._numbers[job_name] = self._numbers.get(job_name, 0) + 1
        self.triggered.append((job_name, dict(parameters)))
        return BuildRef(job_name=job_name, number=self._numbers[job_name])

    def finish(self, build_id: str, status: JobStatus = JobStatus.success) -> None:
        self.statuses[build_id] = status

    def get_status(self, build_id: str) -> BuildStatus:
        ref = BuildRef.parse(build_id)
        status = self.statuses.get(build_id, JobStatus.running)
        result = {"success": "SUCCESS", "failed": "FAILURE"}.get(status.value)
        return BuildStatus(ref, status, result=result)

    def get_logs(self, build_id: str) -> dict[str, str]:
        ref = BuildRef.parse(build_id)
        return {ref.job_name: self.logs.get(build_id, "")}

    def list_jobs(self) -> list[str]:
        return sorted(self.jobs)

    def pending_jobs(self) -> list[dict]:
        return []


class FakeTailscaleClient:
    def __init__(self, devices: list[dict] | None = None):
        self.devices = devices if devices is not None else []
        self.fail = False
        self.calls = 0

    def list_devices(self) -> list[dict]:
        self.calls += 1
        if self.fail:
            raise Unavailable("Tailscale API unreachable: connection refused")
        return list(self.devices)


def make_device(
    name: str = "node1",
    addresses: list[str] | None = None,
    online: bool = True,
    last_seen: datetime | None = None,
    device_id: str | None = None,
) -> dict:
    last_seen = last_seen or datetime.now(UTC)
    return {
        "id": device_id or f"id-{name}",
        "name": f"{name}.tail1234.ts.net",
        "hostname": name,
        "addresses": addresses if addresses is not None else ["100.1.2.3"],
        "os": "linux",
        "online": online,
        "lastSeen": last_seen.strftime("%Y-%m-%dT%H:%M:%SZ"),
    }


@pytest.fixture(scope="session")
def engine():
    return _test_engine


@pytest.fixture(autouse=True)
def _clean_tables(engine):
    yield
    with engine.begin() as conn:
        for table in reversed(TestBase.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def db_session(engine):
    """Create a database session for testing."""
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def job_runner():
    return FakeJobRunner()


@pytest.fixture()
def tailscale():
    return FakeTailscaleClient([make_device("node1", ["100.1.2.3"], online=True)])


@pytest.fixture()
def mesh(tailscale):
    # ttl 0: every lookup reads the fake client, so tests can mutate devices
    return MeshDirectory(tailscale, DeviceCache(None), ttl_seconds=0)


@pytest.fixture()
def probe_results():
    """URL -> reachable; unknown URLs are unreachable."""
    return {}


@pytest.fixture()
def registry(db_session, job_runner, mesh, probe_results):
    from ark.services.deployment_registry import DeploymentRegistry

    return DeploymentRegistry(db_session, job_runner, mesh, probe=lambda url: probe_results.get(url, False))


@pytest.fixture()
def api_product(db_session):
    product = Product(
        id="api",
        name="API",
        description="",
        deploy_jobs={"PROD": "deploy-api-prod"},
        delete_job="delete-api",
        web_service="web",
        web_port=8080,
    )
    db_session.add(product)
    db_session.commit()
    return product


# ============ FastAPI Test Client Fixtures ============


@pytest.fixture()
def client(db_session, job_runner, mesh, probe_results):
    """Create a test client with database and upstream dependency overrides."""
    from ark.api.deps import get_db, get_job_runner, get_mesh_directory, get_registry
    from ark.main import app
    from ark.services.deployment_registry import DeploymentRegistry

    def override_get_db():
        return db_session

    def override_get_registry():
        return DeploymentRegistry(db_session, job_runner, mesh, probe=lambda url: probe_results.get(url, False))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_job_runner] = lambda: job_runner
    app.dependency_overrides[get_mesh_directory] = lambda: mesh
    app.dependency_overrides[get_registry] = override_get_registry

    @asynccontextmanager
    async def _test_lifespan(_app):
        yield

    original_lifespan = app.router.lifespan_context
    app.router.lifespan_context = _test_lifespan
    test_client = SyncASGIClient(app)
    try:
        yield test_client
    finally:
        test_client.close()
        app.router.lifespan_context = original_lifespan
        app.dependency_overrides.clear()
