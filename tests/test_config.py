import importlib.util
from pathlib import Path

import pytest

# conftest replaces ark.config in sys.modules; load the real file separately
_CONFIG_PATH = Path(__file__).resolve().parents[1] / "ark" / "config.py"


@pytest.fixture(scope="module")
def config_module():
    spec = importlib.util.spec_from_file_location("ark_config_under_test", _CONFIG_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("http://jenkins.local:8080/", "http://jenkins.local:8080"),
        ("https://ark.example.com/some/path?x=1", "https://ark.example.com"),
    ],
)
def test_normalize_base_url(config_module, raw, expected):
    assert config_module.normalize_base_url(raw, "JENKINS_BASE_URL") == expected


@pytest.mark.parametrize("raw", ["jenkins.local", "ftp://jenkins.local", "http://user:pw@jenkins.local"])
def test_normalize_base_url_rejects(config_module, raw):
    with pytest.raises(ValueError):
        config_module.normalize_base_url(raw, "JENKINS_BASE_URL")


def test_urls_are_normalized(config_module):
    settings = config_module.Settings(
        testing=True,
        jenkins_base_url="http://jenkins.local:8080/",
        ark_public_host="https://ark.example.com/",
    )
    assert settings.jenkins_base_url == "http://jenkins.local:8080"
    assert settings.ark_public_host == "https://ark.example.com"


def test_mesh_cache_ttl_is_capped(config_module):
    settings = config_module.Settings(testing=True, mesh_cache_ttl_seconds=3600)
    assert settings.mesh_cache_ttl_seconds == config_module.MESH_CACHE_MAX_TTL_SECONDS


def test_missing_required_settings_outside_tests(config_module):
    with pytest.raises(ValueError, match="DATABASE_URL"):
        config_module.Settings(
            testing=False,
            database_url=None,
            jenkins_base_url=None,
            jenkins_user=None,
            jenkins_api_token=None,
            tailscale_api_key=None,
            tailscale_tailnet=None,
            ark_public_host=None,
        )
