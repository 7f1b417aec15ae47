import logging
import re
import uuid

from ark.errors import InvalidArgument
from ark.models.instance import Environment

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")
_SERVICE_NAME_RE = re.compile(r"^[a-z0-9_-]+$")
# Characters Jenkins refuses in item names, plus whitespace.
_JOB_NAME_FORBIDDEN = set("?*/\\%!@#$^&|<>[]:;") | {" ", "\t", "\n", "\r"}

_ENVIRONMENT_ALIASES = {
    "prod": Environment.PROD,
    "production": Environment.PROD,
    "dev": Environment.DEV,
    "development": Environment.DEV,
    "test": Environment.TEST,
    "testing": Environment.TEST,
}

MAX_SLUG_LENGTH = 64


def parse_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def validate_slug(value: str | None, label: str = "id") -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidArgument(f"{label} is required")
    if len(value) > MAX_SLUG_LENGTH or not _SLUG_RE.match(value):
        raise InvalidArgument(f"{label} must be a lowercase slug (a-z, 0-9, '-'), got {value!r}")
    return value


def validate_job_name(value: str | None, label: str = "job name") -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidArgument(f"{label} is required")
    if ".." in value or any(ch in _JOB_NAME_FORBIDDEN for ch in value):
        raise InvalidArgument(f"Invalid {label}: {value!r}")
    return value


def validate_service_name(value: str) -> str:
    if not _SERVICE_NAME_RE.match(value):
        raise InvalidArgument(f"web_service must match {_SERVICE_NAME_RE.pattern}, got {value!r}")
    return value


def normalize_environment(value: str | Environment | None) -> Environment:
    if isinstance(value, Environment):
        return value
    key = (value or "").strip().lower()
    env = _ENVIRONMENT_ALIASES.get(key)
    if env is None:
        raise InvalidArgument(f"environment must be one of PROD, DEV, TEST, got {value!r}")
    return env
