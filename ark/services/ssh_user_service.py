import logging
import re

from sqlalchemy import select
from sqlalchemy.orm import Session

from ark.errors import InvalidArgument, NotFound
from ark.models.ssh_user import SSHUser

logger = logging.getLogger(__name__)

_SSH_USER_RE = re.compile(r"^[a-z_][a-z0-9_.-]{0,31}$")


def _clean_host(host: str | None) -> str:
    host = (host or "").strip()
    if not host:
        raise InvalidArgument("host is required")
    if len(host) > 255 or any(ch.isspace() for ch in host):
        raise InvalidArgument(f"Invalid host: {host!r}")
    return host


class SSHUserService:
    """Per-host overrides for the remote login passed to deploy jobs."""

    def __init__(self, db: Session):
        self.db = db

    def list_mappings(self) -> dict[str, str]:
        rows = self.db.scalars(select(SSHUser).order_by(SSHUser.host)).all()
        return {row.host: row.ssh_user for row in rows}

    def lookup(self, host: str | None) -> str | None:
        host = (host or "").strip()
        if not host:
            return None
        row = self.db.get(SSHUser, host)
        return row.ssh_user if row else None

    def get(self, host: str) -> SSHUser:
        row = self.db.get(SSHUser, _clean_host(host))
        if not row:
            raise NotFound(f"No SSH user mapped for host {host!r}")
        return row

    def set(self, host: str, ssh_user: str) -> SSHUser:
        host = _clean_host(host)
        ssh_user = (ssh_user or "").strip()
        if not ssh_user:
            raise InvalidArgument("ssh_user is required")
        if not _SSH_USER_RE.match(ssh_user):
            raise InvalidArgument(f"Invalid ssh_user: {ssh_user!r}")
        row = self.db.get(SSHUser, host)
        if row:
            row.ssh_user = ssh_user
        else:
            row = SSHUser(host=host, ssh_user=ssh_user)
            self.db.add(row)
        self.db.flush()
        logger.info("SSH user for %s set to %s", host, ssh_user)
        return row

    def delete(self, host: str) -> None:
        row = self.get(host)
        self.db.delete(row)
        self.db.flush()
        logger.info("SSH user mapping for %s removed", row.host)

    def resolve(self, requested: str | None, *hosts: str | None) -> str | None:
        """Explicit value first, then the first mapped host in order."""
        requested = (requested or "").strip()
        if requested:
            if not _SSH_USER_RE.match(requested):
                raise InvalidArgument(f"Invalid ssh_user: {requested!r}")
            return requested
        for host in hosts:
            mapped = self.lookup(host)
            if mapped:
                return mapped
        return None
