from datetime import UTC, datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from ark.db import Base


class SSHUser(Base):
    __tablename__ = "ssh_users"

    host: Mapped[str] = mapped_column(String(255), primary_key=True)
    ssh_user: Mapped[str] = mapped_column(String(80), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
