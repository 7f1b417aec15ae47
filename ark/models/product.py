from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column

from ark.db import Base


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    release_tag: Mapped[str | None] = mapped_column(String(120))
    # environment tag (PROD/DEV/TEST) -> Jenkins job name
    deploy_jobs: Mapped[dict[str, str]] = mapped_column(JSON, default=dict)
    delete_job: Mapped[str] = mapped_column(String(200), default="")
    web_service: Mapped[str | None] = mapped_column(String(120))
    web_port: Mapped[int] = mapped_column(Integer, default=80)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
