import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ark.db import Base


class Environment(str, enum.Enum):
    PROD = "PROD"
    DEV = "DEV"
    TEST = "TEST"


class InstanceStatus(str, enum.Enum):
    provisioning = "provisioning"
    running = "running"
    success = "success"
    failed = "failed"
    deleting = "deleting"
    stopped = "stopped"


# Statuses the reconciler still has work for.
RECONCILABLE_STATUSES = (
    InstanceStatus.provisioning,
    InstanceStatus.running,
    InstanceStatus.deleting,
)


class Instance(Base):
    __tablename__ = "instances"

    instance_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("products.id"), nullable=False, index=True
    )
    target_host: Mapped[str] = mapped_column(String(255), nullable=False)
    device_id: Mapped[str | None] = mapped_column(String(120))
    device_address: Mapped[str | None] = mapped_column(String(64))
    environment: Mapped[Environment] = mapped_column(Enum(Environment), nullable=False)
    status: Mapped[InstanceStatus] = mapped_column(
        Enum(InstanceStatus), default=InstanceStatus.provisioning, index=True
    )
    # Set while a delete job is in flight so a failed teardown can be undone.
    status_before_delete: Mapped[InstanceStatus | None] = mapped_column(Enum(InstanceStatus))
    # "<product>:<host>:<env>" while the instance is live, NULL once stopped.
    active_key: Mapped[str | None] = mapped_column(String(400), unique=True)
    ssh_user: Mapped[str | None] = mapped_column(String(80))
    url: Mapped[str | None] = mapped_column(String(512))
    job_name: Mapped[str] = mapped_column(String(200), nullable=False)
    build_id: Mapped[str | None] = mapped_column(String(255))
    delete_job_name: Mapped[str | None] = mapped_column(String(200))
    delete_build_id: Mapped[str | None] = mapped_column(String(255))
    last_error: Mapped[str | None] = mapped_column(Text)
    running_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    stopped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    product = relationship("Product")
