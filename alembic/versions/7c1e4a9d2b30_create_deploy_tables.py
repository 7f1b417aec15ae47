"""create products, instances and ssh_users

Revision ID: 7c1e4a9d2b30
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM, JSON, UUID

from alembic import op

revision = "7c1e4a9d2b30"
down_revision = None
branch_labels = None
depends_on = None


environment_enum = ENUM("PROD", "DEV", "TEST", name="environment", create_type=False)
instance_status_enum = ENUM(
    "provisioning",
    "running",
    "success",
    "failed",
    "deleting",
    "stopped",
    name="instancestatus",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    if is_postgres:
        environment_enum.create(bind, checkfirst=True)
        instance_status_enum.create(bind, checkfirst=True)

    op.create_table(
        "products",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("release_tag", sa.String(length=120), nullable=True),
        sa.Column("deploy_jobs", JSON(), nullable=True),
        sa.Column("delete_job", sa.String(length=200), nullable=True),
        sa.Column("web_service", sa.String(length=120), nullable=True),
        sa.Column("web_port", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "instances",
        sa.Column("instance_id", UUID(as_uuid=True), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("target_host", sa.String(length=255), nullable=False),
        sa.Column("device_id", sa.String(length=120), nullable=True),
        sa.Column("device_address", sa.String(length=64), nullable=True),
        sa.Column("environment", environment_enum, nullable=False),
        sa.Column("status", instance_status_enum, nullable=True),
        sa.Column("status_before_delete", instance_status_enum, nullable=True),
        sa.Column("active_key", sa.String(length=400), nullable=True),
        sa.Column("ssh_user", sa.String(length=80), nullable=True),
        sa.Column("url", sa.String(length=512), nullable=True),
        sa.Column("job_name", sa.String(length=200), nullable=False),
        sa.Column("build_id", sa.String(length=255), nullable=True),
        sa.Column("delete_job_name", sa.String(length=200), nullable=True),
        sa.Column("delete_build_id", sa.String(length=255), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("running_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stopped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("instance_id"),
        sa.UniqueConstraint("active_key"),
    )
    op.create_index("ix_instances_product_id", "instances", ["product_id"])
    op.create_index("ix_instances_status", "instances", ["status"])

    op.create_table(
        "ssh_users",
        sa.Column("host", sa.String(length=255), nullable=False),
        sa.Column("ssh_user", sa.String(length=80), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("host"),
    )


def downgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"

    op.drop_table("ssh_users")
    op.drop_index("ix_instances_status", table_name="instances")
    op.drop_index("ix_instances_product_id", table_name="instances")
    op.drop_table("instances")
    op.drop_table("products")

    if is_postgres:
        instance_status_enum.drop(bind, checkfirst=True)
        environment_enum.drop(bind, checkfirst=True)
