"""image moderation schema (users, properties, property_images)

Revision ID: 0001_image_moderation
Revises: 
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_image_moderation"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="owner"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("cover_image", sa.String(length=1024), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_properties_owner_id", "properties", ["owner_id"])

    op.create_table(
        "property_images",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id", ondelete="CASCADE"), nullable=False),
        sa.Column("image_url", sa.String(length=1024), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_path", sa.String(length=512), nullable=True),
        sa.Column("original_filename", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("file_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mime_type", sa.String(length=100), nullable=False, server_default="image/jpeg"),
        sa.Column("moderation_status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("moderation_reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("moderation_reason_code", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("apis_used", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("confidence_scores", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("api_response", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_property_images_property_id", "property_images", ["property_id"])
    op.create_index("ix_property_images_moderation_status", "property_images", ["moderation_status"])


def downgrade() -> None:
    op.drop_index("ix_property_images_moderation_status", table_name="property_images")
    op.drop_index("ix_property_images_property_id", table_name="property_images")
    op.drop_table("property_images")
    op.drop_index("ix_properties_owner_id", table_name="properties")
    op.drop_table("properties")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
