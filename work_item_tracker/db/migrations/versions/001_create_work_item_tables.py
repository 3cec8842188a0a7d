"""Create work item tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

Identities, spaces with their areas and iterations, work item types,
work items with revisions and number sequences, and the link graph.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "identities",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("username", sa.String(length=256), nullable=False),
        sa.Column("full_name", sa.String(length=256), nullable=True),
        sa.Column("email", sa.String(length=256), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_identities_username", "identities", ["username"], unique=True)

    op.create_table(
        "spaces",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("name", sa.String(length=256), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("owner_id", sa.Uuid, sa.ForeignKey("identities.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_spaces_owner_id", "spaces", ["owner_id"])

    for table in ("areas", "iterations"):
        columns = [
            sa.Column("id", sa.Uuid, primary_key=True),
            sa.Column("space_id", sa.Uuid, sa.ForeignKey("spaces.id"), nullable=False),
            sa.Column("name", sa.String(length=256), nullable=False),
            sa.Column("path", sa.String(length=2048), nullable=False, server_default=""),
        ]
        if table == "iterations":
            columns += [
                sa.Column("start_at", sa.DateTime(timezone=True), nullable=True),
                sa.Column("end_at", sa.DateTime(timezone=True), nullable=True),
            ]
        columns.append(
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
        )
        op.create_table(table, *columns)
        op.create_index(f"ix_{table}_space_id", table, ["space_id"])

    op.create_table(
        "work_item_types",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("path", sa.String(length=1024), nullable=False, server_default=""),
        sa.Column("fields", sa.JSON, nullable=False),
        sa.Column("extra_fields_allowed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "work_items",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("type", sa.Uuid, sa.ForeignKey("work_item_types.id"), nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("execution_order", sa.Double, nullable=False),
        sa.Column("space_id", sa.Uuid, sa.ForeignKey("spaces.id"), nullable=False),
        sa.Column("number", sa.Integer, nullable=False),
        sa.Column("fields", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("commented_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("linked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("space_id", "number", name="uq_work_items_space_number"),
    )
    op.create_index("ix_work_items_type", "work_items", ["type"])
    op.create_index("ix_work_items_space_id", "work_items", ["space_id"])
    op.create_index("ix_work_items_space_order", "work_items", ["space_id", "execution_order"])

    op.create_table(
        "work_item_number_sequences",
        sa.Column("space_id", sa.Uuid, sa.ForeignKey("spaces.id"), primary_key=True),
        sa.Column("current_val", sa.Integer, nullable=False, server_default="0"),
    )

    op.create_table(
        "work_item_revisions",
        sa.Column("sequence", sa.BigInteger().with_variant(sa.Integer, "sqlite"), primary_key=True, autoincrement=True),
        sa.Column("work_item_id", sa.Uuid, nullable=False),
        sa.Column("actor_id", sa.Uuid, nullable=False),
        sa.Column(
            "kind",
            sa.Enum("create", "update", "delete", name="work_item_revision_kind"),
            nullable=False,
        ),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("snapshot", sa.JSON, nullable=False),
    )
    op.create_index("ix_work_item_revisions_work_item_id", "work_item_revisions", ["work_item_id"])
    op.create_index("ix_work_item_revisions_actor_id", "work_item_revisions", ["actor_id"])
    op.create_index("ix_work_item_revisions_item_at", "work_item_revisions", ["work_item_id", "at"])

    op.create_table(
        "work_item_link_types",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False, unique=True),
        sa.Column("forward_name", sa.String(length=128), nullable=False),
        sa.Column("reverse_name", sa.String(length=128), nullable=False),
        sa.Column("topology", sa.String(length=32), nullable=False, server_default="network"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_work_item_link_types_forward_name", "work_item_link_types", ["forward_name"])

    op.create_table(
        "work_item_links",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("source_id", sa.Uuid, sa.ForeignKey("work_items.id"), nullable=False),
        sa.Column("target_id", sa.Uuid, sa.ForeignKey("work_items.id"), nullable=False),
        sa.Column("link_type_id", sa.Uuid, sa.ForeignKey("work_item_link_types.id"), nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_work_item_links_source_id", "work_item_links", ["source_id"])
    op.create_index("ix_work_item_links_target_id", "work_item_links", ["target_id"])
    op.create_index("ix_work_item_links_link_type_id", "work_item_links", ["link_type_id"])

    op.create_table(
        "work_item_link_revisions",
        sa.Column("sequence", sa.BigInteger().with_variant(sa.Integer, "sqlite"), primary_key=True, autoincrement=True),
        sa.Column("link_id", sa.Uuid, nullable=False),
        sa.Column("source_id", sa.Uuid, nullable=False),
        sa.Column("target_id", sa.Uuid, nullable=False),
        sa.Column("link_type_id", sa.Uuid, nullable=False),
        sa.Column("actor_id", sa.Uuid, nullable=False),
        sa.Column(
            "kind",
            sa.Enum("create", "delete", name="work_item_link_revision_kind"),
            nullable=False,
        ),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_work_item_link_revisions_link_id", "work_item_link_revisions", ["link_id"])


def downgrade() -> None:
    op.drop_table("work_item_link_revisions")
    op.drop_table("work_item_links")
    op.drop_table("work_item_link_types")
    op.drop_table("work_item_revisions")
    op.drop_table("work_item_number_sequences")
    op.drop_table("work_items")
    op.drop_table("work_item_types")
    op.drop_table("iterations")
    op.drop_table("areas")
    op.drop_table("spaces")
    op.drop_table("identities")
    sa.Enum(name="work_item_link_revision_kind").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="work_item_revision_kind").drop(op.get_bind(), checkfirst=True)
