"""Calendar sources, events, mapping rules and ignore entries.

Revision ID: 20261019_calendar_initial
Revises: 20261019_core_initial
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_calendar_initial"
down_revision: Union[str, None] = "20261019_core_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the calendar mapping tables."""
    op.create_table(
        "calendar_connection",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("account_email", sa.String(length=255), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("TRUE"), nullable=False),
        sa.Column("error_message", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "calendar_source",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("child_id", sa.String(length=36), nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False, comment="google, ics"),
        sa.Column("provider_calendar_id", sa.String(length=1024), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("color", sa.String(length=16), nullable=True),
        sa.Column("is_primary", sa.Boolean(), server_default=sa.text("FALSE"), nullable=False),
        sa.Column("active", sa.Boolean(), server_default=sa.text("TRUE"), nullable=False),
        sa.Column("connection_id", sa.String(length=36), nullable=True),
        sa.Column("sync_cursor", sa.String(length=512), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
        sa.Column("last_sync_error", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["child_id"], ["child.id"]),
        sa.ForeignKeyConstraint(["connection_id"], ["calendar_connection.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("child_id", "provider", "provider_calendar_id", name="uq_calendar_source_child_calendar"),
    )
    op.create_index("ix_calendar_source_child_id", "calendar_source", ["child_id"])

    op.create_table(
        "calendar_mapping_rule",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("child_id", sa.String(length=36), nullable=False),
        sa.Column("calendar_source_id", sa.String(length=36), nullable=False),
        sa.Column("match_type", sa.String(length=16), nullable=False, comment="event_id, title_exact"),
        sa.Column("match_value", sa.String(length=255), nullable=False),
        sa.Column("home_id", sa.String(length=36), nullable=False),
        sa.Column("resulting_event_type", sa.String(length=32), server_default="home_day", nullable=False),
        sa.Column("auto_confirm", sa.Boolean(), server_default=sa.text("FALSE"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["child_id"], ["child.id"]),
        sa.ForeignKeyConstraint(["calendar_source_id"], ["calendar_source.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["home_id"], ["home.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "child_id",
            "calendar_source_id",
            "match_type",
            "match_value",
            name="uq_calendar_mapping_rule_key",
        ),
    )
    op.create_index("ix_calendar_mapping_rule_child_id", "calendar_mapping_rule", ["child_id"])
    op.create_index("ix_calendar_mapping_rule_calendar_source_id", "calendar_mapping_rule", ["calendar_source_id"])

    op.create_table(
        "calendar_ignore_entry",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("child_id", sa.String(length=36), nullable=False),
        sa.Column("calendar_source_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["child_id"], ["child.id"]),
        sa.ForeignKeyConstraint(["calendar_source_id"], ["calendar_source.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("child_id", "calendar_source_id", "title", name="uq_calendar_ignore_entry_key"),
    )
    op.create_index("ix_calendar_ignore_entry_child_id", "calendar_ignore_entry", ["child_id"])
    op.create_index("ix_calendar_ignore_entry_calendar_source_id", "calendar_ignore_entry", ["calendar_source_id"])

    op.create_table(
        "calendar_event",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("calendar_source_id", sa.String(length=36), nullable=False),
        sa.Column("child_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=512), nullable=True),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("all_day", sa.Boolean(), server_default=sa.text("FALSE"), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("recurrence_rule", sa.String(length=512), nullable=True),
        sa.Column("external_updated_at", sa.DateTime(), nullable=True),
        sa.Column("candidate_reason", sa.String(length=16), nullable=True, comment="all_day, multi_day, recurring"),
        sa.Column(
            "classification",
            sa.String(length=16),
            server_default="unclassified",
            nullable=False,
            comment="unclassified, home_stay, ignored",
        ),
        sa.Column("assigned_home_id", sa.String(length=36), nullable=True),
        sa.Column("mapping_rule_id", sa.Integer(), nullable=True),
        sa.Column("proposed_home_id", sa.String(length=36), nullable=True),
        sa.Column("confirmed_rule_id", sa.Integer(), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.text("FALSE"), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["calendar_source_id"], ["calendar_source.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["child_id"], ["child.id"]),
        sa.ForeignKeyConstraint(["assigned_home_id"], ["home.id"]),
        sa.ForeignKeyConstraint(["proposed_home_id"], ["home.id"]),
        sa.ForeignKeyConstraint(["mapping_rule_id"], ["calendar_mapping_rule.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["confirmed_rule_id"], ["calendar_mapping_rule.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("calendar_source_id", "external_id", name="uq_calendar_event_source_external"),
    )
    op.create_index("ix_calendar_event_calendar_source_id", "calendar_event", ["calendar_source_id"])
    op.create_index("ix_calendar_event_child_id", "calendar_event", ["child_id"])
    op.create_index("ix_calendar_event_source_title", "calendar_event", ["calendar_source_id", "title"])
    op.create_index("ix_calendar_event_child_start", "calendar_event", ["child_id", "start_time"])
    op.create_index("ix_calendar_event_child_classification", "calendar_event", ["child_id", "classification"])


def downgrade() -> None:
    """Drop the calendar mapping tables."""
    op.drop_index("ix_calendar_event_child_classification", table_name="calendar_event")
    op.drop_index("ix_calendar_event_child_start", table_name="calendar_event")
    op.drop_index("ix_calendar_event_source_title", table_name="calendar_event")
    op.drop_index("ix_calendar_event_child_id", table_name="calendar_event")
    op.drop_index("ix_calendar_event_calendar_source_id", table_name="calendar_event")
    op.drop_table("calendar_event")
    op.drop_index("ix_calendar_ignore_entry_calendar_source_id", table_name="calendar_ignore_entry")
    op.drop_index("ix_calendar_ignore_entry_child_id", table_name="calendar_ignore_entry")
    op.drop_table("calendar_ignore_entry")
    op.drop_index("ix_calendar_mapping_rule_calendar_source_id", table_name="calendar_mapping_rule")
    op.drop_index("ix_calendar_mapping_rule_child_id", table_name="calendar_mapping_rule")
    op.drop_table("calendar_mapping_rule")
    op.drop_index("ix_calendar_source_child_id", table_name="calendar_source")
    op.drop_table("calendar_source")
    op.drop_table("calendar_connection")
