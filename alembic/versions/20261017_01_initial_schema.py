"""Initial media pipeline schema."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261017_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "guest_session",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("experience_id", sa.String(length=64), nullable=False),
        sa.Column("input_assets", sa.JSON(), nullable=False),
        sa.Column("result_media", sa.JSON()),
        sa.Column(
            "processing_state",
            sa.String(length=32),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("error_code", sa.String(length=64)),
        sa.Column("error_message", sa.Text()),
        sa.Column("job_id", sa.String(length=64)),
        sa.Column("job_status", sa.String(length=16)),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index("ix_guest_session_project_id", "guest_session", ["project_id"])
    op.create_index("ix_guest_session_job_id", "guest_session", ["job_id"])

    op.create_table(
        "experience_ai_config",
        sa.Column("experience_id", sa.String(length=64), primary_key=True),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("model", sa.String(length=128), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("reference_images", sa.JSON(), nullable=False),
        sa.Column("temperature", sa.Float()),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "job_history",
        sa.Column("job_id", sa.String(length=64), primary_key=True),
        sa.Column("session_id", sa.String(length=64), nullable=False),
        sa.Column("output_format", sa.String(length=16), nullable=False),
        sa.Column("aspect_ratio", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failure_code", sa.String(length=64)),
        sa.Column("failure_message", sa.Text()),
        sa.Column("result_path", sa.String(length=512)),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("started_at", sa.DateTime()),
        sa.Column("completed_at", sa.DateTime()),
    )
    op.create_index("ix_job_history_session_id", "job_history", ["session_id"])


def downgrade() -> None:
    op.drop_index("ix_job_history_session_id", table_name="job_history")
    op.drop_table("job_history")
    op.drop_table("experience_ai_config")
    op.drop_index("ix_guest_session_job_id", table_name="guest_session")
    op.drop_index("ix_guest_session_project_id", table_name="guest_session")
    op.drop_table("guest_session")
