"""Initial schema with jobs, side_effects and dead_letters tables

Revision ID: 001
Revises: 
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enums using raw SQL with IF NOT EXISTS
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE job_state AS ENUM ('waiting', 'active', 'delayed', 'completed', 'failed');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.execute("""
        DO $$ BEGIN
            CREATE TYPE backoff_kind AS ENUM ('fixed', 'exponential');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.execute("""
        DO $$ BEGIN
            CREATE TYPE side_effect_state AS ENUM ('reserved', 'done');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("queue", sa.String(255), nullable=False),
        sa.Column("type", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "state",
            postgresql.ENUM(
                "waiting", "active", "delayed", "completed", "failed",
                name="job_state",
                create_type=False,
            ),
            nullable=False,
            server_default="waiting",
        ),
        sa.Column("attempts_made", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column(
            "backoff_kind",
            postgresql.ENUM("fixed", "exponential", name="backoff_kind", create_type=False),
            nullable=False,
            server_default="fixed",
        ),
        sa.Column("backoff_delay_ms", sa.Integer, nullable=False, server_default="10000"),
        sa.Column("lease_owner", sa.String(255), nullable=True),
        sa.Column("lease_token", sa.String(36), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "available_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_reason", sa.Text, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    # Create indexes
    op.create_index("ix_jobs_queue", "jobs", ["queue"])
    op.create_index("ix_jobs_state", "jobs", ["state"])

    # Create partial index for queue polling
    op.execute("""
        CREATE INDEX ix_jobs_queue_poll
        ON jobs (queue, available_at)
        WHERE state IN ('waiting', 'delayed')
    """)

    # Create partial index for lease expiry
    op.execute("""
        CREATE INDEX ix_jobs_lease_expiry
        ON jobs (lease_expires_at)
        WHERE state = 'active'
    """)

    # Create side effect reservations table
    op.create_table(
        "side_effects",
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column(
            "value",
            postgresql.ENUM("reserved", "done", name="side_effect_state", create_type=False),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("key"),
    )

    # Create dead letter store
    op.create_table(
        "dead_letters",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("original_job_id", sa.String(64), nullable=False),
        sa.Column("job_type", sa.String(255), nullable=False),
        sa.Column("queue", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("failed_reason", sa.Text, nullable=False),
        sa.Column("attempts_made", sa.Integer, nullable=False),
        sa.Column(
            "failed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("replay_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_replayed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_replay_job_id", sa.String(64), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    # A job is escalated at most once
    op.create_unique_constraint(
        "uq_dead_letters_original_job_id",
        "dead_letters",
        ["original_job_id"],
    )
    op.create_index("ix_dead_letters_failed_at", "dead_letters", ["failed_at"])


def downgrade() -> None:
    # Drop indexes
    op.drop_index("ix_dead_letters_failed_at")
    op.drop_constraint("uq_dead_letters_original_job_id", "dead_letters")
    op.execute("DROP INDEX IF EXISTS ix_jobs_lease_expiry")
    op.execute("DROP INDEX IF EXISTS ix_jobs_queue_poll")
    op.drop_index("ix_jobs_state")
    op.drop_index("ix_jobs_queue")

    # Drop tables
    op.drop_table("dead_letters")
    op.drop_table("side_effects")
    op.drop_table("jobs")

    # Drop enums
    op.execute("DROP TYPE IF EXISTS side_effect_state")
    op.execute("DROP TYPE IF EXISTS backoff_kind")
    op.execute("DROP TYPE IF EXISTS job_state")
