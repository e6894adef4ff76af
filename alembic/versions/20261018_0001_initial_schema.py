"""Initial harness schema: tasks, audit trail, lessons, checkpoints, sessions."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("thread_id", sa.String(), nullable=False),
        sa.Column("request_text", sa.Text(), nullable=False),
        sa.Column("intent", sa.String(), nullable=False),
        sa.Column("autonomy_level", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("summary", sa.String(), nullable=False, server_default=""),
        sa.Column("execution_prompt", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("platform", sa.String(), nullable=True),
        sa.Column("clarify_question", sa.Text(), nullable=True),
        sa.Column("clarify_answer", sa.Text(), nullable=True),
        sa.Column("pipeline_job_id", sa.String(), nullable=True),
        sa.Column("agent_session_id", sa.String(), nullable=True),
        sa.Column("result_text", sa.Text(), nullable=True),
        sa.Column("error_summary", sa.Text(), nullable=True),
        sa.Column("cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("tool_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_tasks_thread_id", "tasks", ["thread_id"])
    op.create_index("ix_tasks_intent", "tasks", ["intent"])
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("idx_tasks_status_created", "tasks", ["status", "created_at"])

    op.create_table(
        "execution_records",
        sa.Column("record_id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("tool_use_id", sa.String(), nullable=False),
        sa.Column("tool_name", sa.String(), nullable=False),
        sa.Column("tool_input", sa.Text(), nullable=True),
        sa.Column("tool_result", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("record_id"),
    )
    op.create_index("ix_execution_records_session_id", "execution_records", ["session_id"])
    op.create_index("ix_execution_records_tool_use_id", "execution_records", ["tool_use_id"])
    op.create_index("ix_execution_records_tool_name", "execution_records", ["tool_name"])
    op.create_index("ix_execution_records_status", "execution_records", ["status"])
    op.create_index(
        "idx_execution_records_session_time",
        "execution_records",
        ["session_id", "started_at"],
    )

    op.create_table(
        "lessons",
        sa.Column("lesson_id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("execution_record_id", sa.Integer(), nullable=True),
        sa.Column("tool_name", sa.String(), nullable=False),
        sa.Column("error_pattern", sa.Text(), nullable=False),
        sa.Column("reflection", sa.Text(), nullable=False),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("severity", sa.String(), nullable=False, server_default="medium"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("lesson_id"),
    )
    op.create_index("ix_lessons_session_id", "lessons", ["session_id"])
    op.create_index("ix_lessons_tool_name", "lessons", ["tool_name"])
    op.create_index("idx_lessons_created", "lessons", ["created_at"])

    op.create_table(
        "phase_artifacts",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("phase_name", sa.String(), nullable=False),
        sa.Column("platform", sa.String(), nullable=False),
        sa.Column("artifact", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id", "phase_name"),
    )
    op.create_index("ix_phase_artifacts_platform", "phase_artifacts", ["platform"])

    op.create_table(
        "agent_sessions",
        sa.Column("thread_id", sa.String(), nullable=False),
        sa.Column("agent_session_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("thread_id"),
    )


def downgrade() -> None:
    op.drop_table("agent_sessions")
    op.drop_table("phase_artifacts")
    op.drop_table("lessons")
    op.drop_table("execution_records")
    op.drop_table("tasks")
