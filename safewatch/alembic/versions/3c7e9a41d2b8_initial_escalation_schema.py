"""initial escalation pipeline schema

Revision ID: 3c7e9a41d2b8
Revises:
Create Date: 2026-10-17 09:12:44.318205

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c7e9a41d2b8'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "subjects",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("display_name", sa.String(150), nullable=False),
        sa.Column("age_range", sa.String(20), nullable=False),
        sa.Column("monitoring_enabled", sa.Boolean(), nullable=False),
        sa.Column("guardian_email", sa.String(255), nullable=False),
        sa.Column("share_with_educator", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_subjects_monitoring_enabled", "subjects", ["monitoring_enabled"])

    op.create_table(
        "chats",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("subject_id", sa.String(36), sa.ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("is_group", sa.Boolean(), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_chats_subject_id", "chats", ["subject_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("chat_id", sa.String(36), sa.ForeignKey("chats.id", ondelete="CASCADE"), nullable=False),
        sa.Column("subject_id", sa.String(36), sa.ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sender_role", sa.String(10), nullable=False),
        sa.Column("sender_label", sa.String(255), nullable=False),
        sa.Column("modality", sa.String(10), nullable=False),
        sa.Column("text_content", sa.Text(), nullable=True),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("transcript", sa.Text(), nullable=True),
        sa.Column("media_url", sa.String(2048), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_messages_chat_id", "messages", ["chat_id"])
    op.create_index("ix_messages_subject_id", "messages", ["subject_id"])
    op.create_index("ix_messages_sent_at", "messages", ["sent_at"])
    op.create_index("ix_messages_created_at", "messages", ["created_at"])

    op.create_table(
        "scan_checkpoints",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("chat_id", sa.String(36), sa.ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("last_scanned_at", sa.DateTime(), nullable=True),
        sa.Column("last_smart_at", sa.DateTime(), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(), nullable=True),
        sa.Column("scan_interval_minutes", sa.Integer(), server_default="10", nullable=False),
        sa.Column("pending_batch_ids", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), server_default="0", nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "small_signals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("message_id", sa.String(36), sa.ForeignKey("messages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("chat_id", sa.String(36), sa.ForeignKey("chats.id", ondelete="CASCADE"), nullable=False),
        sa.Column("risk_score", sa.Integer(), nullable=False),
        sa.Column("risk_codes", sa.JSON(), nullable=False),
        sa.Column("escalate", sa.Boolean(), nullable=False),
        sa.Column("model_used", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_small_signals_message_id", "small_signals", ["message_id"])
    op.create_index("ix_small_signals_chat_id", "small_signals", ["chat_id"])

    op.create_table(
        "smart_decisions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("chat_id", sa.String(36), sa.ForeignKey("chats.id", ondelete="CASCADE"), nullable=False),
        sa.Column("subject_id", sa.String(36), sa.ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("timeframe_from", sa.DateTime(), nullable=False),
        sa.Column("timeframe_to", sa.DateTime(), nullable=False),
        sa.Column("final_risk_score", sa.Integer(), nullable=False),
        sa.Column("threat_type", sa.String(30), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("action", sa.String(10), nullable=False),
        sa.Column("key_reasons", sa.JSON(), nullable=False),
        sa.Column("evidence_message_ids", sa.JSON(), nullable=False),
        sa.Column("model_used", sa.String(100), nullable=False),
        sa.Column("used_fallback", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_smart_decisions_chat_id", "smart_decisions", ["chat_id"])
    op.create_index("ix_smart_decisions_subject_id", "smart_decisions", ["subject_id"])

    op.create_table(
        "findings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("subject_id", sa.String(36), sa.ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("chat_id", sa.String(36), sa.ForeignKey("chats.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "smart_decision_id", sa.String(36),
            sa.ForeignKey("smart_decisions.id", ondelete="SET NULL"), nullable=True, unique=True,
        ),
        sa.Column("threat_detected", sa.Boolean(), nullable=False),
        sa.Column("risk_level", sa.String(10), nullable=False),
        sa.Column("threat_types", sa.JSON(), nullable=False),
        sa.Column("explanation", sa.Text(), nullable=False),
        sa.Column("handled", sa.Boolean(), nullable=False),
        sa.Column("handled_at", sa.DateTime(), nullable=True),
        sa.Column("notified_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_findings_subject_id", "findings", ["subject_id"])
    op.create_index("ix_findings_handled", "findings", ["handled"])

    op.create_table(
        "usage_meters",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("subject_id", sa.String(36), sa.ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("month", sa.String(7), nullable=False),
        sa.Column("est_cost_usd", sa.Numeric(12, 6), nullable=False),
        sa.Column("small_calls", sa.Integer(), nullable=False),
        sa.Column("smart_calls", sa.Integer(), nullable=False),
        sa.Column("fallback_calls", sa.Integer(), nullable=False),
        sa.Column("caption_calls", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("subject_id", "month", name="uq_usage_meter_subject_month"),
    )

    op.create_table(
        "model_call_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("function_name", sa.String(50), nullable=False),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("input_tokens", sa.Integer(), nullable=False),
        sa.Column("output_tokens", sa.Integer(), nullable=False),
        sa.Column("latency_ms", sa.Integer(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("subject_id", sa.String(36), sa.ForeignKey("subjects.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("model_call_logs")
    op.drop_table("usage_meters")
    op.drop_index("ix_findings_handled", table_name="findings")
    op.drop_index("ix_findings_subject_id", table_name="findings")
    op.drop_table("findings")
    op.drop_index("ix_smart_decisions_subject_id", table_name="smart_decisions")
    op.drop_index("ix_smart_decisions_chat_id", table_name="smart_decisions")
    op.drop_table("smart_decisions")
    op.drop_index("ix_small_signals_chat_id", table_name="small_signals")
    op.drop_index("ix_small_signals_message_id", table_name="small_signals")
    op.drop_table("small_signals")
    op.drop_table("scan_checkpoints")
    op.drop_index("ix_messages_created_at", table_name="messages")
    op.drop_index("ix_messages_sent_at", table_name="messages")
    op.drop_index("ix_messages_subject_id", table_name="messages")
    op.drop_index("ix_messages_chat_id", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_chats_subject_id", table_name="chats")
    op.drop_table("chats")
    op.drop_index("ix_subjects_monitoring_enabled", table_name="subjects")
    op.drop_table("subjects")
