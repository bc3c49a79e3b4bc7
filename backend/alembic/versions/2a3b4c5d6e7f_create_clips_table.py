"""Create clips table."""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "2a3b4c5d6e7f"
down_revision: Union[str, Sequence[str], None] = "1f2e3d4c5b6a"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create clips table."""
    op.create_table(
        "clips",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=False),
        sa.Column("variant_id", sa.String(length=10), nullable=False),
        sa.Column("preset_key", sa.String(length=50), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("ui_state", sa.String(length=30), nullable=False),
        sa.Column("ui_message", sa.Text(), nullable=True),
        sa.Column("ui_started_at", sa.DateTime(), nullable=True),
        sa.Column("ui_last_progress_at", sa.DateTime(), nullable=True),
        sa.Column("script_spoken", sa.Text(), nullable=True),
        sa.Column("on_screen_text_json", sa.JSON(), nullable=True),
        sa.Column("video_prompt", sa.Text(), nullable=True),
        sa.Column("voice_url", sa.Text(), nullable=True),
        sa.Column("raw_video_url", sa.Text(), nullable=True),
        sa.Column("final_url", sa.Text(), nullable=True),
        sa.Column("provider", sa.String(length=50), nullable=True),
        sa.Column("provider_task_id", sa.String(length=255), nullable=True),
        sa.Column("image_prompt", sa.Text(), nullable=True),
        sa.Column("image_type", sa.String(length=20), nullable=True),
        sa.Column("aspect_ratio", sa.String(length=10), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("winner", sa.Boolean(), nullable=False),
        sa.Column("killed", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("charged_state", sa.String(length=20), nullable=False),
        sa.Column("refunded", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("batch_id", "variant_id", name="uq_clips_batch_variant"),
    )
    op.create_index(op.f("ix_clips_batch_id"), "clips", ["batch_id"], unique=False)
    op.create_index(op.f("ix_clips_status"), "clips", ["status"], unique=False)


def downgrade() -> None:
    """Drop clips table."""
    op.drop_index(op.f("ix_clips_status"), table_name="clips")
    op.drop_index(op.f("ix_clips_batch_id"), table_name="clips")
    op.drop_table("clips")
