"""In-app feedback"""
from alembic import op
import sqlalchemy as sa

revision = "0002_feedback"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "feedback",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("user_id", sa.String, nullable=True),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("contact", sa.String(255), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_feedback_user", "feedback", ["user_id"])


def downgrade() -> None:
    op.drop_index("idx_feedback_user", table_name="feedback")
    op.drop_table("feedback")
