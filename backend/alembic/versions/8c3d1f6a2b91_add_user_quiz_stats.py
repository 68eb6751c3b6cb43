"""add quiz aggregates to users

Revision ID: 8c3d1f6a2b91
Revises: 5e1c2a9b7d40
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "8c3d1f6a2b91"
down_revision = "5e1c2a9b7d40"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("users", sa.Column("quizzes_taken", sa.Integer(), nullable=False, server_default="0"))
    op.add_column("users", sa.Column("total_score", sa.Integer(), nullable=False, server_default="0"))
    op.add_column("users", sa.Column("average_score", sa.Integer(), nullable=False, server_default="0"))
    op.add_column("users", sa.Column("last_quiz_date", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("users") as batch_op:
        batch_op.drop_column("last_quiz_date")
        batch_op.drop_column("average_score")
        batch_op.drop_column("total_score")
        batch_op.drop_column("quizzes_taken")
