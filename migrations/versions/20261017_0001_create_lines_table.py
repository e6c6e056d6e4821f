"""Create line cards and their review history."""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "lines",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("scheme", sa.String(length=16), nullable=False),
        sa.Column("due", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_review", sa.DateTime(timezone=True), nullable=True),
        sa.Column("display", sa.Integer(), server_default=sa.text("3"), nullable=False),
        sa.Column("ease", sa.Float(), nullable=True),
        sa.Column("streak", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_lines_due", "lines", ("due",))

    op.create_table(
        "line_reviews",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("line_id", sa.String(length=64), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("scheme", sa.String(length=16), nullable=False),
        sa.Column(
            "reviewed_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ("line_id",),
            ("lines.id",),
            name="fk_line_reviews_line_id_lines",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_line_reviews_line_id", "line_reviews", ("line_id",))


def downgrade() -> None:
    op.drop_index("ix_line_reviews_line_id", table_name="line_reviews")
    op.drop_table("line_reviews")
    op.drop_index("ix_lines_due", table_name="lines")
    op.drop_table("lines")
