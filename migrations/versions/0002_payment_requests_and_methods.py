"""payment requests and saved payment methods

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19 00:00:00

"""
from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel
from alembic import op

revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "payment_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("request_id", sqlmodel.AutoString(), nullable=False),
        sa.Column("user_id", sqlmodel.AutoString(), nullable=False),
        sa.Column("amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("currency", sqlmodel.AutoString(length=8), nullable=False),
        sa.Column("description", sqlmodel.AutoString(length=500), nullable=False),
        sa.Column("requester_email", sqlmodel.AutoString(length=255), nullable=True),
        sa.Column("requester_phone", sqlmodel.AutoString(length=16), nullable=True),
        sa.Column("status", sqlmodel.AutoString(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_payment_requests_request_id"),
        "payment_requests",
        ["request_id"],
        unique=True,
    )
    op.create_index(
        op.f("ix_payment_requests_user_id"), "payment_requests", ["user_id"]
    )

    op.create_table(
        "payment_methods",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sqlmodel.AutoString(), nullable=False),
        sa.Column("method_type", sqlmodel.AutoString(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_payment_methods_user_id"), "payment_methods", ["user_id"])


def downgrade() -> None:
    op.drop_index(op.f("ix_payment_methods_user_id"), table_name="payment_methods")
    op.drop_table("payment_methods")
    op.drop_index(op.f("ix_payment_requests_user_id"), table_name="payment_requests")
    op.drop_index(
        op.f("ix_payment_requests_request_id"), table_name="payment_requests"
    )
    op.drop_table("payment_requests")
