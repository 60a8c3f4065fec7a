"""Add winery location columns to producers.

Revision ID: 0002
Revises: 0001
Create Date: 2026-02-01

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("producers") as batch_op:
        batch_op.add_column(sa.Column("address", sa.String(500), nullable=True))
        batch_op.add_column(sa.Column("city", sa.String(255), nullable=True))
        batch_op.add_column(sa.Column("postal_code", sa.String(20), nullable=True))
        batch_op.add_column(sa.Column("latitude", sa.Float(), nullable=True))
        batch_op.add_column(sa.Column("longitude", sa.Float(), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("producers") as batch_op:
        batch_op.drop_column("longitude")
        batch_op.drop_column("latitude")
        batch_op.drop_column("postal_code")
        batch_op.drop_column("city")
        batch_op.drop_column("address")
