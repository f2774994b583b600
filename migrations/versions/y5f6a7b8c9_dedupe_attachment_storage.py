"""Allow deduplicated attachments to share a storage key.

Revision ID: y5f6a7b8c9
Revises: x4e5f6a7b8
Create Date: 2026-04-02
"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "y5f6a7b8c9"
down_revision: Union[str, Sequence[str], None] = "x4e5f6a7b8"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLite reflects the original UNIQUE(storage_key) without a name.
NAMING = {"uq": "uq_%(table_name)s_%(column_0_name)s"}


def upgrade() -> None:
    insp = inspect(op.get_bind())
    uniques = [uc for uc in insp.get_unique_constraints("attachments") if uc["column_names"] == ["storage_key"]]

    with op.batch_alter_table("attachments", naming_convention=NAMING) as batch_op:
        for uc in uniques:
            batch_op.drop_constraint(uc["name"] or "uq_attachments_storage_key", type_="unique")
        batch_op.create_index("idx_attachments_sha256", ["tenant_id", "sha256"])
        batch_op.create_index("idx_attachments_storage_key", ["storage_key"])


def downgrade() -> None:
    with op.batch_alter_table("attachments", naming_convention=NAMING) as batch_op:
        batch_op.drop_index("idx_attachments_storage_key")
        batch_op.drop_index("idx_attachments_sha256")
        batch_op.create_unique_constraint("uq_attachments_storage_key", ["storage_key"])
