"""initial schema

Revision ID: 20251000_init_schema
Revises:
Create Date: 2025-10-01 00:00:00

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '20251000_init_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Bootstraps an empty database from the model metadata; later revisions are incremental.
    from app.models import Base
    Base.metadata.create_all(op.get_bind())


def downgrade() -> None:
    from app.models import Base
    Base.metadata.drop_all(op.get_bind())
