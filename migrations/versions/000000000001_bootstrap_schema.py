"""
Bootstrap full schema using SQLAlchemy metadata.

Revision ID: 000000000001
Revises:
Create Date: 2026-10-19
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "000000000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create all tables defined in SQLAlchemy metadata."""
    from jornada.db.base import Base
    from jornada.db import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)


def downgrade():
    """Drop all tables defined in SQLAlchemy metadata."""
    from jornada.db.base import Base
    from jornada.db import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind)
