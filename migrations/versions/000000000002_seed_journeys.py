"""
Seed the built-in journeys (sales_order, presence).

Revision ID: 000000000002
Revises: 000000000001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "000000000002"
down_revision = "000000000001"
branch_labels = None
depends_on = None

journeys = sa.table(
    "journeys",
    sa.column("key", sa.String),
    sa.column("name", sa.Text),
    sa.column("default_state_machine_json", sa.JSON),
    sa.column("created_at", sa.DateTime(timezone=True)),
)


def upgrade():
    from jornada.core.journey_workflow import SALES_ORDER_STATE_MACHINE
    from jornada.core.presence_workflow import PRESENCE_STATE_MACHINE
    from jornada.core.timeutils import utcnow

    bind = op.get_bind()
    existing = {row[0] for row in bind.execute(sa.text("SELECT key FROM journeys"))}
    rows = [
        {"key": "sales_order", "name": "Pedido (WhatsApp + Foto)", "default_state_machine_json": SALES_ORDER_STATE_MACHINE},
        {"key": "presence", "name": "Presença (Ponto Digital)", "default_state_machine_json": PRESENCE_STATE_MACHINE},
    ]
    rows = [dict(row, created_at=utcnow()) for row in rows if row["key"] not in existing]
    if rows:
        op.bulk_insert(journeys, rows)


def downgrade():
    op.execute(sa.text("DELETE FROM journeys WHERE key IN ('sales_order', 'presence')"))
