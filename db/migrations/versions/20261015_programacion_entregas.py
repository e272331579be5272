# NG-HEADER: Nombre de archivo: 20261015_programacion_entregas.py
# NG-HEADER: Ubicación: db/migrations/versions/20261015_programacion_entregas.py
# NG-HEADER: Descripción: Tabla programacion_entregas (repartidor, ventana horaria y estado del reparto)
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Programación de entregas

Bases creadas con el snapshot anterior a este modelo no tienen la tabla; en
bases nuevas el snapshot ya la crea y esta revisión no hace nada.
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "20261015_programacion_entregas"
down_revision: str | None = "20261001_esquema_base"
branch_labels: str | None = None
depends_on: str | None = None


def upgrade() -> None:
    bind = op.get_bind()
    if "programacion_entregas" in sa.inspect(bind).get_table_names():
        return
    op.create_table(
        "programacion_entregas",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("pedido_id", sa.Integer(), sa.ForeignKey("pedidos.id", ondelete="CASCADE"), nullable=False),
        sa.Column("repartidor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("fecha_programada", sa.Date(), nullable=False),
        sa.Column("hora_inicio_ventana", sa.Time(), nullable=False),
        sa.Column("hora_fin_ventana", sa.Time(), nullable=False),
        sa.Column("estado", sa.String(20), nullable=False),
        sa.Column("orden_ruta", sa.Integer()),
        sa.Column("notas_repartidor", sa.Text()),
        sa.Column("hora_salida", sa.DateTime()),
        sa.Column("hora_llegada", sa.DateTime()),
        sa.Column("motivo_fallo", sa.String(255)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "estado IN ('programado','en_ruta','entregado','fallido','reprogramado')",
            name="ck_programacion_entregas_estado",
        ),
        sa.CheckConstraint("hora_fin_ventana > hora_inicio_ventana", name="ck_programacion_entregas_ventana"),
    )
    op.create_index(
        "ix_programacion_entregas_repartidor_fecha",
        "programacion_entregas",
        ["repartidor_id", "fecha_programada"],
    )


def downgrade() -> None:
    op.drop_index("ix_programacion_entregas_repartidor_fecha", table_name="programacion_entregas")
    op.drop_table("programacion_entregas")
