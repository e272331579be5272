# NG-HEADER: Nombre de archivo: 20261001_esquema_base.py
# NG-HEADER: Ubicación: db/migrations/versions/20261001_esquema_base.py
# NG-HEADER: Descripción: Migración inicial (snapshot del esquema de la tienda)
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Esquema base de la tienda

Alcance:
    - Usuarios, clientes y ubigeo (departamentos, provincias, distritos).
    - Catálogo, variaciones y adicionales.
    - Zonas de reparto con costos por distancia, horarios y excepciones.
    - Direcciones, pedidos, pagos, cuotas de crédito, seguimiento,
      inventario y auditoría.

Se crea mediante Base.metadata.create_all. Cambios posteriores en modelos
requieren migraciones incrementales normales.
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

from db.base import Base  # type: ignore
import db.models  # noqa: F401

revision = "20261001_esquema_base"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    # Si la tabla de zonas ya existe asumimos snapshot aplicado
    if "zonas_reparto" in inspector.get_table_names():
        return

    Base.metadata.create_all(bind)


def downgrade() -> None:
    bind = op.get_bind()
    Base.metadata.drop_all(bind)
