# NG-HEADER: Nombre de archivo: base.py
# NG-HEADER: Ubicación: db/base.py
# NG-HEADER: Descripción: Base declarativa compartida por los modelos de la tienda.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Declarative base para los modelos de la tienda."""
from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base

# Nombres estables para constraints (Alembic los usa en upgrade/downgrade)
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

Base = declarative_base(metadata=MetaData(naming_convention=NAMING_CONVENTION))
