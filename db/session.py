# NG-HEADER: Nombre de archivo: session.py
# NG-HEADER: Ubicación: db/session.py
# NG-HEADER: Descripción: Creación del engine asíncrono y sesiones de SQLAlchemy.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Sesión asíncrona para SQLAlchemy."""
import logging
import os
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tienda_core.config import settings

logger = logging.getLogger("tienda.db")

# ``DEBUG_SQL=1`` activa el modo ``echo`` para ver las consultas generadas.
ECHO = os.getenv("DEBUG_SQL", "0") == "1"

# Priorizar variable de entorno DB_URL si está definida (p. ej., tests la setean a :memory:)
db_url = os.getenv("DB_URL") or settings.db_url
kwargs: dict = {"echo": ECHO, "pool_pre_ping": True}
if db_url.startswith("sqlite+") and ":memory:" in db_url:
    # DB en memoria compartida y con nombre para múltiples conexiones
    # Referencia: https://www.sqlite.org/inmemorydb.html (URI mode)
    db_url = "sqlite+aiosqlite:///file:tiendamem?mode=memory&cache=shared"
    kwargs.update({"connect_args": {"uri": True}, "poolclass": StaticPool})

engine = create_async_engine(db_url, **kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


if engine.dialect.name == "sqlite":
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_fk_on(dbapi_conn, _record):  # pragma: no cover - depende del driver
        # SQLite no aplica ON DELETE CASCADE/SET NULL sin este pragma
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


_schema_initialized = False


async def _ensure_schema_if_memory() -> None:
    global _schema_initialized
    if _schema_initialized:
        return
    url = str(engine.url)
    if url.startswith("sqlite+") and (":memory:" in url or "mode=memory" in url):
        # Importar modelos para poblar la metadata
        import db.models  # noqa: F401
        from db.base import Base  # import local para evitar ciclos
        async with engine.begin() as conn:
            # Crear el esquema si no existe; no borrar datos ya cargados por tests
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Esquema en memoria inicializado")
    _schema_initialized = True


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    await _ensure_schema_if_memory()
    async with SessionLocal() as session:
        yield session

