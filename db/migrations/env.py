# NG-HEADER: Nombre de archivo: env.py
# NG-HEADER: Ubicación: db/migrations/env.py
# NG-HEADER: Descripción: Script de entorno Alembic: carga .env, prepara logging y ejecuta migraciones
# NG-HEADER: Lineamientos: Ver AGENTS.md
import os
import logging
import traceback
from datetime import datetime
from pathlib import Path
from logging.config import fileConfig
from urllib.parse import urlsplit

from alembic import context
from alembic.script import ScriptDirectory
from alembic.runtime.migration import MigrationContext
from sqlalchemy import engine_from_config, String
from sqlalchemy.pool import NullPool
from dotenv import load_dotenv

from db.base import Base
import db.models  # noqa: F401
from tienda_core.config import settings

logger = logging.getLogger("alembic.env")

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# === Logging a archivo por ejecución ===
log_level = os.getenv("ALEMBIC_LOG_LEVEL", "INFO").upper()
logs_dir = Path("logs") / "migrations"
logs_dir.mkdir(parents=True, exist_ok=True)
ts = datetime.now().strftime("%Y%m%d_%H%M%S")
log_file = logs_dir / f"alembic_{ts}.log"
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.FileHandler(log_file),
        logging.StreamHandler(),
    ],
)
logger.info("Archivo de log: %s", log_file)

script = ScriptDirectory.from_config(config)

# === DB_URL desde .env en la raíz del repo ===
REPO_ROOT = Path(__file__).resolve().parents[2]
dotenv_path = REPO_ROOT / ".env"
load_dotenv(dotenv_path)
logger.info("Archivo .env: %s (exists=%s)", dotenv_path, dotenv_path.exists())

db_url = os.getenv("DB_URL") or settings.db_url
if not db_url:
    raise RuntimeError("DB_URL no definida en entorno/.env")

# Alembic trabaja con drivers síncronos
db_url = db_url.replace("+aiosqlite", "").replace("+asyncpg", "+psycopg")


def _url_segura(url: str) -> str:
    parts = urlsplit(url)
    netloc = parts.netloc
    if "@" in netloc and ":" in netloc.split("@")[0]:
        user = netloc.split("@")[0].split(":")[0]
        host = netloc.split("@")[1]
        netloc = f"{user}:***@{host}"
    return parts._replace(netloc=netloc).geturl()


logger.info("DB_URL: %s", _url_segura(db_url))

target_metadata = Base.metadata


def _coerce_bool(val) -> bool:
    return str(val).lower() in {"1", "true", "t", "yes", "y", "on"}


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        render_as_batch=db_url.startswith("sqlite"),
        version_table_column_type=String(255),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    x_args = context.get_x_argument(as_dictionary=True)
    log_sql = _coerce_bool(x_args.get("log_sql"))
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = db_url
    if log_sql:
        section["sqlalchemy.echo"] = "true"
    connectable = engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=NullPool,
        future=True,
    )
    with connectable.connect() as connection:
        current_rev = MigrationContext.configure(connection).get_current_revision()
        logger.info("Revisión actual: %s", current_rev)
        logger.info("Heads: %s", ", ".join(script.get_heads()))

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
            version_table_column_type=String(255),
        )

        try:
            with context.begin_transaction():
                context.run_migrations()
            logger.info("Migraciones aplicadas con éxito")
        except Exception:  # pragma: no cover - logging
            logger.error("Error al ejecutar migraciones:\n%s", traceback.format_exc())
            raise


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
