# NG-HEADER: Nombre de archivo: runserver.py
# NG-HEADER: Ubicación: services/runserver.py
# NG-HEADER: Descripción: Arranque local de la API de la tienda con Uvicorn.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Servidor de desarrollo.

En Windows fuerza la política de event loop Selector antes de iniciar
Uvicorn; psycopg async no funciona con Proactor.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

import uvicorn

from tienda_core.config import settings

logger = logging.getLogger("tienda.runserver")


def _apply_windows_loop_policy() -> None:
    if sys.platform.startswith("win"):
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


def main() -> None:
    _apply_windows_loop_policy()
    host = os.getenv("TIENDA_HOST", "127.0.0.1")
    port = int(os.getenv("TIENDA_PORT", "8000"))
    log_level = os.getenv("LOG_LEVEL", "info").lower()
    logger.info("Iniciando API en %s:%s (env=%s)", host, port, settings.env)
    uvicorn.run(
        "services.api:app",
        host=host,
        port=port,
        reload=settings.env == "dev",
        log_level=log_level,
        access_log=True,
    )


if __name__ == "__main__":
    main()
