# NG-HEADER: Nombre de archivo: config.py
# NG-HEADER: Ubicación: tienda_core/config.py
# NG-HEADER: Descripción: Configuración central de la tienda (entorno, base de datos y reglas comerciales).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Configuración central de la tienda."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Marcador que debe sustituirse en producción
ADMIN_API_KEY_PLACEHOLDER = "REEMPLAZAR_ADMIN_API_KEY"

# Carga automática de variables definidas en .env
load_dotenv()


def _expand_local(origins: list[str]) -> list[str]:
    """Duplica ``localhost``/``127.0.0.1`` para evitar errores de CORS en desarrollo."""
    out: set[str] = set()
    for o in origins:
        o = o.strip()
        if not o:
            continue
        out.add(o)
        if o.startswith("http://localhost:"):
            out.add(o.replace("http://localhost:", "http://127.0.0.1:"))
        if o.startswith("http://127.0.0.1:"):
            out.add(o.replace("http://127.0.0.1:", "http://localhost:"))
    return list(out)


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default) or default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger("tienda.config").warning("%s inválido (%r); se usa %s", name, raw, default)
        return float(default)


@dataclass
class Settings:
    """Parámetros de configuración leídos de variables de entorno."""

    env: str = os.getenv("ENV", "dev")
    db_url: str = os.getenv("DB_URL", "")
    # Soporte para componer la URL si no se pasa DB_URL directamente
    db_host: str = os.getenv("DB_HOST", "localhost")
    db_port: str = os.getenv("DB_PORT", "5432")
    db_name: str = os.getenv("DB_NAME", "tienda")
    db_user: str = os.getenv("DB_USER", "")
    db_pass: str = os.getenv("DB_PASS", "")
    admin_api_key: str = os.getenv("ADMIN_API_KEY", ADMIN_API_KEY_PLACEHOLDER)
    allowed_origins: list[str] = field(default_factory=list)

    # Reglas comerciales
    moneda: str = os.getenv("MONEDA", "PEN")
    igv_porcentaje: float = _float_env("IGV_PORCENTAJE", "18")
    envio_gratis_monto: float = _float_env("ENVIO_GRATIS_MONTO", "150")
    mora_porcentaje: float = _float_env("MORA_PORCENTAJE", "10")
    interes_credito_mensual: float = _float_env("INTERES_CREDITO_MENSUAL", "0")
    minutos_por_km: int = int(os.getenv("MINUTOS_POR_KM", "5"))
    # "lat,lng" de la tienda; vacío si no se usa
    tienda_coordenadas: str = os.getenv("TIENDA_COORDENADAS", "")

    # Carrito en memoria
    carrito_ttl_segundos: int = int(os.getenv("CARRITO_TTL_SEGUNDOS", "7200"))
    carrito_maximo_items: int = int(os.getenv("CARRITO_MAXIMO_ITEMS", "50"))
    carrito_maximo_cantidad_por_item: int = int(os.getenv("CARRITO_MAXIMO_CANTIDAD_POR_ITEM", "99"))
    carrito_maximo_sesiones: int = int(os.getenv("CARRITO_MAXIMO_SESIONES", "10000"))

    def __post_init__(self) -> None:
        if not self.db_url:
            # Intentar construir desde variables sueltas
            if self.db_pass:
                from urllib.parse import quote_plus as _qp
                pw_enc = _qp(self.db_pass)
            else:
                pw_enc = ""
            if self.db_user and pw_enc:
                candidate = f"postgresql+psycopg://{self.db_user}:{pw_enc}@{self.db_host}:{self.db_port}/{self.db_name}"
            elif self.db_user:
                candidate = f"postgresql+psycopg://{self.db_user}@{self.db_host}:{self.db_port}/{self.db_name}"
            else:
                candidate = ""
            if candidate:
                self.db_url = candidate
        if not self.db_url:
            if self.env == "dev":
                # Fallback para no bloquear el arranque local sin Postgres
                self.db_url = "sqlite+aiosqlite:///./dev.db"
            else:
                raise RuntimeError("DB_URL debe definirse en el entorno")
        if self.admin_api_key == ADMIN_API_KEY_PLACEHOLDER:
            if self.env == "dev":
                # Clave predecible para desarrollo y tests (NO usar en producción)
                self.admin_api_key = "dev-admin-key"
            else:
                raise RuntimeError(
                    "ADMIN_API_KEY debe sobrescribirse; reemplace el placeholder 'REEMPLAZAR_ADMIN_API_KEY'"
                )

        raw = os.getenv("ALLOWED_ORIGINS", "").split(",")
        origins = [o.strip() for o in raw if o.strip()]
        if self.env == "dev":
            if not origins:
                origins = ["http://localhost:5173"]
            origins = _expand_local(origins)
        elif not origins:
            raise RuntimeError(
                "En producción, ALLOWED_ORIGINS debe definir al menos un origen"
            )
        self.allowed_origins = origins

        if self.igv_porcentaje < 0 or self.mora_porcentaje < 0:
            raise RuntimeError("IGV_PORCENTAJE y MORA_PORCENTAJE no pueden ser negativos")


settings = Settings()
