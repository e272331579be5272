# NG-HEADER: Nombre de archivo: api.py
# NG-HEADER: Ubicación: services/api.py
# NG-HEADER: Descripción: Aplicación FastAPI principal: logging, middleware, manejadores de error y routers.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Aplicación FastAPI de la tienda."""

import logging
import os
import re
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi import HTTPException as FastHTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

import db.models  # noqa: F401  (registra todas las tablas en la metadata)
from db.base import Base
from db.session import engine
from services.errores import NoEncontradoError, ReglaNegocioError
from tienda_core.config import settings

from .routers import (
    carrito,
    clientes,
    cuotas,
    cupones,
    direcciones,
    entregas,
    envio,
    health,
    inventario,
    pagos,
    pedidos,
    productos,
    ubigeo,
    zonas,
)

raw_level = os.getenv("LOG_LEVEL", "INFO") or "INFO"
level_name = raw_level.strip().upper()
if level_name not in logging._nameToLevel:
    level_name = "INFO"
logger = logging.getLogger("tienda")
logger.setLevel(level_name)
LOG_DIR = Path(__file__).resolve().parents[1] / "logs"
try:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
except OSError:
    pass
fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
stream_handler = logging.StreamHandler()
stream_handler.setFormatter(fmt)

file_handler = None
log_path = LOG_DIR / "backend.log"
try:
    with open(log_path, "a", encoding="utf-8"):
        pass
    # delay=True evita abrir el archivo hasta el primer log
    file_handler = RotatingFileHandler(
        str(log_path), maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8", delay=True
    )
    file_handler.setFormatter(fmt)
    logger.addHandler(file_handler)
except OSError:
    # Sin permisos o archivo bloqueado: continuar solo con consola
    file_handler = None

logger.addHandler(stream_handler)

handlers = [h for h in (file_handler, stream_handler) if h is not None]
for _name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    logging.getLogger(_name).handlers = handlers
    logging.getLogger(_name).setLevel(level_name)

# `redirect_slashes=False` evita redirecciones 307 entre `/ruta` y `/ruta/`,
# lo que rompe las solicitudes *preflight* de CORS.
app = FastAPI(title="Tienda Reparto", redirect_slashes=False)

logger.info("DB effective URL: %s", engine.url.render_as_string(hide_password=True))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Registra cada solicitud y captura excepciones con un correlation-id."""
    start = time.perf_counter()
    corr = request.headers.get("x-correlation-id") or request.headers.get("x-request-id")
    if not corr:
        corr = f"req-{int(time.time() * 1000):x}-{os.getpid():x}"
    try:
        resp = await call_next(request)
    except (FastHTTPException, StarletteHTTPException):
        raise
    except Exception:
        dur = (time.perf_counter() - start) * 1000
        logger.exception("EXC %s %s cid=%s (%.2fms)", request.method, request.url.path, corr, dur)
        return JSONResponse(
            {"detail": "Error interno del servidor. Intente nuevamente más tarde.", "correlation_id": corr},
            status_code=500,
        )
    dur = (time.perf_counter() - start) * 1000
    resp.headers["X-Correlation-Id"] = corr
    logger.info("%s %s -> %s cid=%s (%.2fms)", request.method, request.url.path, resp.status_code, corr, dur)
    return resp


# --- Exception Handlers Específicos ---
@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):  # type: ignore[override]
    """Mapea errores de integridad conocidos a 409 sin filtrar detalles del motor.

    - slug / sku / codigo / email / dni duplicados -> ``duplicate_<campo>``
    - resto -> ``conflict``
    """
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    detail = "conflict"
    code = "conflict"
    field = None
    m = re.search(r"(?:UNIQUE constraint failed: \w+\.(\w+))|(?:Key \((\w+)\)=)", raw)
    if m:
        field = m.group(1) or m.group(2)
        code = f"duplicate_{field}"
        detail = f"Ya existe un registro con ese {field}"
    elif "FOREIGN KEY" in raw.upper():
        code = "foreign_key"
        detail = "Referencia inexistente o en uso"
    logger.warning("Conflicto de integridad %s %s: %s", request.method, request.url.path, code)
    payload = {"detail": detail, "code": code}
    if field:
        payload["field"] = field
    return JSONResponse(payload, status_code=409)


def _errores_serializables(exc: RequestValidationError) -> list:
    # ``ctx`` puede traer la excepción original (no serializable)
    out = []
    for e in exc.errors():
        e = dict(e)
        if "ctx" in e:
            e["ctx"] = {k: str(v) for k, v in e["ctx"].items()}
        e.pop("url", None)
        out.append(e)
    return out


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
    """Registra los errores por campo y mantiene el contrato ``{"detail": [...]}``."""
    flat = []
    for e in exc.errors():
        loc = ".".join([str(p) for p in e.get("loc", [])])
        flat.append({"loc": loc, "msg": e.get("msg", ""), "type": e.get("type", "")})
    logger.warning("Validación fallida 422 %s %s: %s", request.method, request.url.path, flat)
    return JSONResponse(status_code=422, content={"detail": _errores_serializables(exc)})


@app.exception_handler(ReglaNegocioError)
async def regla_negocio_handler(request: Request, exc: ReglaNegocioError):  # type: ignore[override]
    logger.warning("Regla de negocio %s %s: %s", request.method, request.url.path, exc.mensaje)
    return JSONResponse(status_code=422, content=exc.as_dict())


@app.exception_handler(NoEncontradoError)
async def no_encontrado_handler(request: Request, exc: NoEncontradoError):  # type: ignore[override]
    return JSONResponse(status_code=404, content={"detail": str(exc)})


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(ubigeo.router)
app.include_router(ubigeo.admin_router)
app.include_router(productos.router)
app.include_router(productos.admin_router)
app.include_router(zonas.router)
app.include_router(zonas.admin_router)
app.include_router(envio.router)
app.include_router(direcciones.router)
app.include_router(direcciones.admin_router)
app.include_router(carrito.router)
app.include_router(cupones.router)
app.include_router(cupones.admin_router)
app.include_router(pedidos.router)
app.include_router(pedidos.admin_router)
app.include_router(entregas.admin_router)
app.include_router(pagos.router)
app.include_router(pagos.admin_router)
app.include_router(cuotas.router)
app.include_router(cuotas.admin_router)
app.include_router(clientes.router)
app.include_router(clientes.admin_router)
app.include_router(inventario.router)


@app.on_event("startup")
async def _init_inmemory_db():
    """Auto-crea el esquema cuando usamos SQLite en memoria (tests)."""
    url = str(engine.url)
    if url.startswith("sqlite+") and (":memory:" in url or "mode=memory" in url):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Esquema en memoria creado")
