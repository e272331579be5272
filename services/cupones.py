# NG-HEADER: Nombre de archivo: cupones.py
# NG-HEADER: Ubicación: services/cupones.py
# NG-HEADER: Descripción: Búsqueda, cálculo de descuento y registro de uso de cupones.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Reglas de cupones de descuento."""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Cupon, CuponUsuario
from services.errores import ReglaNegocioError
from tienda_core.dinero import CERO, a_decimal, porcentaje, redondear

logger = logging.getLogger("tienda.cupones")


def normalizar_codigo(codigo: str) -> str:
    return (codigo or "").strip().upper()


async def buscar_cupon(db: AsyncSession, codigo: str) -> Optional[Cupon]:
    return (await db.execute(
        select(Cupon).where(func.upper(Cupon.codigo) == normalizar_codigo(codigo))
    )).scalar_one_or_none()


def motivo_rechazo(cupon: Optional[Cupon], subtotal=None, hoy: Optional[date] = None) -> Optional[str]:
    """Mensaje de por qué el cupón no aplica; ``None`` si se puede usar."""
    hoy = hoy or date.today()
    if cupon is None:
        return "Cupón inválido"
    if not cupon.es_vigente(hoy):
        return "Cupón vencido o inactivo"
    if not cupon.tiene_usos_disponibles:
        return "Cupón sin usos disponibles"
    if subtotal is not None and cupon.monto_minimo is not None and a_decimal(subtotal) < a_decimal(cupon.monto_minimo):
        return f"El cupón requiere una compra mínima de S/ {a_decimal(cupon.monto_minimo):.2f}"
    return None


async def buscar_cupon_usable(db: AsyncSession, codigo: str, subtotal=None, hoy: Optional[date] = None) -> Cupon:
    cupon = await buscar_cupon(db, codigo)
    motivo = motivo_rechazo(cupon, subtotal, hoy)
    if motivo:
        raise ReglaNegocioError(motivo, campo="cupon_codigo")
    return cupon


def calcular_descuento(cupon: Cupon, subtotal) -> Decimal:
    """Descuento del cupón sobre ``subtotal``; nunca supera el subtotal."""
    base = a_decimal(subtotal)
    if base <= 0:
        return CERO
    if cupon.tipo == "porcentaje":
        descuento = porcentaje(base, cupon.descuento)
    else:
        descuento = redondear(cupon.descuento)
    if cupon.monto_maximo_descuento is not None:
        descuento = min(descuento, redondear(cupon.monto_maximo_descuento))
    return min(descuento, redondear(base))


async def registrar_uso(db: AsyncSession, cupon: Cupon, user_id: Optional[int] = None) -> None:
    """Incrementa ``usos`` respetando ``limite_uso`` y marca el uso del usuario."""
    if not cupon.tiene_usos_disponibles:
        raise ReglaNegocioError("Cupón sin usos disponibles", campo="cupon_codigo")
    cupon.usos = int(cupon.usos or 0) + 1
    if user_id is not None:
        pivot = (await db.execute(
            select(CuponUsuario).where(CuponUsuario.cupon_id == cupon.id, CuponUsuario.user_id == user_id)
        )).scalar_one_or_none()
        if pivot is None:
            pivot = CuponUsuario(cupon_id=cupon.id, user_id=user_id)
            db.add(pivot)
        pivot.usado = True
        pivot.fecha_uso = datetime.now()
    logger.info("Cupon %s usado (%s/%s)", cupon.codigo, cupon.usos, cupon.limite_uso or "-")
