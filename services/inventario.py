# NG-HEADER: Nombre de archivo: inventario.py
# NG-HEADER: Ubicación: services/inventario.py
# NG-HEADER: Descripción: Movimientos de stock de productos y variaciones con registro histórico.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Movimientos de inventario.

Cada movimiento guarda ``cantidad`` con signo, de modo que
``stock_nuevo - stock_anterior == cantidad`` (también lo exige un CHECK).
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from db.models import InventarioMovimiento, Producto, VariacionProducto
from services.errores import ReglaNegocioError

logger = logging.getLogger("tienda.inventario")

SUMAN = ("entrada", "liberacion")
RESTAN = ("salida", "reserva")


def calcular_stock_nuevo(tipo: str, stock_anterior: int, cantidad: int) -> int:
    if tipo in SUMAN:
        return stock_anterior + cantidad
    if tipo in RESTAN:
        return stock_anterior - cantidad
    if tipo == "ajuste":
        return cantidad
    raise ReglaNegocioError(f"Tipo de movimiento inválido: {tipo}", campo="tipo")


def registrar_movimiento(
    db: AsyncSession,
    producto: Producto,
    tipo: str,
    cantidad: int,
    variacion: Optional[VariacionProducto] = None,
    motivo: Optional[str] = None,
    referencia: Optional[str] = None,
    usuario_id: Optional[int] = None,
) -> InventarioMovimiento:
    """Aplica el movimiento sobre la variación (si se indica) o el producto.

    Para ``ajuste`` ``cantidad`` es el stock final; en el resto es la magnitud
    del movimiento y debe ser positiva.
    """
    cantidad = int(cantidad)
    if tipo != "ajuste" and cantidad <= 0:
        raise ReglaNegocioError("La cantidad debe ser mayor a cero", campo="cantidad")
    if tipo == "ajuste" and cantidad < 0:
        raise ReglaNegocioError("El stock ajustado no puede ser negativo", campo="cantidad")
    if variacion is not None and variacion.producto_id != producto.id:
        raise ReglaNegocioError("La variación no pertenece al producto", campo="variacion_id")

    objetivo = variacion if variacion is not None else producto
    anterior = int(objetivo.stock or 0)
    nuevo = calcular_stock_nuevo(tipo, anterior, cantidad)
    if nuevo < 0:
        raise ReglaNegocioError(
            f"Stock insuficiente para el producto: {producto.nombre}. Stock disponible: {anterior}",
            campo="cantidad",
        )
    objetivo.stock = nuevo
    mov = InventarioMovimiento(
        producto_id=producto.id,
        variacion_id=variacion.id if variacion is not None else None,
        tipo=tipo,
        cantidad=nuevo - anterior,
        stock_anterior=anterior,
        stock_nuevo=nuevo,
        motivo=motivo,
        referencia=referencia,
        usuario_id=usuario_id,
    )
    db.add(mov)
    logger.info(
        "Movimiento %s producto=%s variacion=%s %s -> %s",
        tipo, producto.id, mov.variacion_id, anterior, nuevo,
    )
    return mov


def reducir_stock(db, producto, cantidad, variacion=None, referencia=None, usuario_id=None):
    return registrar_movimiento(db, producto, "salida", cantidad, variacion, "Venta", referencia, usuario_id)


def incrementar_stock(db, producto, cantidad, variacion=None, motivo="Devolución", referencia=None, usuario_id=None):
    return registrar_movimiento(db, producto, "entrada", cantidad, variacion, motivo, referencia, usuario_id)
