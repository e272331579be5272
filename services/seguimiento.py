# NG-HEADER: Nombre de archivo: seguimiento.py
# NG-HEADER: Ubicación: services/seguimiento.py
# NG-HEADER: Descripción: Máquina de estados de pedidos y registro de su historial de seguimiento.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Transiciones de estado de pedidos."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ESTADOS_PEDIDO, Pedido, SeguimientoPedido
from services.errores import ReglaNegocioError

logger = logging.getLogger("tienda.pedidos")

TRANSICIONES: dict[str, tuple[str, ...]] = {
    "pendiente": ("confirmado", "cancelado"),
    "confirmado": ("preparando", "cancelado"),
    "preparando": ("listo",),
    "listo": ("enviado",),
    "enviado": ("entregado", "devuelto"),
    "entregado": ("devuelto",),
    "cancelado": (),
    "devuelto": (),
}

NOMBRES_ESTADO = {
    "pendiente": "Pendiente",
    "confirmado": "Confirmado",
    "preparando": "En preparación",
    "listo": "Listo para envío",
    "enviado": "En camino",
    "entregado": "Entregado",
    "cancelado": "Cancelado",
    "devuelto": "Devuelto",
}


def puede_transicionar(actual: str, nuevo: str) -> bool:
    return nuevo in TRANSICIONES.get(actual, ())


def registrar_cambio(
    db: AsyncSession,
    pedido: Pedido,
    nuevo: str,
    observaciones: Optional[str] = None,
    usuario_id: Optional[int] = None,
) -> SeguimientoPedido:
    """Valida la transición, cambia el estado y agrega la fila de seguimiento."""
    if nuevo not in ESTADOS_PEDIDO:
        raise ReglaNegocioError(f"Estado inválido: {nuevo}", campo="estado")
    if not puede_transicionar(pedido.estado, nuevo):
        raise ReglaNegocioError(
            f"No se puede pasar de '{pedido.estado}' a '{nuevo}'",
            campo="estado",
            codigo="transicion_invalida",
        )
    seg = SeguimientoPedido(
        pedido_id=pedido.id,
        estado_anterior=pedido.estado,
        estado_actual=nuevo,
        observaciones=observaciones,
        usuario_cambio_id=usuario_id,
        fecha_cambio=datetime.now(),
    )
    db.add(seg)
    logger.info("Pedido %s: %s -> %s", pedido.numero_pedido, pedido.estado, nuevo)
    pedido.estado = nuevo
    if nuevo == "entregado":
        pedido.fecha_entrega_real = datetime.now()
    return seg


def registrar_inicial(db: AsyncSession, pedido: Pedido, observaciones: Optional[str] = None) -> SeguimientoPedido:
    seg = SeguimientoPedido(
        pedido_id=pedido.id,
        estado_anterior=None,
        estado_actual=pedido.estado,
        observaciones=observaciones or "Pedido creado",
        fecha_cambio=datetime.now(),
    )
    db.add(seg)
    return seg
