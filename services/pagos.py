# NG-HEADER: Nombre de archivo: pagos.py
# NG-HEADER: Ubicación: services/pagos.py
# NG-HEADER: Descripción: Validación de métodos de pago y ciclo de vida de pagos de pedidos.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Pagos de pedidos al contado."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import MetodoPago, Pago, Pedido
from services import seguimiento
from services.errores import ReglaNegocioError
from tienda_core.dinero import a_decimal

logger = logging.getLogger("tienda.pagos")


def motivos_rechazo_metodo(metodo: MetodoPago, monto, pais: str = "PE", moneda: str = "PEN") -> list[str]:
    motivos: list[str] = []
    if not metodo.activo:
        motivos.append("Método de pago inactivo")
    if not metodo.esta_disponible_para_monto(monto):
        motivos.append("Monto fuera del rango permitido por el método de pago")
    if not metodo.esta_disponible_en_pais(pais):
        motivos.append(f"Método de pago no disponible en {pais}")
    if metodo.moneda_soportada and moneda and metodo.moneda_soportada.upper() != moneda.upper():
        motivos.append(f"El método de pago no soporta la moneda {moneda}")
    return motivos


def validar_metodo(metodo: Optional[MetodoPago], monto, pais: str = "PE", moneda: str = "PEN") -> MetodoPago:
    if metodo is None:
        raise ReglaNegocioError("Método de pago no encontrado", campo="metodo_pago_id")
    motivos = motivos_rechazo_metodo(metodo, monto, pais, moneda)
    if motivos:
        logger.warning("Método de pago %s rechazado: %s", metodo.slug, motivos)
        raise ReglaNegocioError(motivos[0], campo="metodo_pago_id")
    return metodo


def generar_referencia() -> str:
    return "REF-" + uuid.uuid4().hex[:12].upper()


def crear_pago_pendiente(db: AsyncSession, pedido: Pedido, metodo: MetodoPago) -> Pago:
    pago = Pago(
        pedido_id=pedido.id,
        metodo_pago_id=metodo.id,
        monto=pedido.total,
        comision=metodo.calcular_comision(pedido.total),
        estado="pendiente",
        metodo=metodo.slug,
        referencia=generar_referencia(),
        moneda=pedido.moneda,
    )
    db.add(pago)
    return pago


async def pagos_de_pedido(db: AsyncSession, pedido_id: int) -> list[Pago]:
    return list((await db.execute(
        select(Pago).where(Pago.pedido_id == pedido_id).order_by(Pago.id)
    )).scalars().all())


async def marcar_como_pagado(
    db: AsyncSession,
    pago: Pago,
    codigo_autorizacion: Optional[str] = None,
    respuesta_proveedor: Optional[dict] = None,
) -> Pago:
    """Confirma el pago; si cubre el total del pedido pendiente, lo confirma."""
    if pago.estado not in ("pendiente", "atrasado", "fallido"):
        raise ReglaNegocioError(f"El pago ya está {pago.estado}", campo="estado")
    pago.estado = "pagado"
    pago.fecha_pago = datetime.now()
    pago.codigo_autorizacion = codigo_autorizacion
    if respuesta_proveedor is not None:
        pago.respuesta_proveedor = respuesta_proveedor
    await db.flush()

    pedido = await db.get(Pedido, pago.pedido_id)
    pagado = sum(
        (a_decimal(p.monto) for p in await pagos_de_pedido(db, pedido.id) if p.estado == "pagado"),
        a_decimal(0),
    )
    if pedido.estado == "pendiente" and not pedido.es_credito and pagado >= a_decimal(pedido.total):
        seguimiento.registrar_cambio(db, pedido, "confirmado", "Pago confirmado")
    logger.info("Pago %s del pedido %s confirmado", pago.referencia, pago.pedido_id)
    return pago


def marcar_como_fallido(pago: Pago, motivo: Optional[str] = None) -> Pago:
    if pago.estado != "pendiente":
        raise ReglaNegocioError(f"Sólo un pago pendiente puede fallar (estado: {pago.estado})", campo="estado")
    pago.estado = "fallido"
    pago.observaciones = motivo
    logger.warning("Pago %s fallido: %s", pago.referencia, motivo)
    return pago


def reembolsar(pago: Pago, motivo: Optional[str] = None) -> Pago:
    if pago.estado != "pagado":
        raise ReglaNegocioError("Sólo se reembolsan pagos confirmados", campo="estado")
    pago.estado = "reembolsado"
    pago.observaciones = motivo
    logger.info("Pago %s reembolsado", pago.referencia)
    return pago


async def cancelar_pendientes(db: AsyncSession, pedido: Pedido) -> int:
    n = 0
    for p in await pagos_de_pedido(db, pedido.id):
        if p.estado == "pendiente":
            p.estado = "cancelado"
            n += 1
    return n
