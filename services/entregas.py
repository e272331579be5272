# NG-HEADER: Nombre de archivo: entregas.py
# NG-HEADER: Ubicación: services/entregas.py
# NG-HEADER: Descripción: Programación de entregas: asignación de repartidor, ventana horaria, ruta y estados del reparto.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Programación de entregas a domicilio.

Una programación asigna un pedido de delivery a un repartidor para una fecha
y ventana horaria. Sus estados avanzan según ``TRANSICIONES``; la salida a
ruta y la llegada arrastran al pedido (``listo`` -> ``enviado`` ->
``entregado``) cuando éste está en el estado previo.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Pedido, ProgramacionEntrega, User
from services import seguimiento
from services.errores import NoEncontradoError, ReglaNegocioError

logger = logging.getLogger("tienda.entregas")

TRANSICIONES: dict[str, tuple[str, ...]] = {
    "programado": ("en_ruta", "fallido", "reprogramado"),
    "en_ruta": ("entregado", "fallido"),
    "entregado": (),
    "fallido": ("reprogramado",),
    "reprogramado": ("programado", "en_ruta"),
}

NOMBRES_ESTADO = {
    "programado": "Programado",
    "en_ruta": "En ruta",
    "entregado": "Entregado",
    "fallido": "Fallido",
    "reprogramado": "Reprogramado",
}

ESTADOS_ACTIVOS = ("programado", "en_ruta", "reprogramado")
ESTADOS_PEDIDO_CERRADO = ("cancelado", "entregado", "devuelto")


def puede_transicionar(actual: str, nuevo: str) -> bool:
    return nuevo in TRANSICIONES.get(actual, ())


def validar_ventana(fecha: date, inicio: time, fin: time, hoy: Optional[date] = None) -> None:
    hoy = hoy or date.today()
    if fecha < hoy:
        raise ReglaNegocioError("La fecha programada no puede ser anterior a hoy", campo="fecha_programada")
    if fin <= inicio:
        raise ReglaNegocioError(
            "La hora de fin de la ventana debe ser posterior a la de inicio", campo="hora_fin_ventana"
        )


async def obtener_repartidor(db: AsyncSession, repartidor_id: int) -> User:
    user = await db.get(User, repartidor_id)
    if not user or user.deleted_at is not None:
        raise NoEncontradoError("Repartidor", repartidor_id)
    if user.rol != "repartidor" or not user.activo:
        raise ReglaNegocioError(
            "El usuario no es un repartidor activo", campo="repartidor_id", codigo="repartidor_invalido"
        )
    return user


async def siguiente_orden_ruta(db: AsyncSession, repartidor_id: int, fecha: date) -> int:
    ultimo = await db.scalar(
        select(func.max(ProgramacionEntrega.orden_ruta)).where(
            ProgramacionEntrega.repartidor_id == repartidor_id,
            ProgramacionEntrega.fecha_programada == fecha,
        )
    )
    return int(ultimo or 0) + 1


async def programar(
    db: AsyncSession,
    pedido_id: int,
    repartidor_id: int,
    fecha: date,
    inicio: time,
    fin: time,
    orden_ruta: Optional[int] = None,
    notas: Optional[str] = None,
    hoy: Optional[date] = None,
) -> ProgramacionEntrega:
    pedido = await db.get(Pedido, pedido_id)
    if not pedido or pedido.deleted_at is not None:
        raise NoEncontradoError("Pedido", pedido_id)
    if pedido.tipo_entrega != "delivery" or pedido.estado in ESTADOS_PEDIDO_CERRADO:
        raise ReglaNegocioError(
            f"El pedido {pedido.numero_pedido} no admite programación de entrega",
            campo="pedido_id",
            codigo="pedido_no_programable",
        )
    await obtener_repartidor(db, repartidor_id)
    validar_ventana(fecha, inicio, fin, hoy)
    activa = await db.scalar(
        select(ProgramacionEntrega.id).where(
            ProgramacionEntrega.pedido_id == pedido_id,
            ProgramacionEntrega.estado.in_(ESTADOS_ACTIVOS),
        )
    )
    if activa is not None:
        raise ReglaNegocioError(
            "Ya existe una programación activa para este pedido", campo="pedido_id", codigo="programacion_activa"
        )
    if orden_ruta is None:
        orden_ruta = await siguiente_orden_ruta(db, repartidor_id, fecha)
    prog = ProgramacionEntrega(
        pedido_id=pedido_id,
        repartidor_id=repartidor_id,
        fecha_programada=fecha,
        hora_inicio_ventana=inicio,
        hora_fin_ventana=fin,
        estado="programado",
        orden_ruta=orden_ruta,
        notas_repartidor=notas,
    )
    db.add(prog)
    pedido.repartidor_id = repartidor_id
    await db.flush()
    logger.info(
        "Pedido %s programado: repartidor=%s fecha=%s %s-%s orden=%s",
        pedido.numero_pedido, repartidor_id, fecha, inicio, fin, orden_ruta,
    )
    return prog


async def modificar(db: AsyncSession, prog: ProgramacionEntrega, cambios: dict, hoy: Optional[date] = None) -> ProgramacionEntrega:
    """Aplica ``cambios`` (repartidor, fecha, ventana, orden, notas) a una programación no finalizada."""
    if prog.estado in ("entregado", "fallido"):
        raise ReglaNegocioError(
            "No se puede modificar una programación finalizada", campo="estado", codigo="programacion_finalizada"
        )
    if "repartidor_id" in cambios and cambios["repartidor_id"] != prog.repartidor_id:
        await obtener_repartidor(db, cambios["repartidor_id"])
        pedido = await db.get(Pedido, prog.pedido_id)
        if pedido is not None:
            pedido.repartidor_id = cambios["repartidor_id"]
    fecha = cambios.get("fecha_programada", prog.fecha_programada)
    inicio = cambios.get("hora_inicio_ventana", prog.hora_inicio_ventana)
    fin = cambios.get("hora_fin_ventana", prog.hora_fin_ventana)
    if {"fecha_programada", "hora_inicio_ventana", "hora_fin_ventana"} & cambios.keys():
        validar_ventana(fecha, inicio, fin, hoy)
    for campo, valor in cambios.items():
        setattr(prog, campo, valor)
    return prog


async def cambiar_estado(
    db: AsyncSession,
    prog: ProgramacionEntrega,
    nuevo: str,
    motivo_fallo: Optional[str] = None,
    notas: Optional[str] = None,
    usuario_id: Optional[int] = None,
    momento: Optional[datetime] = None,
) -> ProgramacionEntrega:
    if nuevo not in TRANSICIONES:
        raise ReglaNegocioError(f"Estado inválido: {nuevo}", campo="estado")
    if not puede_transicionar(prog.estado, nuevo):
        raise ReglaNegocioError(
            f"No se puede pasar de '{prog.estado}' a '{nuevo}'", campo="estado", codigo="transicion_invalida"
        )
    if nuevo == "fallido" and not motivo_fallo:
        raise ReglaNegocioError("Debe indicar el motivo del fallo", campo="motivo_fallo")
    momento = momento or datetime.now()
    pedido = await db.get(Pedido, prog.pedido_id)
    logger.info("Entrega %s (pedido %s): %s -> %s", prog.id, prog.pedido_id, prog.estado, nuevo)
    prog.estado = nuevo
    if notas is not None:
        prog.notas_repartidor = notas
    if nuevo == "en_ruta":
        prog.hora_salida = momento
        if pedido is not None and pedido.estado == "listo":
            seguimiento.registrar_cambio(db, pedido, "enviado", "Salida a reparto", usuario_id)
    elif nuevo == "entregado":
        prog.hora_llegada = momento
        if pedido is not None and pedido.estado == "enviado":
            seguimiento.registrar_cambio(db, pedido, "entregado", "Entrega confirmada por el repartidor", usuario_id)
    elif nuevo == "fallido":
        prog.motivo_fallo = motivo_fallo
    return prog


def reprogramar(
    prog: ProgramacionEntrega,
    fecha: date,
    inicio: time,
    fin: time,
    motivo: str,
    hoy: Optional[date] = None,
) -> ProgramacionEntrega:
    if prog.estado == "entregado":
        raise ReglaNegocioError(
            "No se puede reprogramar una entrega realizada", campo="estado", codigo="programacion_finalizada"
        )
    validar_ventana(fecha, inicio, fin, hoy)
    prog.fecha_programada = fecha
    prog.hora_inicio_ventana = inicio
    prog.hora_fin_ventana = fin
    prog.estado = "reprogramado"
    prog.motivo_fallo = motivo
    prog.hora_salida = None
    prog.hora_llegada = None
    return prog


async def eliminar(db: AsyncSession, prog: ProgramacionEntrega) -> None:
    if prog.estado in ("en_ruta", "entregado"):
        raise ReglaNegocioError(
            "No se puede eliminar una programación en curso o finalizada",
            campo="estado",
            codigo="programacion_en_curso",
        )
    pedido = await db.get(Pedido, prog.pedido_id)
    if pedido is not None and pedido.repartidor_id == prog.repartidor_id:
        pedido.repartidor_id = None
    await db.delete(prog)


async def ruta_repartidor(db: AsyncSession, repartidor_id: int, fecha: date) -> tuple[list[ProgramacionEntrega], dict]:
    progs = list((await db.execute(
        select(ProgramacionEntrega)
        .where(
            ProgramacionEntrega.repartidor_id == repartidor_id,
            ProgramacionEntrega.fecha_programada == fecha,
        )
        .order_by(ProgramacionEntrega.orden_ruta, ProgramacionEntrega.id)
    )).scalars().all())
    resumen = {
        "repartidor_id": repartidor_id,
        "fecha": fecha.isoformat(),
        "total_entregas": len(progs),
        "entregas_completadas": sum(1 for p in progs if p.estado == "entregado"),
        "entregas_pendientes": sum(1 for p in progs if p.estado in ESTADOS_ACTIVOS),
        "entregas_fallidas": sum(1 for p in progs if p.estado == "fallido"),
    }
    return progs, resumen
