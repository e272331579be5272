# NG-HEADER: Nombre de archivo: resolver.py
# NG-HEADER: Ubicación: services/zonas/resolver.py
# NG-HEADER: Descripción: Carga zonas candidatas desde la base y aplica las reglas de envío.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Resolución de envío contra la base de datos."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import CostoEnvioDinamico, ExcepcionZona, HorarioZona, ZonaDistrito, ZonaReparto
from tienda_core.config import settings

from . import reglas
from .reglas import ResolucionEnvio

logger = logging.getLogger("tienda.zonas")


async def cargar_reglas_zona(db: AsyncSession, zona_id: int, momento: Optional[datetime] = None):
    """Devuelve ``(tramos, horarios, excepciones)`` de la zona.

    Con ``momento`` sólo se traen las excepciones de ese día.
    """
    tramos = (await db.execute(
        select(CostoEnvioDinamico)
        .where(CostoEnvioDinamico.zona_reparto_id == zona_id)
        .order_by(CostoEnvioDinamico.distancia_desde_km)
    )).scalars().all()
    horarios = (await db.execute(
        select(HorarioZona).where(HorarioZona.zona_reparto_id == zona_id)
    )).scalars().all()
    stmt = select(ExcepcionZona).where(ExcepcionZona.zona_reparto_id == zona_id)
    if momento is not None:
        stmt = stmt.where(ExcepcionZona.fecha_excepcion == momento.date())
    excepciones = (await db.execute(stmt.order_by(ExcepcionZona.id))).scalars().all()
    return list(tramos), list(horarios), list(excepciones)


async def resolver_para_zona(
    db: AsyncSession,
    zona: ZonaReparto,
    momento: Optional[datetime] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    monto_pedido=None,
    asignacion: Optional[ZonaDistrito] = None,
    verificar_cobertura: bool = True,
) -> ResolucionEnvio:
    momento = momento or datetime.now()
    if verificar_cobertura and not reglas.zona_cubre_punto(zona, lat, lng):
        res = reglas.fuera_de_cobertura()
        res.zona_id = zona.id
        res.zona_nombre = zona.nombre
        res.distancia_km = reglas.distancia_a_zona(zona, lat, lng)
        return res
    tramos, horarios, excepciones = await cargar_reglas_zona(db, zona.id, momento)
    res = reglas.resolver_envio(
        zona,
        momento,
        distancia_km=reglas.distancia_a_zona(zona, lat, lng),
        asignacion=asignacion,
        tramos=tramos,
        horarios=horarios,
        excepciones=excepciones,
        monto_pedido=monto_pedido,
        umbral_envio_gratis=settings.envio_gratis_monto or None,
    )
    logger.debug(
        "Envio zona=%s disponible=%s costo=%s fuente=%s",
        zona.id, res.disponible, res.costo_envio, res.fuente_costo,
    )
    return res


async def resolver_para_distrito(
    db: AsyncSession,
    distrito_id: int,
    momento: Optional[datetime] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    monto_pedido=None,
) -> Optional[ResolucionEnvio]:
    """Usa las asignaciones activas del distrito (prioridad 1 primero).

    Devuelve ``None`` si el distrito no tiene zonas asignadas o si ninguna
    de ellas cubre el punto; el llamador sigue con la búsqueda por coordenadas.
    """
    rows = (await db.execute(
        select(ZonaDistrito, ZonaReparto)
        .join(ZonaReparto, ZonaReparto.id == ZonaDistrito.zona_reparto_id)
        .where(
            ZonaDistrito.distrito_id == distrito_id,
            ZonaDistrito.activo.is_(True),
            ZonaReparto.activo.is_(True),
        )
        .order_by(ZonaDistrito.prioridad, ZonaReparto.orden, ZonaReparto.id)
    )).all()
    if not rows:
        return None
    for asignacion, zona in rows:
        if reglas.zona_cubre_punto(zona, lat, lng):
            return await resolver_para_zona(
                db, zona, momento, lat, lng, monto_pedido,
                asignacion=asignacion, verificar_cobertura=False,
            )
    logger.info("Distrito %s asignado pero sus zonas no cubren el punto", distrito_id)
    return None


async def resolver_para_coordenadas(
    db: AsyncSession,
    lat: float,
    lng: float,
    momento: Optional[datetime] = None,
    monto_pedido=None,
) -> ResolucionEnvio:
    zonas = (await db.execute(
        select(ZonaReparto).where(ZonaReparto.activo.is_(True)).order_by(ZonaReparto.orden, ZonaReparto.id)
    )).scalars().all()
    for zona in zonas:
        if reglas.zona_cubre_punto(zona, lat, lng):
            return await resolver_para_zona(
                db, zona, momento, lat, lng, monto_pedido, verificar_cobertura=False,
            )
    return reglas.fuera_de_cobertura()


async def resolver(
    db: AsyncSession,
    distrito_id: Optional[int] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    momento: Optional[datetime] = None,
    monto_pedido=None,
) -> ResolucionEnvio:
    """Punto de entrada: primero la asignación por distrito, luego coordenadas."""
    if distrito_id is not None:
        res = await resolver_para_distrito(db, distrito_id, momento, lat, lng, monto_pedido)
        if res is not None:
            return res
    if lat is not None and lng is not None:
        return await resolver_para_coordenadas(db, lat, lng, momento, monto_pedido)
    return reglas.fuera_de_cobertura()
