# NG-HEADER: Nombre de archivo: direcciones.py
# NG-HEADER: Ubicación: services/direcciones.py
# NG-HEADER: Descripción: Validación de direcciones contra zonas de reparto y estadísticas de cobertura.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Direcciones de entrega: validación, revalidación masiva y estadísticas."""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Departamento, Direccion, DireccionValidada, Distrito, Provincia, ZonaReparto
from services.errores import ReglaNegocioError
from services.zonas import reglas, resolver
from services.zonas.reglas import ResolucionEnvio
from tienda_core.config import settings
from tienda_core.dinero import a_float, redondear

logger = logging.getLogger("tienda.direcciones")


async def ubicacion_distrito(db: AsyncSession, distrito_id: int) -> tuple[Optional[str], Optional[str], Optional[str]]:
    """``(distrito, provincia, departamento)`` por nombre."""
    row = (await db.execute(
        select(Distrito.nombre, Provincia.nombre, Departamento.nombre)
        .join(Provincia, Provincia.id == Distrito.provincia_id)
        .join(Departamento, Departamento.id == Provincia.departamento_id)
        .where(Distrito.id == distrito_id)
    )).first()
    if not row:
        return None, None, None
    return row[0], row[1], row[2]


async def texto_direccion(db: AsyncSession, direccion: Direccion) -> str:
    return direccion.direccion_completa(*(await ubicacion_distrito(db, direccion.distrito_id)))


async def marcar_predeterminada(db: AsyncSession, direccion: Direccion) -> None:
    """Deja a ``direccion`` como única predeterminada del usuario."""
    await db.execute(
        update(Direccion)
        .where(Direccion.user_id == direccion.user_id, Direccion.id != direccion.id)
        .values(predeterminada=False)
    )
    direccion.predeterminada = True


async def crear_direccion(db: AsyncSession, datos: dict) -> Direccion:
    distrito = await db.get(Distrito, datos["distrito_id"])
    if not distrito or not distrito.activo:
        raise ReglaNegocioError("Distrito inválido o inactivo", campo="distrito_id")
    direccion = Direccion(**datos)
    db.add(direccion)
    await db.flush()
    existentes = await db.scalar(
        select(func.count()).select_from(Direccion).where(Direccion.user_id == direccion.user_id)
    )
    if direccion.predeterminada or int(existentes or 0) == 1:
        await marcar_predeterminada(db, direccion)
    return direccion


def estimar_minutos(res: ResolucionEnvio) -> Optional[int]:
    """Minutos estimados: mínimo de la ventana + ``MINUTOS_POR_KM`` por km extra, sin pasar del máximo."""
    if res.tiempo_min is None:
        return None
    extra = 0
    if res.distancia_km is not None and res.distancia_km > 1:
        extra = int((res.distancia_km - 1) * settings.minutos_por_km)
    estimado = res.tiempo_min + extra
    if res.tiempo_max is not None:
        estimado = min(estimado, res.tiempo_max)
    return estimado


def _distancia_tienda(res: ResolucionEnvio, lat: float, lng: float) -> Optional[float]:
    if res.distancia_km is not None:
        return res.distancia_km
    tienda = reglas.parsear_coordenadas(settings.tienda_coordenadas)
    if tienda is None:
        return None
    return reglas.distancia_haversine_km(tienda[0], tienda[1], lat, lng)


async def validar_direccion(
    db: AsyncSession,
    direccion: Direccion,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    observaciones: Optional[str] = None,
    momento: Optional[datetime] = None,
    monto_pedido=None,
) -> tuple[DireccionValidada, ResolucionEnvio]:
    """Resuelve la zona de ``direccion`` y guarda (upsert) su ``DireccionValidada``.

    Las coordenadas llegan por parámetro o se toman de la dirección; sin
    ellas no se puede validar.
    """
    if lat is None or lng is None:
        if not direccion.tiene_coordenadas:
            raise ReglaNegocioError(
                "Se requieren coordenadas (latitud y longitud) para validar la dirección",
                campo="latitud",
            )
        lat, lng = float(direccion.latitud), float(direccion.longitud)
    res = await resolver.resolver(
        db,
        distrito_id=direccion.distrito_id,
        lat=lat,
        lng=lng,
        momento=momento,
        monto_pedido=monto_pedido,
    )

    validada = (await db.execute(
        select(DireccionValidada).where(DireccionValidada.direccion_id == direccion.id)
    )).scalar_one_or_none()
    if validada is None:
        validada = DireccionValidada(direccion_id=direccion.id)
        db.add(validada)

    distancia = _distancia_tienda(res, lat, lng)
    validada.latitud = Decimal(str(round(lat, 8)))
    validada.longitud = Decimal(str(round(lng, 8)))
    validada.distancia_tienda_km = redondear(distancia) if distancia is not None else None
    validada.fecha_ultima_validacion = datetime.now()
    if res.en_cobertura:
        validada.en_zona_cobertura = True
        validada.zona_reparto_id = res.zona_id
        validada.costo_envio_calculado = res.costo_envio
        validada.tiempo_entrega_estimado = estimar_minutos(res)
        validada.observaciones_validacion = observaciones or res.motivo
    else:
        validada.en_zona_cobertura = False
        validada.zona_reparto_id = None
        validada.costo_envio_calculado = None
        validada.tiempo_entrega_estimado = None
        validada.observaciones_validacion = reglas.MOTIVO_FUERA_COBERTURA

    if not direccion.tiene_coordenadas:
        direccion.latitud = validada.latitud
        direccion.longitud = validada.longitud
    direccion.validada = bool(res.en_cobertura)
    await db.flush()
    logger.info(
        "Direccion %s validada: cobertura=%s zona=%s costo=%s",
        direccion.id, res.en_cobertura, res.zona_id, res.costo_envio,
    )
    return validada, res


async def revalidar(
    db: AsyncSession,
    direccion_ids: Optional[list[int]] = None,
    zona_id: Optional[int] = None,
) -> dict:
    """Revalida en lote; los errores por dirección no detienen el proceso."""
    stmt = select(Direccion).order_by(Direccion.id)
    if direccion_ids:
        stmt = stmt.where(Direccion.id.in_(direccion_ids))
    if zona_id is not None:
        stmt = stmt.join(DireccionValidada, DireccionValidada.direccion_id == Direccion.id).where(
            DireccionValidada.zona_reparto_id == zona_id
        )
    direcciones = (await db.execute(stmt)).scalars().all()
    exitosas = 0
    errores: list[dict] = []
    for d in direcciones:
        try:
            await validar_direccion(db, d)
            exitosas += 1
        except ReglaNegocioError as e:
            errores.append({"direccion_id": d.id, "error": e.mensaje})
    if errores:
        logger.warning("Revalidación con %d errores de %d", len(errores), len(direcciones))
    return {"total_procesadas": len(direcciones), "exitosas": exitosas, "errores": errores}


async def estadisticas(db: AsyncSession) -> dict:
    total = int(await db.scalar(select(func.count()).select_from(DireccionValidada)) or 0)
    en_cobertura = int(await db.scalar(
        select(func.count()).select_from(DireccionValidada).where(DireccionValidada.en_zona_cobertura.is_(True))
    ) or 0)
    promedios = (await db.execute(
        select(
            func.avg(DireccionValidada.costo_envio_calculado),
            func.avg(DireccionValidada.distancia_tienda_km),
            func.avg(DireccionValidada.tiempo_entrega_estimado),
        ).where(DireccionValidada.en_zona_cobertura.is_(True))
    )).first()
    por_zona_rows = (await db.execute(
        select(
            ZonaReparto.id,
            ZonaReparto.nombre,
            func.count(DireccionValidada.id),
            func.avg(DireccionValidada.costo_envio_calculado),
        )
        .join(DireccionValidada, DireccionValidada.zona_reparto_id == ZonaReparto.id)
        .group_by(ZonaReparto.id, ZonaReparto.nombre)
        .order_by(ZonaReparto.id)
    )).all()
    return {
        "total_validaciones": total,
        "en_cobertura": en_cobertura,
        "fuera_cobertura": total - en_cobertura,
        "porcentaje_cobertura": round(en_cobertura * 100 / total, 2) if total else 0.0,
        "costo_envio_promedio": a_float(promedios[0]) if promedios and promedios[0] is not None else None,
        "distancia_promedio_km": round(float(promedios[1]), 2) if promedios and promedios[1] is not None else None,
        "tiempo_entrega_promedio": round(float(promedios[2])) if promedios and promedios[2] is not None else None,
        "por_zona": [
            {
                "zona_id": zid,
                "nombre": nombre,
                "total": int(cnt or 0),
                "costo_envio_promedio": a_float(avg) if avg is not None else None,
            }
            for zid, nombre, cnt, avg in por_zona_rows
        ],
    }
