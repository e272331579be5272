# NG-HEADER: Nombre de archivo: zonas.py
# NG-HEADER: Ubicación: services/routers/zonas.py
# NG-HEADER: Descripción: Endpoints de zonas de reparto: consulta, cálculo de costo, disponibilidad y administración.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Zonas de reparto.

Las rutas públicas calculan costo y disponibilidad; las de ``/admin/zonas``
mantienen la zona y sus reglas (distritos, tramos, horarios y excepciones).
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import (
    DIAS_SEMANA,
    TIPOS_EXCEPCION,
    CostoEnvioDinamico,
    DireccionValidada,
    Distrito,
    ExcepcionZona,
    HorarioZona,
    Pedido,
    ZonaDistrito,
    ZonaReparto,
)
from db.session import get_session
from services.auditoria import audit
from services.auth import AdminContext, require_admin
from services.catalogo import slugify
from services.errores import ReglaNegocioError
from services.resources import (
    costo_resource,
    excepcion_resource,
    horario_resource,
    zona_distrito_resource,
    zona_resource,
)
from services.zonas import reglas, resolver
from tienda_core.dinero import a_decimal, a_float

logger = logging.getLogger("tienda.zonas")

router = APIRouter(prefix="/zonas", tags=["zonas"])
admin_router = APIRouter(prefix="/admin/zonas", tags=["zonas"])

RELACIONES = ("distritos", "costos", "horarios", "excepciones")


def _dec(v):
    return a_decimal(v) if v is not None else None


# --- Schemas ---


class ZonaIn(BaseModel):
    nombre: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(None, max_length=120)
    descripcion: Optional[str] = None
    costo_envio: float = Field(..., ge=0)
    costo_envio_adicional: float = Field(0, ge=0)
    tiempo_entrega_min: int = Field(..., ge=1)
    tiempo_entrega_max: int = Field(..., ge=1)
    pedido_minimo: Optional[float] = Field(None, ge=0)
    envio_gratis_desde: Optional[float] = Field(None, ge=0)
    radio_cobertura_km: Optional[float] = Field(None, gt=0)
    coordenadas_centro: Optional[str] = None
    poligono_cobertura: Optional[list] = None
    activo: bool = True
    disponible_24h: bool = False
    orden: int = 0
    color_mapa: Optional[str] = Field(None, max_length=7)
    observaciones: Optional[str] = None

    @field_validator("coordenadas_centro")
    @classmethod
    def _centro_valido(cls, v: Optional[str]) -> Optional[str]:
        if v and reglas.parsear_coordenadas(v) is None:
            raise ValueError("coordenadas_centro debe tener el formato 'lat,lng'")
        return v

    @field_validator("poligono_cobertura")
    @classmethod
    def _poligono_valido(cls, v: Optional[list]) -> Optional[list]:
        if v is not None and len(v) < 3:
            raise ValueError("El polígono de cobertura requiere al menos 3 vértices")
        return v

    @model_validator(mode="after")
    def _tiempos(self):
        if self.tiempo_entrega_min > self.tiempo_entrega_max:
            raise ValueError("tiempo_entrega_min no puede superar tiempo_entrega_max")
        return self


class ZonaDistritoIn(BaseModel):
    distrito_id: int
    costo_envio_personalizado: Optional[float] = Field(None, ge=0)
    tiempo_adicional: int = Field(0, ge=0)
    activo: bool = True
    prioridad: int = Field(1, ge=1, le=3)


class CostoIn(BaseModel):
    distancia_desde_km: float = Field(..., ge=0)
    distancia_hasta_km: float = Field(..., gt=0)
    costo_envio: float = Field(..., ge=0)
    tiempo_adicional: int = Field(0, ge=0)
    activo: bool = True


class HorarioIn(BaseModel):
    dia_semana: str
    hora_inicio: Optional[time] = None
    hora_fin: Optional[time] = None
    dia_completo: bool = False
    activo: bool = True
    observaciones: Optional[str] = None

    @field_validator("dia_semana")
    @classmethod
    def _dia_valido(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in DIAS_SEMANA:
            raise ValueError(f"dia_semana debe ser uno de {', '.join(DIAS_SEMANA)}")
        return v

    @model_validator(mode="after")
    def _horas(self):
        if not self.dia_completo and (self.hora_inicio is None or self.hora_fin is None):
            raise ValueError("hora_inicio y hora_fin son obligatorias salvo en horarios de día completo")
        return self


class ExcepcionIn(BaseModel):
    fecha_excepcion: date
    tipo: str
    hora_inicio: Optional[time] = None
    hora_fin: Optional[time] = None
    costo_especial: Optional[float] = Field(None, ge=0)
    tiempo_especial_min: Optional[int] = Field(None, ge=1)
    tiempo_especial_max: Optional[int] = Field(None, ge=1)
    motivo: Optional[str] = None
    activo: bool = True

    @field_validator("tipo")
    @classmethod
    def _tipo_valido(cls, v: str) -> str:
        if v not in TIPOS_EXCEPCION:
            raise ValueError(f"tipo debe ser uno de {', '.join(TIPOS_EXCEPCION)}")
        return v

    @model_validator(mode="after")
    def _campos_por_tipo(self):
        if self.tipo == "horario_especial" and (self.hora_inicio is None or self.hora_fin is None):
            raise ValueError("horario_especial requiere hora_inicio y hora_fin")
        if self.hora_inicio and self.hora_fin and self.hora_inicio >= self.hora_fin:
            raise ValueError("hora_inicio debe ser anterior a hora_fin")
        if self.tipo == "costo_especial" and self.costo_especial is None:
            raise ValueError("costo_especial requiere el campo costo_especial")
        if self.tipo == "tiempo_especial":
            if self.tiempo_especial_min is None or self.tiempo_especial_max is None:
                raise ValueError("tiempo_especial requiere tiempo_especial_min y tiempo_especial_max")
            if self.tiempo_especial_min > self.tiempo_especial_max:
                raise ValueError("tiempo_especial_min no puede superar tiempo_especial_max")
        return self


class CalcularCostoIn(BaseModel):
    latitud: float = Field(..., ge=-90, le=90)
    longitud: float = Field(..., ge=-180, le=180)
    monto_pedido: Optional[float] = Field(None, ge=0)
    fecha_hora: Optional[datetime] = None


# --- Helpers ---


async def _zona_o_404(db: AsyncSession, zona_id: int) -> ZonaReparto:
    z = await db.get(ZonaReparto, zona_id)
    if not z:
        raise HTTPException(status_code=404, detail="Zona de reparto no encontrada")
    return z


async def _relaciones(db: AsyncSession, zona_id: int, incluir: set[str]) -> dict:
    out: dict = {}
    if "distritos" in incluir:
        out["distritos"] = (await db.execute(
            select(ZonaDistrito).where(ZonaDistrito.zona_reparto_id == zona_id)
            .order_by(ZonaDistrito.prioridad, ZonaDistrito.id)
        )).scalars().all()
    if "costos" in incluir:
        out["costos"] = (await db.execute(
            select(CostoEnvioDinamico).where(CostoEnvioDinamico.zona_reparto_id == zona_id)
            .order_by(CostoEnvioDinamico.distancia_desde_km)
        )).scalars().all()
    if "horarios" in incluir:
        horarios = (await db.execute(
            select(HorarioZona).where(HorarioZona.zona_reparto_id == zona_id)
        )).scalars().all()
        out["horarios"] = sorted(horarios, key=lambda h: (DIAS_SEMANA.index(h.dia_semana), h.hora_inicio or time.min))
    if "excepciones" in incluir:
        out["excepciones"] = (await db.execute(
            select(ExcepcionZona).where(ExcepcionZona.zona_reparto_id == zona_id)
            .order_by(ExcepcionZona.fecha_excepcion, ExcepcionZona.id)
        )).scalars().all()
    return out


def _parse_with(valor: Optional[str]) -> set[str]:
    if not valor:
        return set()
    return {p.strip() for p in valor.split(",") if p.strip() in RELACIONES}


async def _validar_tramo(db: AsyncSession, zona_id: int, desde, hasta, excluir_id: Optional[int] = None) -> None:
    desde, hasta = a_decimal(desde), a_decimal(hasta)
    if desde >= hasta:
        raise ReglaNegocioError(
            "distancia_desde_km debe ser menor que distancia_hasta_km", campo="distancia_hasta_km"
        )
    stmt = select(CostoEnvioDinamico).where(
        CostoEnvioDinamico.zona_reparto_id == zona_id,
        CostoEnvioDinamico.activo.is_(True),
        CostoEnvioDinamico.distancia_desde_km < hasta,
        CostoEnvioDinamico.distancia_hasta_km > desde,
    )
    if excluir_id is not None:
        stmt = stmt.where(CostoEnvioDinamico.id != excluir_id)
    solapado = (await db.execute(stmt.limit(1))).scalar_one_or_none()
    if solapado is not None:
        raise ReglaNegocioError(
            f"El tramo se superpone con {a_float(solapado.distancia_desde_km)} - "
            f"{a_float(solapado.distancia_hasta_km)} km",
            campo="distancia_desde_km",
            codigo="tramo_superpuesto",
        )


# --- Rutas públicas ---


@router.get("")
async def list_zonas(activo: Optional[bool] = True, db: AsyncSession = Depends(get_session)):
    stmt = select(ZonaReparto)
    if activo is not None:
        stmt = stmt.where(ZonaReparto.activo.is_(activo))
    rows = (await db.execute(stmt.order_by(ZonaReparto.orden, ZonaReparto.nombre))).scalars().all()
    return [zona_resource(z) for z in rows]


@router.get("/{zona_id}")
async def get_zona(
    zona_id: int,
    with_: Optional[str] = Query(None, alias="with"),
    db: AsyncSession = Depends(get_session),
):
    z = await _zona_o_404(db, zona_id)
    incluir = _parse_with(with_)
    return zona_resource(z, **(await _relaciones(db, z.id, incluir)))


@router.post("/{zona_id}/calcular-costo")
async def calcular_costo(zona_id: int, payload: CalcularCostoIn, db: AsyncSession = Depends(get_session)):
    z = await _zona_o_404(db, zona_id)
    res = await resolver.resolver_para_zona(
        db, z, payload.fecha_hora, payload.latitud, payload.longitud, payload.monto_pedido,
    )
    return res.as_dict()


@router.get("/{zona_id}/disponibilidad")
async def disponibilidad(
    zona_id: int,
    fecha_hora: Optional[datetime] = None,
    db: AsyncSession = Depends(get_session),
):
    z = await _zona_o_404(db, zona_id)
    momento = fecha_hora or datetime.now()
    tramos, horarios, excepciones = await resolver.cargar_reglas_zona(db, z.id, momento)
    res = await resolver.resolver_para_zona(db, z, momento, verificar_cobertura=False)
    return {
        "zona_id": z.id,
        "fecha_hora": momento.isoformat(),
        "disponible": res.disponible,
        "motivo": res.motivo,
        "disponible_en_fecha": reglas.esta_disponible_en_fecha(z, excepciones, momento),
        "horario_abierto": reglas.horario_abierto(z, horarios, momento),
        "costo_envio": a_float(res.costo_envio),
        "tiempo_entrega_texto": res.tiempo_entrega_texto,
        "excepciones": [excepcion_resource(e) for e in reglas.excepciones_aplicables(excepciones, momento)],
    }


@router.get("/{zona_id}/estadisticas")
async def estadisticas(zona_id: int, db: AsyncSession = Depends(get_session)):
    z = await _zona_o_404(db, zona_id)

    async def _count(stmt) -> int:
        return int(await db.scalar(stmt) or 0)

    hoy = date.today()
    direcciones = await _count(
        select(func.count()).select_from(DireccionValidada).where(DireccionValidada.zona_reparto_id == z.id)
    )
    pedidos_row = (await db.execute(
        select(func.count(Pedido.id), func.sum(Pedido.total), func.avg(Pedido.costo_envio))
        .where(Pedido.zona_reparto_id == z.id, Pedido.estado != "cancelado")
    )).first()
    return {
        "zona_id": z.id,
        "nombre": z.nombre,
        "distritos_asignados": await _count(
            select(func.count()).select_from(ZonaDistrito)
            .where(ZonaDistrito.zona_reparto_id == z.id, ZonaDistrito.activo.is_(True))
        ),
        "tramos_activos": await _count(
            select(func.count()).select_from(CostoEnvioDinamico)
            .where(CostoEnvioDinamico.zona_reparto_id == z.id, CostoEnvioDinamico.activo.is_(True))
        ),
        "horarios_activos": await _count(
            select(func.count()).select_from(HorarioZona)
            .where(HorarioZona.zona_reparto_id == z.id, HorarioZona.activo.is_(True))
        ),
        "excepciones_proximas": await _count(
            select(func.count()).select_from(ExcepcionZona)
            .where(
                ExcepcionZona.zona_reparto_id == z.id,
                ExcepcionZona.activo.is_(True),
                ExcepcionZona.fecha_excepcion >= hoy,
            )
        ),
        "direcciones_validadas": direcciones,
        "pedidos": int(pedidos_row[0] or 0) if pedidos_row else 0,
        "ventas_total": a_float(pedidos_row[1] or 0) if pedidos_row else 0.0,
        "costo_envio_promedio": a_float(pedidos_row[2]) if pedidos_row and pedidos_row[2] is not None else None,
    }


# --- Administración ---


@admin_router.get("")
async def admin_list_zonas(db: AsyncSession = Depends(get_session), ctx: AdminContext = Depends(require_admin)):
    rows = (await db.execute(select(ZonaReparto).order_by(ZonaReparto.orden, ZonaReparto.id))).scalars().all()
    return [zona_resource(z) for z in rows]


@admin_router.post("", status_code=201)
async def create_zona(
    payload: ZonaIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    data = payload.model_dump()
    data["slug"] = slugify(payload.slug or payload.nombre)
    for k in ("costo_envio", "costo_envio_adicional", "pedido_minimo", "envio_gratis_desde", "radio_cobertura_km"):
        data[k] = _dec(data[k])
    z = ZonaReparto(**data)
    db.add(z)
    await db.flush()
    audit(db, "zona_create", "zonas_reparto", z.id, {"slug": z.slug}, ctx, request)
    await db.commit()
    logger.info("Zona de reparto %s creada (%s)", z.id, z.slug)
    return zona_resource(z)


@admin_router.put("/{zona_id}")
async def update_zona(
    zona_id: int,
    payload: ZonaIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    z = await _zona_o_404(db, zona_id)
    cambios = payload.model_dump(exclude_unset=True)
    if "slug" in cambios:
        cambios["slug"] = slugify(cambios["slug"] or payload.nombre)
    for k, v in cambios.items():
        if k in ("costo_envio", "costo_envio_adicional", "pedido_minimo", "envio_gratis_desde", "radio_cobertura_km"):
            v = _dec(v)
        setattr(z, k, v)
    audit(db, "zona_update", "zonas_reparto", z.id, {"campos": sorted(cambios)}, ctx, request)
    await db.commit()
    return zona_resource(z)


@admin_router.post("/{zona_id}/toggle")
async def toggle_zona(
    zona_id: int,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    z = await _zona_o_404(db, zona_id)
    z.activo = not z.activo
    audit(db, "zona_toggle", "zonas_reparto", z.id, {"activo": z.activo}, ctx, request)
    await db.commit()
    logger.info("Zona %s %s", z.id, "activada" if z.activo else "desactivada")
    return {"id": z.id, "activo": z.activo}


@admin_router.delete("/{zona_id}")
async def delete_zona(
    zona_id: int,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    z = await _zona_o_404(db, zona_id)
    pedidos = int(await db.scalar(
        select(func.count()).select_from(Pedido).where(Pedido.zona_reparto_id == z.id)
    ) or 0)
    if pedidos:
        raise HTTPException(
            status_code=409,
            detail={"code": "zona_con_pedidos", "message": "La zona tiene pedidos; desactívela en su lugar"},
        )
    await db.execute(delete(ZonaReparto).where(ZonaReparto.id == z.id))
    audit(db, "zona_delete", "zonas_reparto", zona_id, {"slug": z.slug}, ctx, request)
    await db.commit()
    return {"status": "ok", "id": zona_id}


@admin_router.post("/{zona_id}/distritos", status_code=201)
async def asignar_distrito(
    zona_id: int,
    payload: ZonaDistritoIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    z = await _zona_o_404(db, zona_id)
    if not await db.get(Distrito, payload.distrito_id):
        raise HTTPException(status_code=404, detail="Distrito no encontrado")
    zd = (await db.execute(
        select(ZonaDistrito).where(ZonaDistrito.zona_reparto_id == z.id, ZonaDistrito.distrito_id == payload.distrito_id)
    )).scalar_one_or_none()
    if zd is None:
        zd = ZonaDistrito(zona_reparto_id=z.id, distrito_id=payload.distrito_id)
        db.add(zd)
    zd.costo_envio_personalizado = _dec(payload.costo_envio_personalizado)
    zd.tiempo_adicional = payload.tiempo_adicional
    zd.activo = payload.activo
    zd.prioridad = payload.prioridad
    await db.flush()
    audit(db, "zona_distrito_upsert", "zona_distrito", zd.id, payload.model_dump(), ctx, request)
    await db.commit()
    return zona_distrito_resource(zd)


@admin_router.delete("/{zona_id}/distritos/{distrito_id}", dependencies=[Depends(require_admin)])
async def quitar_distrito(zona_id: int, distrito_id: int, db: AsyncSession = Depends(get_session)):
    res = await db.execute(
        delete(ZonaDistrito).where(ZonaDistrito.zona_reparto_id == zona_id, ZonaDistrito.distrito_id == distrito_id)
    )
    if not res.rowcount:
        raise HTTPException(status_code=404, detail="Distrito no asignado a la zona")
    await db.commit()
    return {"status": "ok"}


@admin_router.post("/{zona_id}/costos", status_code=201)
async def crear_tramo(
    zona_id: int,
    payload: CostoIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    z = await _zona_o_404(db, zona_id)
    if payload.activo:
        await _validar_tramo(db, z.id, payload.distancia_desde_km, payload.distancia_hasta_km)
    elif payload.distancia_desde_km >= payload.distancia_hasta_km:
        raise ReglaNegocioError(
            "distancia_desde_km debe ser menor que distancia_hasta_km", campo="distancia_hasta_km"
        )
    t = CostoEnvioDinamico(
        zona_reparto_id=z.id,
        distancia_desde_km=a_decimal(payload.distancia_desde_km),
        distancia_hasta_km=a_decimal(payload.distancia_hasta_km),
        costo_envio=a_decimal(payload.costo_envio),
        tiempo_adicional=payload.tiempo_adicional,
        activo=payload.activo,
    )
    db.add(t)
    await db.flush()
    audit(db, "tramo_create", "costos_envio_dinamicos", t.id, payload.model_dump(), ctx, request)
    await db.commit()
    return costo_resource(t)


@admin_router.put("/{zona_id}/costos/{costo_id}")
async def actualizar_tramo(
    zona_id: int,
    costo_id: int,
    payload: CostoIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    t = await db.get(CostoEnvioDinamico, costo_id)
    if not t or t.zona_reparto_id != zona_id:
        raise HTTPException(status_code=404, detail="Tramo no encontrado")
    if payload.activo:
        await _validar_tramo(db, zona_id, payload.distancia_desde_km, payload.distancia_hasta_km, excluir_id=t.id)
    t.distancia_desde_km = a_decimal(payload.distancia_desde_km)
    t.distancia_hasta_km = a_decimal(payload.distancia_hasta_km)
    t.costo_envio = a_decimal(payload.costo_envio)
    t.tiempo_adicional = payload.tiempo_adicional
    t.activo = payload.activo
    audit(db, "tramo_update", "costos_envio_dinamicos", t.id, payload.model_dump(), ctx, request)
    await db.commit()
    return costo_resource(t)


@admin_router.delete("/{zona_id}/costos/{costo_id}", dependencies=[Depends(require_admin)])
async def eliminar_tramo(zona_id: int, costo_id: int, db: AsyncSession = Depends(get_session)):
    res = await db.execute(
        delete(CostoEnvioDinamico).where(CostoEnvioDinamico.id == costo_id, CostoEnvioDinamico.zona_reparto_id == zona_id)
    )
    if not res.rowcount:
        raise HTTPException(status_code=404, detail="Tramo no encontrado")
    await db.commit()
    return {"status": "ok"}


@admin_router.post("/{zona_id}/horarios", status_code=201)
async def crear_horario(
    zona_id: int,
    payload: HorarioIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    z = await _zona_o_404(db, zona_id)
    h = HorarioZona(zona_reparto_id=z.id, **payload.model_dump())
    if h.dia_completo:
        h.hora_inicio = None
        h.hora_fin = None
    db.add(h)
    await db.flush()
    audit(db, "horario_create", "horarios_zona", h.id, {"dia_semana": h.dia_semana}, ctx, request)
    await db.commit()
    return horario_resource(h)


@admin_router.delete("/{zona_id}/horarios/{horario_id}", dependencies=[Depends(require_admin)])
async def eliminar_horario(zona_id: int, horario_id: int, db: AsyncSession = Depends(get_session)):
    res = await db.execute(
        delete(HorarioZona).where(HorarioZona.id == horario_id, HorarioZona.zona_reparto_id == zona_id)
    )
    if not res.rowcount:
        raise HTTPException(status_code=404, detail="Horario no encontrado")
    await db.commit()
    return {"status": "ok"}


@admin_router.post("/{zona_id}/excepciones", status_code=201)
async def crear_excepcion(
    zona_id: int,
    payload: ExcepcionIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    z = await _zona_o_404(db, zona_id)
    data = payload.model_dump()
    data["costo_especial"] = _dec(payload.costo_especial)
    e = ExcepcionZona(zona_reparto_id=z.id, **data)
    db.add(e)
    await db.flush()
    audit(
        db, "excepcion_create", "excepciones_zona", e.id,
        {"fecha": payload.fecha_excepcion.isoformat(), "tipo": payload.tipo}, ctx, request,
    )
    await db.commit()
    logger.info("Excepción %s para zona %s el %s", e.tipo, z.id, e.fecha_excepcion)
    return excepcion_resource(e)


@admin_router.delete("/{zona_id}/excepciones/{excepcion_id}", dependencies=[Depends(require_admin)])
async def eliminar_excepcion(zona_id: int, excepcion_id: int, db: AsyncSession = Depends(get_session)):
    res = await db.execute(
        delete(ExcepcionZona).where(ExcepcionZona.id == excepcion_id, ExcepcionZona.zona_reparto_id == zona_id)
    )
    if not res.rowcount:
        raise HTTPException(status_code=404, detail="Excepción no encontrada")
    await db.commit()
    return {"status": "ok"}
