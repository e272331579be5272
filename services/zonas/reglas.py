# NG-HEADER: Nombre de archivo: reglas.py
# NG-HEADER: Ubicación: services/zonas/reglas.py
# NG-HEADER: Descripción: Reglas puras de cobertura, costo y tiempo de entrega por zona de reparto.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Resolución de envío sobre filas ya cargadas (sin acceso a base de datos).

Orden de aplicación para una zona candidata:

1. costo y ventana base de la zona;
2. tramo de ``CostoEnvioDinamico`` que contiene la distancia ``[desde, hasta)``;
3. asignación ``ZonaDistrito`` (el costo personalizado gana sobre el tramo);
4. horario semanal (salvo ``disponible_24h`` o excepción de horario especial);
5. excepciones del día (``no_disponible``, ``horario_especial``,
   ``costo_especial``, ``tiempo_especial``);
6. pedido mínimo (recargo ``costo_envio_adicional``) y envío gratis.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from db.models import CostoEnvioDinamico, ExcepcionZona, HorarioZona, ZonaDistrito, ZonaReparto
from tienda_core.dinero import CERO, a_decimal, a_float, redondear

RADIO_TIERRA_KM = 6371.0

MOTIVO_FUERA_COBERTURA = "Dirección fuera de zona de cobertura"
MOTIVO_NO_DISPONIBLE = "Zona no disponible en la fecha solicitada"
MOTIVO_FUERA_HORARIO = "Fuera del horario de reparto"
MOTIVO_ZONA_INACTIVA = "Zona de reparto inactiva"


def distancia_haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return RADIO_TIERRA_KM * c


def parsear_coordenadas(texto: Optional[str]) -> Optional[tuple[float, float]]:
    """``"-12.05,-77.04"`` -> ``(-12.05, -77.04)``; ``None`` si el formato no es válido."""
    if not texto:
        return None
    partes = [p.strip() for p in str(texto).split(",")]
    if len(partes) != 2:
        return None
    try:
        lat, lng = float(partes[0]), float(partes[1])
    except ValueError:
        return None
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None
    return lat, lng


def _vertices(poligono: Sequence) -> list[tuple[float, float]]:
    out: list[tuple[float, float]] = []
    for v in poligono or []:
        if isinstance(v, dict):
            out.append((float(v["lat"]), float(v["lng"])))
        else:
            out.append((float(v[0]), float(v[1])))
    return out


def punto_en_poligono(lat: float, lng: float, poligono: Sequence) -> bool:
    """Ray casting; los vértices pueden ser ``{"lat", "lng"}`` o ``[lat, lng]``."""
    vertices = _vertices(poligono)
    if len(vertices) < 3:
        return False
    dentro = False
    j = len(vertices) - 1
    for i in range(len(vertices)):
        yi, xi = vertices[i]
        yj, xj = vertices[j]
        if (yi > lat) != (yj > lat):
            x_cruce = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lng < x_cruce:
                dentro = not dentro
        j = i
    return dentro


def distancia_a_zona(zona: ZonaReparto, lat: Optional[float], lng: Optional[float]) -> Optional[float]:
    centro = parsear_coordenadas(zona.coordenadas_centro)
    if centro is None or lat is None or lng is None:
        return None
    return distancia_haversine_km(centro[0], centro[1], lat, lng)


def zona_cubre_punto(zona: ZonaReparto, lat: Optional[float], lng: Optional[float]) -> bool:
    """Radio si hay centro y radio; polígono si está definido; sin restricción cubre."""
    if lat is None or lng is None:
        return True
    centro = parsear_coordenadas(zona.coordenadas_centro)
    if centro is not None and zona.radio_cobertura_km is not None:
        d = distancia_haversine_km(centro[0], centro[1], lat, lng)
        return d <= float(zona.radio_cobertura_km)
    if zona.poligono_cobertura:
        return punto_en_poligono(lat, lng, zona.poligono_cobertura)
    return True


def seleccionar_tramo(tramos: Iterable[CostoEnvioDinamico], distancia_km: Optional[float]) -> Optional[CostoEnvioDinamico]:
    if distancia_km is None:
        return None
    activos = sorted((t for t in tramos if t.activo), key=lambda t: a_decimal(t.distancia_desde_km))
    for t in activos:
        if t.incluye_distancia(round(distancia_km, 4)):
            return t
    return None


def excepciones_aplicables(excepciones: Iterable[ExcepcionZona], momento: datetime) -> list[ExcepcionZona]:
    return [e for e in excepciones if e.aplica_en_hora(momento)]


def excepciones_del_dia(excepciones: Iterable[ExcepcionZona], momento: datetime) -> list[ExcepcionZona]:
    return [e for e in excepciones if e.activo and e.fecha_excepcion == momento.date()]


def horario_abierto(zona: ZonaReparto, horarios: Iterable[HorarioZona], momento: datetime) -> bool:
    if zona.disponible_24h:
        return True
    activos = [h for h in horarios if h.activo]
    if not activos:
        return True
    return any(h.esta_abierto(momento) for h in activos)


def esta_disponible_en_fecha(zona: ZonaReparto, excepciones: Iterable[ExcepcionZona], momento: datetime) -> bool:
    """Falso si la zona está inactiva o hay una excepción ``no_disponible`` ese día."""
    if not zona.activo:
        return False
    return not any(e.tipo == "no_disponible" for e in excepciones_del_dia(excepciones, momento))


def calcular_costo_envio(zona: ZonaReparto, tramos: Iterable[CostoEnvioDinamico], distancia_km: Optional[float]) -> Decimal:
    tramo = seleccionar_tramo(tramos, distancia_km)
    if tramo is not None:
        return redondear(tramo.costo_envio)
    return redondear(zona.costo_envio)


@dataclass
class ResolucionEnvio:
    zona_id: Optional[int] = None
    zona_nombre: Optional[str] = None
    en_cobertura: bool = False
    disponible: bool = False
    motivo: Optional[str] = None
    distancia_km: Optional[float] = None
    costo_base: Decimal = CERO
    recargo_pedido_minimo: Decimal = CERO
    costo_envio: Decimal = CERO
    tiempo_min: Optional[int] = None
    tiempo_max: Optional[int] = None
    fuente_costo: str = "zona"
    cumple_pedido_minimo: bool = True
    pedido_minimo: Optional[Decimal] = None
    envio_gratis: bool = False
    excepcion_id: Optional[int] = None
    zona_distrito_id: Optional[int] = None
    tramo_id: Optional[int] = None
    avisos: list[str] = field(default_factory=list)

    @property
    def tiempo_entrega_texto(self) -> str:
        return texto_tiempo_entrega(self.tiempo_min, self.tiempo_max)

    @property
    def es_entregable(self) -> bool:
        return self.en_cobertura and self.disponible

    def as_dict(self) -> dict:
        data = asdict(self)
        for k in ("costo_base", "recargo_pedido_minimo", "costo_envio", "pedido_minimo"):
            data[k] = a_float(data[k])
        if data["distancia_km"] is not None:
            data["distancia_km"] = round(data["distancia_km"], 2)
        data["tiempo_entrega_texto"] = self.tiempo_entrega_texto
        return data


def texto_tiempo_entrega(tmin: Optional[int], tmax: Optional[int]) -> str:
    if tmin is None or tmax is None:
        return "No especificado"
    if tmin == tmax:
        return f"{tmin} minutos"
    return f"{tmin} - {tmax} minutos"


def fuera_de_cobertura() -> ResolucionEnvio:
    return ResolucionEnvio(en_cobertura=False, disponible=False, motivo=MOTIVO_FUERA_COBERTURA)


def resolver_envio(
    zona: ZonaReparto,
    momento: datetime,
    distancia_km: Optional[float] = None,
    asignacion: Optional[ZonaDistrito] = None,
    tramos: Sequence[CostoEnvioDinamico] = (),
    horarios: Sequence[HorarioZona] = (),
    excepciones: Sequence[ExcepcionZona] = (),
    monto_pedido=None,
    umbral_envio_gratis=None,
) -> ResolucionEnvio:
    """Aplica la tabla de decisión sobre una zona que ya cubre la dirección.

    ``umbral_envio_gratis`` es el monto global de envío gratis; sólo se usa si
    la zona no define ``envio_gratis_desde``.
    """
    res = ResolucionEnvio(
        zona_id=zona.id,
        zona_nombre=zona.nombre,
        en_cobertura=True,
        disponible=True,
        distancia_km=distancia_km,
        costo_base=redondear(zona.costo_envio),
        tiempo_min=int(zona.tiempo_entrega_min or 0),
        tiempo_max=int(zona.tiempo_entrega_max or 0),
        pedido_minimo=redondear(zona.pedido_minimo) if zona.pedido_minimo is not None else None,
    )
    if not zona.activo:
        res.disponible = False
        res.motivo = MOTIVO_ZONA_INACTIVA
        return res

    tramo = seleccionar_tramo(tramos, distancia_km)
    if tramo is not None:
        res.costo_base = redondear(tramo.costo_envio)
        res.fuente_costo = "distancia"
        res.tramo_id = tramo.id
        res.tiempo_min += int(tramo.tiempo_adicional or 0)
        res.tiempo_max += int(tramo.tiempo_adicional or 0)

    if asignacion is not None and asignacion.activo:
        res.zona_distrito_id = asignacion.id
        if asignacion.costo_envio_personalizado is not None:
            res.costo_base = redondear(asignacion.costo_envio_personalizado)
            res.fuente_costo = "distrito"
        res.tiempo_min += int(asignacion.tiempo_adicional or 0)
        res.tiempo_max += int(asignacion.tiempo_adicional or 0)

    del_dia = excepciones_aplicables(excepciones, momento)
    todas_del_dia = excepciones_del_dia(excepciones, momento)
    if any(e.tipo == "no_disponible" for e in todas_del_dia):
        exc = next(e for e in todas_del_dia if e.tipo == "no_disponible")
        res.disponible = False
        res.excepcion_id = exc.id
        res.motivo = exc.motivo or MOTIVO_NO_DISPONIBLE
        return res

    especiales = [e for e in todas_del_dia if e.tipo == "horario_especial"]
    if especiales:
        # El horario especial reemplaza al semanal ese día
        vigente = next((e for e in especiales if e in del_dia), None)
        if vigente is None:
            res.disponible = False
            res.excepcion_id = especiales[0].id
            res.motivo = especiales[0].motivo or MOTIVO_FUERA_HORARIO
            return res
        res.excepcion_id = vigente.id
        res.avisos.append(vigente.motivo or "Horario especial")
    elif not horario_abierto(zona, horarios, momento):
        res.disponible = False
        res.motivo = MOTIVO_FUERA_HORARIO
        return res

    for exc in del_dia:
        if exc.tipo == "costo_especial" and exc.costo_especial is not None:
            res.costo_base = redondear(exc.costo_especial)
            res.fuente_costo = "excepcion"
            res.excepcion_id = exc.id
        elif exc.tipo == "tiempo_especial":
            if exc.tiempo_especial_min is not None:
                res.tiempo_min = int(exc.tiempo_especial_min)
            if exc.tiempo_especial_max is not None:
                res.tiempo_max = int(exc.tiempo_especial_max)
            res.excepcion_id = exc.id
    if res.tiempo_max < res.tiempo_min:
        res.tiempo_max = res.tiempo_min

    res.costo_envio = res.costo_base
    if monto_pedido is not None:
        monto = a_decimal(monto_pedido)
        if zona.pedido_minimo is not None and monto < a_decimal(zona.pedido_minimo):
            res.cumple_pedido_minimo = False
            res.recargo_pedido_minimo = redondear(zona.costo_envio_adicional)
            res.costo_envio = redondear(res.costo_base + res.recargo_pedido_minimo)
        umbral = zona.envio_gratis_desde if zona.envio_gratis_desde is not None else umbral_envio_gratis
        if res.cumple_pedido_minimo and umbral is not None and a_decimal(umbral) > 0 and monto >= a_decimal(umbral):
            res.envio_gratis = True
            res.costo_envio = CERO
            res.fuente_costo = "gratis"
    return res
