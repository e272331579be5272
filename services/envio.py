# NG-HEADER: Nombre de archivo: envio.py
# NG-HEADER: Ubicación: services/envio.py
# NG-HEADER: Descripción: Opciones de envío por courier (estándar, express, rápido nacional, premium).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Cotización de envíos por courier para pedidos fuera del reparto propio.

Precios en soles; tiempos en horas. El envío es gratis cuando el valor del
pedido alcanza ``gratis_desde`` de cada opción.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Optional

from tienda_core.dinero import CERO, a_decimal, a_float, redondear

PESO_MAXIMO_NORMAL = Decimal("10")
PESO_MAXIMO_ESPECIAL = Decimal("50")

# departamento -> provincias sin cobertura
ZONAS_NO_DISPONIBLES = {
    "loreto": ("requena", "ucayali"),
    "madre de dios": ("tahuamanu",),
}


@dataclass
class OpcionEnvio:
    id: str
    nombre: str
    descripcion: str
    precio: Decimal
    tiempo_entrega_min: int
    tiempo_entrega_max: int
    empresa: str
    incluye_seguro: bool
    incluye_tracking: bool
    gratis_desde: Decimal
    disponible: bool = True
    tiempo_unidad: str = "horas"
    es_gratis: bool = False
    motivo_gratis: Optional[str] = None
    falta_para_gratis: Optional[Decimal] = None

    def as_dict(self) -> dict:
        data = asdict(self)
        for k in ("precio", "gratis_desde", "falta_para_gratis"):
            data[k] = a_float(data[k])
        data["transportista"] = self.empresa
        return data


def _normalizar(texto: Optional[str]) -> str:
    return (texto or "").strip().lower()


def es_lima_metropolitana(departamento: str, provincia: str) -> bool:
    return _normalizar(departamento) == "lima" and _normalizar(provincia) == "lima"


def _estandar(es_lima: bool, peso: Decimal) -> OpcionEnvio:
    if es_lima:
        precio = Decimal("10") if peso <= 5 else Decimal("15")
        tmin, tmax = 24, 48
        desc = "Entrega en Lima Metropolitana en 1-2 días hábiles"
    else:
        precio = Decimal("20") if peso <= 5 else Decimal("30")
        tmin, tmax = 72, 120
        desc = "Entrega a nivel nacional en 3-5 días hábiles"
    return OpcionEnvio(
        id="estandar", nombre="Envío Estándar", descripcion=desc, precio=precio,
        tiempo_entrega_min=tmin, tiempo_entrega_max=tmax, empresa="Courier Express",
        incluye_seguro=False, incluye_tracking=True, gratis_desde=Decimal("150"),
    )


def _express(peso: Decimal) -> OpcionEnvio:
    return OpcionEnvio(
        id="express", nombre="Envío Express",
        descripcion="Entrega el mismo día en Lima Metropolitana",
        precio=Decimal("25") if peso <= 3 else Decimal("35"),
        tiempo_entrega_min=4, tiempo_entrega_max=8, empresa="Express Lima",
        incluye_seguro=True, incluye_tracking=True, gratis_desde=Decimal("300"),
        disponible=peso <= 8,
    )


def _rapido_nacional(peso: Decimal) -> OpcionEnvio:
    return OpcionEnvio(
        id="rapido_nacional", nombre="Envío Rápido Nacional",
        descripcion="Entrega rápida a nivel nacional en 2-3 días hábiles",
        precio=Decimal("35") if peso <= 5 else Decimal("50"),
        tiempo_entrega_min=48, tiempo_entrega_max=72, empresa="Olva Courier",
        incluye_seguro=True, incluye_tracking=True, gratis_desde=Decimal("200"),
    )


def _premium(es_lima: bool, peso: Decimal) -> OpcionEnvio:
    if es_lima:
        precio, tmin, tmax = Decimal("50"), 2, 4
        desc = "Entrega premium en 2-4 horas con atención personalizada"
    else:
        precio, tmin, tmax = Decimal("80"), 24, 48
        desc = "Envío premium nacional con seguro completo"
    return OpcionEnvio(
        id="premium", nombre="Envío Premium", descripcion=desc, precio=precio,
        tiempo_entrega_min=tmin, tiempo_entrega_max=tmax, empresa="Premium Delivery",
        incluye_seguro=True, incluye_tracking=True, gratis_desde=Decimal("500"),
        disponible=peso <= PESO_MAXIMO_NORMAL,
    )


def _aplicar_envio_gratis(opcion: OpcionEnvio, valor: Decimal) -> OpcionEnvio:
    if valor >= opcion.gratis_desde:
        opcion.precio = CERO
        opcion.es_gratis = True
        opcion.motivo_gratis = f"Envío gratis por compras mayores a S/ {opcion.gratis_desde:.2f}"
    else:
        opcion.es_gratis = False
        opcion.falta_para_gratis = redondear(opcion.gratis_desde - valor)
    return opcion


def calcular_opciones(departamento: str, provincia: str, distrito: str, peso_total, valor_total) -> list[OpcionEnvio]:
    peso = a_decimal(peso_total)
    valor = a_decimal(valor_total)
    es_lima = es_lima_metropolitana(departamento, provincia)
    opciones = [_estandar(es_lima, peso)]
    if es_lima:
        opciones.append(_express(peso))
    else:
        opciones.append(_rapido_nacional(peso))
    opciones.append(_premium(es_lima, peso))
    return [_aplicar_envio_gratis(o, valor) for o in opciones]


def obtener_costo_envio(opcion_id: str, departamento: str, provincia: str, distrito: str, peso_total, valor_total) -> Optional[Decimal]:
    """Precio de la opción elegida; ``None`` si no existe para ese destino."""
    for o in calcular_opciones(departamento, provincia, distrito, peso_total, valor_total):
        if o.id == opcion_id:
            return o.precio
    return None


def validar_disponibilidad(departamento: str, provincia: str, distrito: str = "") -> dict:
    bloqueadas = ZONAS_NO_DISPONIBLES.get(_normalizar(departamento), ())
    if _normalizar(provincia) in bloqueadas:
        return {
            "disponible": False,
            "mensaje": (
                f"Actualmente no realizamos envíos a {provincia}, {departamento}. "
                "Contáctanos para opciones especiales."
            ),
            "requiere_coordinacion": True,
        }
    return {"disponible": True, "mensaje": "", "requiere_coordinacion": False}


def calcular_tiempo_entrega(opcion_id: str, departamento: str) -> str:
    es_lima = _normalizar(departamento) == "lima"
    textos = {
        "express": ("Hoy mismo (4-8 horas)", "No disponible"),
        "estandar": ("1-2 días hábiles", "3-5 días hábiles"),
        "rapido_nacional": ("1 día hábil", "2-3 días hábiles"),
        "premium": ("2-4 horas", "1-2 días hábiles"),
    }
    lima, nacional = textos.get(opcion_id, ("3-5 días hábiles", "3-5 días hábiles"))
    return lima if es_lima else nacional


def obtener_restricciones() -> dict:
    return {
        "peso_maximo_normal": float(PESO_MAXIMO_NORMAL),
        "peso_maximo_especial": float(PESO_MAXIMO_ESPECIAL),
        "dimensiones_maximas": {"largo": 100, "ancho": 80, "alto": 60},
        "productos_restringidos": [
            "liquidos",
            "aerosoles",
            "productos_quimicos",
            "articulos_fragiles_sin_empaque",
        ],
    }
