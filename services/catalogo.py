# NG-HEADER: Nombre de archivo: catalogo.py
# NG-HEADER: Ubicación: services/catalogo.py
# NG-HEADER: Descripción: Reglas de catálogo: slugs, precios de adicionales y validación de selección.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Helpers de catálogo compartidos por routers y checkout."""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import (
    Adicional,
    GrupoAdicional,
    ProductoAdicional,
    ProductoGrupoAdicional,
    adicional_grupo,
)
from tienda_core.dinero import CERO, redondear


def slugify(texto: str) -> str:
    t = unicodedata.normalize("NFKD", texto or "")
    t = "".join(c for c in t if not unicodedata.combining(c)).lower()
    t = re.sub(r"[^a-z0-9]+", "-", t).strip("-")
    return t or "item"


def precio_adicional(pivot: Optional[ProductoAdicional], adicional: Adicional) -> Decimal:
    """Precio unitario de un adicional en un producto."""
    if pivot is not None:
        if pivot.incluido_gratis:
            return CERO
        if pivot.precio_personalizado is not None:
            return redondear(pivot.precio_personalizado)
    return redondear(adicional.precio)


@dataclass
class ReglasAdicionales:
    """Pivots activos de un producto con sus adicionales y grupos."""

    pivots: dict[int, ProductoAdicional] = field(default_factory=dict)
    adicionales: dict[int, Adicional] = field(default_factory=dict)
    grupos: list[tuple[ProductoGrupoAdicional, GrupoAdicional, set[int]]] = field(default_factory=list)

    def permitido(self, adicional_id: int) -> bool:
        if adicional_id in self.pivots:
            return True
        return any(adicional_id in ids for _, _, ids in self.grupos)


async def cargar_reglas_adicionales(db: AsyncSession, producto_id: int) -> ReglasAdicionales:
    reglas = ReglasAdicionales()
    rows = (await db.execute(
        select(ProductoAdicional, Adicional)
        .join(Adicional, Adicional.id == ProductoAdicional.adicional_id)
        .where(ProductoAdicional.producto_id == producto_id, ProductoAdicional.activo.is_(True))
        .order_by(ProductoAdicional.orden)
    )).all()
    for pivot, adicional in rows:
        reglas.pivots[adicional.id] = pivot
        reglas.adicionales[adicional.id] = adicional

    grupos = (await db.execute(
        select(ProductoGrupoAdicional, GrupoAdicional)
        .join(GrupoAdicional, GrupoAdicional.id == ProductoGrupoAdicional.grupo_adicional_id)
        .where(
            ProductoGrupoAdicional.producto_id == producto_id,
            ProductoGrupoAdicional.activo.is_(True),
            GrupoAdicional.activo.is_(True),
        )
        .order_by(ProductoGrupoAdicional.orden)
    )).all()
    for pivot, grupo in grupos:
        miembros = (await db.execute(
            select(Adicional)
            .join(adicional_grupo, adicional_grupo.c.adicional_id == Adicional.id)
            .where(adicional_grupo.c.grupo_adicional_id == grupo.id)
        )).scalars().all()
        ids = set()
        for a in miembros:
            reglas.adicionales.setdefault(a.id, a)
            ids.add(a.id)
        reglas.grupos.append((pivot, grupo, ids))
    return reglas


def validar_seleccion_adicionales(reglas: ReglasAdicionales, seleccion: list[dict], cantidad_producto: int = 1) -> list[str]:
    """Errores de la selección ``[{"adicional_id", "cantidad"}]``; lista vacía si es válida."""
    errores: list[str] = []
    elegidos: dict[int, int] = {}
    for item in seleccion or []:
        aid = int(item["adicional_id"])
        elegidos[aid] = elegidos.get(aid, 0) + int(item.get("cantidad") or 1)

    for aid, cant in elegidos.items():
        if not reglas.permitido(aid):
            errores.append(f"Adicional {aid} no permitido para este producto")
            continue
        adicional = reglas.adicionales[aid]
        if not adicional.esta_disponible(cant * cantidad_producto):
            errores.append(f"Adicional '{adicional.nombre}' no disponible o sin stock")
        pivot = reglas.pivots.get(aid)
        if pivot is None:
            continue
        if not pivot.multiple and cant > 1:
            errores.append(f"Adicional '{adicional.nombre}' no admite más de una unidad")
        if cant < int(pivot.cantidad_minima or 0):
            errores.append(f"Adicional '{adicional.nombre}' requiere al menos {pivot.cantidad_minima}")
        if pivot.cantidad_maxima is not None and cant > pivot.cantidad_maxima:
            errores.append(f"Adicional '{adicional.nombre}' admite como máximo {pivot.cantidad_maxima}")

    for aid, pivot in reglas.pivots.items():
        if pivot.obligatorio and aid not in elegidos:
            errores.append(f"El adicional '{reglas.adicionales[aid].nombre}' es obligatorio")

    for pivot, grupo, ids in reglas.grupos:
        n = len([aid for aid in elegidos if aid in ids])
        minimo = max(int(pivot.minimo_selecciones or 0), int(grupo.minimo_selecciones or 0))
        maximo = pivot.maximo_selecciones if pivot.maximo_selecciones is not None else grupo.maximo_selecciones
        if not grupo.multiple_seleccion:
            maximo = 1 if maximo is None else min(maximo, 1)
        if (pivot.obligatorio or grupo.obligatorio) and n == 0:
            errores.append(f"Debe elegir una opción de '{grupo.nombre}'")
        elif n and n < minimo:
            errores.append(f"Debe elegir al menos {minimo} opciones de '{grupo.nombre}'")
        if maximo is not None and n > maximo:
            errores.append(f"Puede elegir como máximo {maximo} opciones de '{grupo.nombre}'")
    return errores
