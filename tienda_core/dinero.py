# NG-HEADER: Nombre de archivo: dinero.py
# NG-HEADER: Ubicación: tienda_core/dinero.py
# NG-HEADER: Descripción: Utilidades de montos (Decimal, redondeo a céntimos y formato en soles).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Helpers monetarios compartidos por modelos y servicios.

Todos los montos se manejan como ``Decimal`` y se redondean a céntimos con
``ROUND_HALF_UP``; nunca se opera con ``float`` salvo al serializar.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")
CERO = Decimal("0")

SIMBOLOS = {"PEN": "S/", "USD": "$", "EUR": "€"}


def a_decimal(valor: Any) -> Decimal:
    if valor is None:
        return CERO
    if isinstance(valor, Decimal):
        return valor
    return Decimal(str(valor))


def redondear(valor: Any) -> Decimal:
    return a_decimal(valor).quantize(CENT, rounding=ROUND_HALF_UP)


def porcentaje(monto: Any, pct: Any) -> Decimal:
    """``monto * pct / 100`` redondeado a céntimos."""
    return redondear(a_decimal(monto) * a_decimal(pct) / Decimal("100"))


def formatear(monto: Any, moneda: str = "PEN") -> str:
    """Formato legible: ``S/ 1,234.50``."""
    simbolo = SIMBOLOS.get(moneda, moneda)
    return f"{simbolo} {redondear(monto):,.2f}"


def a_float(monto: Any) -> float | None:
    if monto is None:
        return None
    return float(redondear(monto))
