# NG-HEADER: Nombre de archivo: carrito.py
# NG-HEADER: Ubicación: services/carrito.py
# NG-HEADER: Descripción: Carrito de compras por sesión en caché de memoria con TTL y su resumen de montos.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Carrito de compras.

El carrito vive en un caché de proceso (una entrada por ``X-Session-Id``) que
expira a los ``CARRITO_TTL_SEGUNDOS`` sin actividad. Los precios se toman del
catálogo al agregar y se refrescan en ``verificar_disponibilidad``.
"""
from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Cupon, Producto, VariacionProducto
from services import cupones
from services.errores import NoEncontradoError, ReglaNegocioError
from tienda_core.config import settings
from tienda_core.dinero import CERO, a_decimal, a_float, porcentaje, redondear

logger = logging.getLogger("tienda.carrito")

PESO_POR_DEFECTO = Decimal("0.5")

# Nota: proceso único; en despliegues multi-proceso conviene un backend compartido.
_CARRITOS: dict[str, dict] = {}


def _vacio() -> dict:
    return {"items": {}, "cupon": None}


def _get(session_id: str) -> dict:
    entry = _CARRITOS.get(session_id)
    if not entry:
        return _vacio()
    if entry["expires"] < time.time():
        _CARRITOS.pop(session_id, None)
        return _vacio()
    return entry["data"]


def _purgar(ahora: float) -> None:
    for k in [k for k, v in _CARRITOS.items() if v["expires"] < ahora]:
        _CARRITOS.pop(k, None)


def _set(session_id: str, data: dict) -> None:
    ahora = time.time()
    _purgar(ahora)
    if session_id not in _CARRITOS:
        # Con el tope alcanzado se descarta la sesión que vence antes
        while _CARRITOS and len(_CARRITOS) >= settings.carrito_maximo_sesiones:
            viejo = min(_CARRITOS, key=lambda k: _CARRITOS[k]["expires"])
            _CARRITOS.pop(viejo, None)
            logger.info("Carrito %s descartado por tope de sesiones", viejo)
    _CARRITOS[session_id] = {"data": data, "expires": ahora + settings.carrito_ttl_segundos}


def limpiar_cache() -> None:
    _CARRITOS.clear()


def item_id(producto_id: int, variacion_id: Optional[int]) -> str:
    return f"item_{producto_id}_{variacion_id}" if variacion_id else f"item_{producto_id}"


async def _cargar(db: AsyncSession, producto_id: int, variacion_id: Optional[int]):
    producto = await db.get(Producto, producto_id)
    if not producto or producto.deleted_at is not None:
        raise NoEncontradoError("Producto", producto_id)
    variacion = None
    if variacion_id is not None:
        variacion = await db.get(VariacionProducto, variacion_id)
        if not variacion or variacion.producto_id != producto.id:
            raise ReglaNegocioError("La variación no pertenece al producto", campo="variacion_id")
    return producto, variacion


def _snapshot(producto: Producto, variacion: Optional[VariacionProducto], cantidad: int) -> dict:
    fuente = variacion if variacion is not None else producto
    return {
        "id": item_id(producto.id, variacion.id if variacion else None),
        "producto_id": producto.id,
        "variacion_id": variacion.id if variacion else None,
        "nombre": producto.nombre,
        "sku": fuente.sku,
        "precio": str(redondear(fuente.precio)),
        "precio_oferta": str(redondear(fuente.precio_oferta)) if fuente.en_oferta else None,
        "cantidad": int(cantidad),
        "peso": str(producto.peso) if producto.peso is not None else None,
        "imagen": producto.imagen_principal,
    }


def _stock(producto: Producto, variacion: Optional[VariacionProducto]) -> int:
    return int((variacion if variacion is not None else producto).stock or 0)


def _validar_cantidad(producto: Producto, variacion, cantidad: int) -> None:
    if cantidad > settings.carrito_maximo_cantidad_por_item:
        raise ReglaNegocioError(
            f"Cantidad máxima por producto: {settings.carrito_maximo_cantidad_por_item}", campo="cantidad"
        )
    disponible = _stock(producto, variacion)
    if cantidad > disponible:
        raise ReglaNegocioError(
            f"Stock insuficiente para el producto: {producto.nombre}. Stock disponible: {disponible}",
            campo="cantidad",
        )


async def agregar_item(
    db: AsyncSession,
    session_id: str,
    producto_id: int,
    cantidad: int = 1,
    variacion_id: Optional[int] = None,
) -> dict:
    if cantidad < 1:
        raise ReglaNegocioError("La cantidad debe ser mayor a cero", campo="cantidad")
    producto, variacion = await _cargar(db, producto_id, variacion_id)
    if not producto.activo or (variacion is not None and not variacion.activo):
        raise ReglaNegocioError("Producto no disponible", campo="producto_id")
    carrito = _get(session_id)
    clave = item_id(producto_id, variacion_id)
    existente = carrito["items"].get(clave)
    if existente is None and len(carrito["items"]) >= settings.carrito_maximo_items:
        raise ReglaNegocioError(
            f"El carrito admite como máximo {settings.carrito_maximo_items} productos", campo="producto_id"
        )
    total = cantidad + (existente["cantidad"] if existente else 0)
    _validar_cantidad(producto, variacion, total)
    carrito["items"][clave] = _snapshot(producto, variacion, total)
    _set(session_id, carrito)
    return carrito


async def actualizar_cantidad(db: AsyncSession, session_id: str, clave: str, cantidad: int) -> dict:
    carrito = _get(session_id)
    item = carrito["items"].get(clave)
    if item is None:
        raise NoEncontradoError("Item", clave)
    if cantidad <= 0:
        carrito["items"].pop(clave)
    else:
        producto, variacion = await _cargar(db, item["producto_id"], item["variacion_id"])
        _validar_cantidad(producto, variacion, cantidad)
        item["cantidad"] = int(cantidad)
    _set(session_id, carrito)
    return carrito


def remover_item(session_id: str, clave: str) -> dict:
    carrito = _get(session_id)
    if carrito["items"].pop(clave, None) is None:
        raise NoEncontradoError("Item", clave)
    _set(session_id, carrito)
    return carrito


def limpiar(session_id: str) -> None:
    _CARRITOS.pop(session_id, None)


def obtener(session_id: str) -> dict:
    return _get(session_id)


async def aplicar_cupon(db: AsyncSession, session_id: str, codigo: str) -> dict:
    carrito = _get(session_id)
    if carrito["cupon"]:
        raise ReglaNegocioError("Ya hay un cupón aplicado; retírelo antes de aplicar otro", campo="codigo")
    if not carrito["items"]:
        raise ReglaNegocioError("El carrito está vacío", campo="codigo")
    subtotal = calcular_resumen(carrito)["subtotal"]
    cupon = await cupones.buscar_cupon_usable(db, codigo, subtotal=subtotal)
    carrito["cupon"] = {
        "codigo": cupon.codigo,
        "tipo": cupon.tipo,
        "descuento": str(cupon.descuento),
        "monto_minimo": str(cupon.monto_minimo) if cupon.monto_minimo is not None else None,
        "monto_maximo_descuento": str(cupon.monto_maximo_descuento) if cupon.monto_maximo_descuento is not None else None,
    }
    _set(session_id, carrito)
    logger.info("Cupón %s aplicado al carrito %s", cupon.codigo, session_id)
    return carrito


def remover_cupon(session_id: str) -> dict:
    carrito = _get(session_id)
    carrito["cupon"] = None
    _set(session_id, carrito)
    return carrito


async def verificar_disponibilidad(db: AsyncSession, session_id: str) -> dict:
    """Quita productos inactivos o agotados y ajusta cantidades al stock."""
    carrito = _get(session_id)
    cambios: list[dict] = []
    for clave, item in list(carrito["items"].items()):
        try:
            producto, variacion = await _cargar(db, item["producto_id"], item["variacion_id"])
        except (NoEncontradoError, ReglaNegocioError):
            carrito["items"].pop(clave)
            cambios.append({"item_id": clave, "accion": "eliminado", "motivo": "Producto inexistente"})
            continue
        stock = _stock(producto, variacion)
        if not producto.activo or (variacion is not None and not variacion.activo) or stock <= 0:
            carrito["items"].pop(clave)
            cambios.append({"item_id": clave, "accion": "eliminado", "motivo": "Sin stock o inactivo"})
            continue
        cantidad = min(int(item["cantidad"]), stock)
        if cantidad != item["cantidad"]:
            cambios.append({
                "item_id": clave,
                "accion": "cantidad_ajustada",
                "cantidad_anterior": item["cantidad"],
                "cantidad_nueva": cantidad,
            })
        carrito["items"][clave] = _snapshot(producto, variacion, cantidad)
    _set(session_id, carrito)
    return {"cambios": cambios, "carrito": carrito}


def _descuento_cupon(datos: Optional[dict], subtotal: Decimal) -> tuple[Decimal, Optional[str]]:
    if not datos:
        return CERO, None
    if datos.get("monto_minimo") is not None and subtotal < a_decimal(datos["monto_minimo"]):
        return CERO, "El subtotal ya no alcanza el mínimo del cupón"
    cupon = Cupon(
        codigo=datos["codigo"],
        tipo=datos["tipo"],
        descuento=a_decimal(datos["descuento"]),
        monto_maximo_descuento=a_decimal(datos["monto_maximo_descuento"]) if datos.get("monto_maximo_descuento") else None,
    )
    return cupones.calcular_descuento(cupon, subtotal), None


def calcular_resumen(carrito: dict) -> dict:
    """Montos del carrito; el IGV se calcula sobre ``subtotal - descuento_cupon``."""
    subtotal = CERO
    ahorro_ofertas = CERO
    peso_total = CERO
    items_count = 0
    for item in carrito["items"].values():
        cant = int(item["cantidad"])
        precio = a_decimal(item["precio"])
        final = a_decimal(item["precio_oferta"]) if item.get("precio_oferta") else precio
        subtotal += final * cant
        ahorro_ofertas += (precio - final) * cant
        peso_total += (a_decimal(item["peso"]) if item.get("peso") else PESO_POR_DEFECTO) * cant
        items_count += cant
    subtotal = redondear(subtotal)
    descuento, aviso = _descuento_cupon(carrito.get("cupon"), subtotal)
    impuestos = porcentaje(subtotal - descuento, settings.igv_porcentaje)
    umbral = a_decimal(settings.envio_gratis_monto)
    return {
        "items_count": items_count,
        "subtotal": subtotal,
        "descuento": descuento,
        "descuentos_aplicados": {"ofertas": redondear(ahorro_ofertas), "cupon": descuento},
        "impuestos": impuestos,
        "envio_gratis": umbral > 0 and subtotal >= umbral,
        "falta_para_envio_gratis": max(CERO, redondear(umbral - subtotal)) if umbral > 0 else CERO,
        "total": redondear(subtotal - descuento + impuestos),
        "peso_total": peso_total,
        "aviso_cupon": aviso,
    }


def serializar(carrito: dict) -> dict:
    resumen = calcular_resumen(carrito)
    items = []
    for item in carrito["items"].values():
        precio = a_decimal(item["precio"])
        final = a_decimal(item["precio_oferta"]) if item.get("precio_oferta") else precio
        items.append({
            **item,
            "precio": a_float(precio),
            "precio_oferta": a_float(item["precio_oferta"]) if item.get("precio_oferta") else None,
            "peso": float(item["peso"]) if item.get("peso") else None,
            "subtotal": a_float(final * int(item["cantidad"])),
        })
    return {
        "items": items,
        "cupon": carrito.get("cupon"),
        "resumen": {
            **{k: (a_float(v) if isinstance(v, Decimal) else v) for k, v in resumen.items() if k != "descuentos_aplicados"},
            "peso_total": float(resumen["peso_total"]),
            "descuentos_aplicados": {k: a_float(v) for k, v in resumen["descuentos_aplicados"].items()},
        },
    }
