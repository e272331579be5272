# NG-HEADER: Nombre de archivo: pedidos.py
# NG-HEADER: Ubicación: services/pedidos.py
# NG-HEADER: Descripción: Checkout de pedidos (precios, cupón, envío, IGV, pago o crédito) y cancelación.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Creación y ciclo de vida de pedidos.

``crear_pedido`` no hace commit: el router confirma la transacción completa o
la revierte ante cualquier ``ReglaNegocioError``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import (
    Adicional,
    DetalleAdicional,
    DetallePedido,
    Direccion,
    DireccionValidada,
    MetodoPago,
    Pedido,
    Producto,
    User,
    VariacionProducto,
)
from services import catalogo, credito, cupones, direcciones, inventario, pagos, seguimiento
from services.errores import NoEncontradoError, ReglaNegocioError
from services.zonas.reglas import ResolucionEnvio
from tienda_core.config import settings
from tienda_core.dinero import CERO, porcentaje, redondear

logger = logging.getLogger("tienda.pedidos")


@dataclass
class ItemPedido:
    producto_id: int
    cantidad: int
    variacion_id: Optional[int] = None
    adicionales: list[dict] = field(default_factory=list)


@dataclass
class DatosPedido:
    items: list[ItemPedido]
    tipo_pago: str = "contado"
    tipo_entrega: str = "delivery"
    user_id: Optional[int] = None
    metodo_pago_id: Optional[int] = None
    direccion_id: Optional[int] = None
    cuotas: Optional[int] = None
    cupon_codigo: Optional[str] = None
    observaciones: Optional[str] = None
    telefono_entrega: Optional[str] = None
    fecha_entrega_programada: Optional[datetime] = None
    datos_cliente: Optional[dict] = None
    canal_venta: str = "web"
    pais: str = "PE"
    moneda: str = "PEN"


@dataclass
class _Linea:
    producto: Producto
    variacion: Optional[VariacionProducto]
    cantidad: int
    precio_unitario: Decimal
    subtotal: Decimal
    adicionales: list[tuple[int, int, Decimal]]  # (adicional_id, cantidad, precio_unitario)
    subtotal_adicionales: Decimal


def calcular_totales(subtotal, descuento, costo_envio, igv_porcentaje=None) -> dict:
    """IGV sobre la base descontada y total ``subtotal + igv + costo_envio - descuento``."""
    subtotal = redondear(subtotal)
    descuento = redondear(descuento)
    costo_envio = redondear(costo_envio)
    pct = settings.igv_porcentaje if igv_porcentaje is None else igv_porcentaje
    igv = porcentaje(subtotal - descuento, pct)
    total = redondear(subtotal + igv + costo_envio - descuento)
    return {"subtotal": subtotal, "descuento": descuento, "igv": igv, "costo_envio": costo_envio, "total": total}


async def generar_numero_pedido(db: AsyncSession, hoy: Optional[date] = None) -> str:
    """``PED-YYYYMMDD-NNNN`` con correlativo diario."""
    hoy = hoy or date.today()
    prefijo = f"PED-{hoy:%Y%m%d}-"
    n = await db.scalar(
        select(func.count()).select_from(Pedido).where(Pedido.numero_pedido.like(prefijo + "%"))
    )
    return f"{prefijo}{int(n or 0) + 1:04d}"


def generar_codigo_rastreo(pedido: Pedido) -> str:
    """``PED-000123-2025`` (una sola vez por pedido)."""
    if not pedido.codigo_rastreo:
        anio = (pedido.created_at or datetime.now()).year
        pedido.codigo_rastreo = f"PED-{pedido.id:06d}-{anio}"
    return pedido.codigo_rastreo


async def _preparar_lineas(db: AsyncSession, items: list[ItemPedido]) -> list[_Linea]:
    if not items:
        raise ReglaNegocioError("El pedido debe tener al menos un producto", campo="items")
    lineas: list[_Linea] = []
    pedidas: dict[tuple[int, Optional[int]], int] = {}
    for item in items:
        producto = await db.get(Producto, item.producto_id)
        if not producto or producto.deleted_at is not None:
            raise NoEncontradoError("Producto", item.producto_id)
        if not producto.activo:
            raise ReglaNegocioError(f"Producto no disponible: {producto.nombre}", campo="items")
        variacion = None
        if item.variacion_id is not None:
            variacion = await db.get(VariacionProducto, item.variacion_id)
            if not variacion or variacion.producto_id != producto.id:
                raise ReglaNegocioError(
                    f"La variación {item.variacion_id} no pertenece al producto {producto.nombre}",
                    campo="items",
                )
            if not variacion.activo:
                raise ReglaNegocioError(f"Variación no disponible: {variacion.sku}", campo="items")

        clave = (producto.id, variacion.id if variacion else None)
        pedidas[clave] = pedidas.get(clave, 0) + int(item.cantidad)
        fuente = variacion if variacion is not None else producto
        if not fuente.es_stock_suficiente(pedidas[clave]):
            raise ReglaNegocioError(
                f"Stock insuficiente para el producto: {producto.nombre}. Stock disponible: {fuente.stock}",
                campo="items",
                codigo="stock_insuficiente",
            )

        reglas = await catalogo.cargar_reglas_adicionales(db, producto.id)
        errores = catalogo.validar_seleccion_adicionales(reglas, item.adicionales, item.cantidad)
        if errores:
            raise ReglaNegocioError(errores[0], campo="items")
        adicionales: list[tuple[int, int, Decimal]] = []
        subtotal_ad = CERO
        for sel in item.adicionales:
            aid = int(sel["adicional_id"])
            cant = int(sel.get("cantidad") or 1) * int(item.cantidad)
            precio = catalogo.precio_adicional(reglas.pivots.get(aid), reglas.adicionales[aid])
            adicionales.append((aid, cant, precio))
            subtotal_ad += precio * cant

        precio_unitario = fuente.precio_final
        lineas.append(_Linea(
            producto=producto,
            variacion=variacion,
            cantidad=int(item.cantidad),
            precio_unitario=precio_unitario,
            subtotal=redondear(precio_unitario * int(item.cantidad)),
            adicionales=adicionales,
            subtotal_adicionales=redondear(subtotal_ad),
        ))
    return lineas


async def _resolver_entrega(
    db: AsyncSession, datos: DatosPedido, base_pedido: Decimal
) -> tuple[Optional[Direccion], Optional[DireccionValidada], Optional[ResolucionEnvio]]:
    if datos.tipo_entrega == "recojo_tienda":
        return None, None, None
    if datos.direccion_id is None:
        raise ReglaNegocioError("La dirección es obligatoria para delivery", campo="direccion_id")
    direccion = await db.get(Direccion, datos.direccion_id)
    if not direccion:
        raise NoEncontradoError("Dirección", datos.direccion_id)
    if datos.user_id is not None and direccion.user_id != datos.user_id:
        raise ReglaNegocioError("La dirección no pertenece al usuario", campo="direccion_id")
    momento = datos.fecha_entrega_programada or datetime.now()
    validada, res = await direcciones.validar_direccion(db, direccion, momento=momento, monto_pedido=base_pedido)
    if not res.en_cobertura:
        raise ReglaNegocioError(res.motivo or "Dirección fuera de zona de cobertura", campo="direccion_id")
    if not res.disponible:
        raise ReglaNegocioError(res.motivo or "Zona no disponible", campo="direccion_id", codigo="zona_no_disponible")
    return direccion, validada, res


async def crear_pedido(db: AsyncSession, datos: DatosPedido) -> Pedido:
    if datos.tipo_pago == "credito" and datos.user_id is None:
        raise ReglaNegocioError("Las compras al crédito requieren un usuario", campo="user_id")
    user = None
    if datos.user_id is not None:
        user = await db.get(User, datos.user_id)
        if not user or user.deleted_at is not None:
            raise NoEncontradoError("Usuario", datos.user_id)

    lineas = await _preparar_lineas(db, datos.items)
    subtotal = redondear(sum((l.subtotal + l.subtotal_adicionales for l in lineas), CERO))

    cupon = None
    descuento = CERO
    if datos.cupon_codigo:
        cupon = await cupones.buscar_cupon_usable(db, datos.cupon_codigo, subtotal=subtotal)
        descuento = cupones.calcular_descuento(cupon, subtotal)

    direccion, validada, envio = await _resolver_entrega(db, datos, subtotal - descuento)
    costo_envio = envio.costo_envio if envio is not None else CERO
    totales = calcular_totales(subtotal, descuento, costo_envio)

    metodo = None
    if datos.metodo_pago_id is not None:
        metodo = await db.get(MetodoPago, datos.metodo_pago_id)
        pagos.validar_metodo(metodo, totales["total"], datos.pais, datos.moneda)
    elif datos.tipo_pago != "credito":
        raise ReglaNegocioError("El método de pago es obligatorio", campo="metodo_pago_id")

    if datos.tipo_pago == "credito":
        credito.consumir_credito(user, totales["total"])

    pedido = Pedido(
        user_id=datos.user_id,
        numero_pedido=await generar_numero_pedido(db),
        metodo_pago_id=metodo.id if metodo else None,
        zona_reparto_id=envio.zona_id if envio else None,
        direccion_validada_id=validada.id if validada else None,
        estado="pendiente",
        tipo_pago=datos.tipo_pago,
        tipo_entrega=datos.tipo_entrega,
        observaciones=datos.observaciones,
        moneda=datos.moneda,
        canal_venta=datos.canal_venta,
        tiempo_entrega_estimado=validada.tiempo_entrega_estimado if validada else None,
        fecha_entrega_programada=datos.fecha_entrega_programada,
        telefono_entrega=datos.telefono_entrega or (user.telefono if user else None),
        datos_cliente=datos.datos_cliente,
        cupon_codigo=cupon.codigo if cupon else None,
        created_at=datetime.now(),
        **totales,
    )
    if direccion is not None:
        pedido.direccion_entrega = await direcciones.texto_direccion(db, direccion)
        pedido.referencia_entrega = direccion.referencia
        pedido.latitud_entrega = validada.latitud
        pedido.longitud_entrega = validada.longitud
    db.add(pedido)
    await db.flush()
    generar_codigo_rastreo(pedido)
    seguimiento.registrar_inicial(db, pedido)

    for l in lineas:
        detalle = DetallePedido(
            pedido_id=pedido.id,
            producto_id=l.producto.id,
            variacion_id=l.variacion.id if l.variacion else None,
            cantidad=l.cantidad,
            precio_unitario=l.precio_unitario,
            subtotal=l.subtotal,
            descuento=CERO,
            impuesto=CERO,
            moneda=pedido.moneda,
        )
        db.add(detalle)
        await db.flush()
        for aid, cant, precio in l.adicionales:
            db.add(DetalleAdicional(
                detalle_pedido_id=detalle.id,
                adicional_id=aid,
                cantidad=cant,
                precio_unitario=precio,
                subtotal=redondear(precio * cant),
            ))
        inventario.reducir_stock(
            db, l.producto, l.cantidad, l.variacion, referencia=pedido.numero_pedido, usuario_id=datos.user_id,
        )
    await _descontar_adicionales(db, lineas)

    if cupon is not None:
        await cupones.registrar_uso(db, cupon, datos.user_id)

    if datos.tipo_pago == "credito":
        credito.generar_cuotas(db, pedido, int(datos.cuotas or 1))
    else:
        pagos.crear_pago_pendiente(db, pedido, metodo)

    await db.flush()
    logger.info(
        "Pedido %s creado: subtotal=%s descuento=%s igv=%s envio=%s total=%s (%s)",
        pedido.numero_pedido, pedido.subtotal, pedido.descuento, pedido.igv,
        pedido.costo_envio, pedido.total, pedido.tipo_pago,
    )
    return pedido


async def _descontar_adicionales(db: AsyncSession, lineas: list[_Linea]) -> None:
    consumo: dict[int, int] = {}
    for l in lineas:
        for aid, cant, _ in l.adicionales:
            consumo[aid] = consumo.get(aid, 0) + cant
    for aid, cant in consumo.items():
        adicional = await db.get(Adicional, aid)
        if adicional is None or adicional.stock is None:
            continue
        if adicional.stock < cant:
            raise ReglaNegocioError(f"Adicional '{adicional.nombre}' sin stock suficiente", campo="items")
        adicional.stock -= cant


async def detalles_de_pedido(db: AsyncSession, pedido_id: int) -> list[tuple[DetallePedido, list[DetalleAdicional]]]:
    detalles = (await db.execute(
        select(DetallePedido).where(DetallePedido.pedido_id == pedido_id).order_by(DetallePedido.id)
    )).scalars().all()
    out = []
    for d in detalles:
        ads = (await db.execute(
            select(DetalleAdicional).where(DetalleAdicional.detalle_pedido_id == d.id).order_by(DetalleAdicional.id)
        )).scalars().all()
        out.append((d, list(ads)))
    return out


async def cancelar(
    db: AsyncSession,
    pedido: Pedido,
    motivo: Optional[str] = None,
    usuario_id: Optional[int] = None,
) -> Pedido:
    """Devuelve stock, libera crédito pendiente y cancela pagos pendientes."""
    if not pedido.puede_ser_cancelado:
        raise ReglaNegocioError(
            f"El pedido no puede cancelarse en estado '{pedido.estado}'",
            campo="estado",
            codigo="no_cancelable",
        )
    devolver: dict[int, int] = {}
    for detalle, adicionales in await detalles_de_pedido(db, pedido.id):
        producto = await db.get(Producto, detalle.producto_id)
        variacion = await db.get(VariacionProducto, detalle.variacion_id) if detalle.variacion_id else None
        inventario.incrementar_stock(
            db, producto, detalle.cantidad, variacion,
            motivo="Cancelación de pedido", referencia=pedido.numero_pedido, usuario_id=usuario_id,
        )
        for da in adicionales:
            devolver[da.adicional_id] = devolver.get(da.adicional_id, 0) + da.cantidad
    for aid, cant in devolver.items():
        adicional = await db.get(Adicional, aid)
        # stock NULL es ilimitado
        if adicional is not None and adicional.stock is not None:
            adicional.stock += cant
    if pedido.es_credito:
        await credito.liberar_credito_pendiente(db, pedido)
    await pagos.cancelar_pendientes(db, pedido)
    seguimiento.registrar_cambio(db, pedido, "cancelado", motivo or "Pedido cancelado", usuario_id)
    return pedido


async def cambiar_estado(
    db: AsyncSession,
    pedido: Pedido,
    nuevo: str,
    observaciones: Optional[str] = None,
    usuario_id: Optional[int] = None,
) -> Pedido:
    if nuevo == "cancelado":
        return await cancelar(db, pedido, observaciones, usuario_id)
    seguimiento.registrar_cambio(db, pedido, nuevo, observaciones, usuario_id)
    return pedido
