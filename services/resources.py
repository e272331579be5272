# NG-HEADER: Nombre de archivo: resources.py
# NG-HEADER: Ubicación: services/resources.py
# NG-HEADER: Descripción: Serialización de entidades a JSON plano con campos calculados.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Serializadores ``<entidad>_resource(obj) -> dict``.

Las relaciones se incluyen sólo si el llamador las pasa ya cargadas.
"""
from __future__ import annotations

from datetime import date
from typing import Iterable, Optional

from db.models import (
    Adicional,
    Categoria,
    Cliente,
    CostoEnvioDinamico,
    CuotaCredito,
    Cupon,
    DetalleAdicional,
    DetallePedido,
    Direccion,
    DireccionValidada,
    Distrito,
    ExcepcionZona,
    HorarioZona,
    InventarioMovimiento,
    MetodoPago,
    Pago,
    Pedido,
    Producto,
    ProgramacionEntrega,
    SeguimientoPedido,
    User,
    VariacionProducto,
    ZonaDistrito,
    ZonaReparto,
)
from services.entregas import NOMBRES_ESTADO as NOMBRES_ESTADO_ENTREGA
from services.seguimiento import NOMBRES_ESTADO
from services.zonas.reglas import parsear_coordenadas, texto_tiempo_entrega
from tienda_core.dinero import a_float, formatear


def _iso(v) -> Optional[str]:
    return v.isoformat() if v is not None else None


def _hora(v) -> Optional[str]:
    return v.strftime("%H:%M") if v is not None else None


def _coord(v) -> Optional[float]:
    return float(v) if v is not None else None


# --- Catálogo ---


def categoria_resource(c: Categoria) -> dict:
    return {
        "id": c.id,
        "nombre": c.nombre,
        "slug": c.slug,
        "descripcion": c.descripcion,
        "imagen": c.imagen,
        "categoria_padre_id": c.categoria_padre_id,
        "activo": c.activo,
        "orden": c.orden,
    }


def variacion_resource(v: VariacionProducto) -> dict:
    return {
        "id": v.id,
        "producto_id": v.producto_id,
        "sku": v.sku,
        "precio": a_float(v.precio),
        "precio_oferta": a_float(v.precio_oferta),
        "precio_final": a_float(v.precio_final),
        "precio_formateado": formatear(v.precio_final),
        "en_oferta": v.en_oferta,
        "stock": v.stock,
        "activo": v.activo,
        "imagen": v.imagen,
        "atributos": v.atributos or {},
    }


def producto_resource(
    p: Producto,
    variaciones: Optional[Iterable[VariacionProducto]] = None,
    imagenes: Optional[Iterable] = None,
) -> dict:
    data = {
        "id": p.id,
        "nombre": p.nombre,
        "slug": p.slug,
        "descripcion": p.descripcion,
        "sku": p.sku,
        "codigo_barras": p.codigo_barras,
        "categoria_id": p.categoria_id,
        "precio": a_float(p.precio),
        "precio_oferta": a_float(p.precio_oferta),
        "precio_final": a_float(p.precio_final),
        "precio_formateado": formatear(p.precio_final, p.moneda),
        "en_oferta": p.en_oferta,
        "descuento_porcentaje": a_float(p.descuento_porcentaje),
        "stock": p.stock,
        "stock_bajo": p.stock_bajo,
        "disponible": bool(p.activo and (p.stock or 0) > 0),
        "imagen_principal": p.imagen_principal,
        "destacado": p.destacado,
        "activo": p.activo,
        "marca": p.marca,
        "modelo": p.modelo,
        "garantia": p.garantia,
        "peso": float(p.peso) if p.peso is not None else None,
        "moneda": p.moneda,
        "meta_title": p.meta_title,
        "meta_description": p.meta_description,
        "atributos_extra": p.atributos_extra or {},
        "created_at": _iso(p.created_at),
    }
    if variaciones is not None:
        data["variaciones"] = [variacion_resource(v) for v in variaciones]
    if imagenes is not None:
        data["imagenes"] = [{"id": i.id, "url": i.url, "alt": i.alt, "orden": i.orden, "principal": i.principal} for i in imagenes]
    return data


def adicional_resource(a: Adicional, precio=None) -> dict:
    precio_efectivo = a.precio if precio is None else precio
    return {
        "id": a.id,
        "nombre": a.nombre,
        "slug": a.slug,
        "descripcion": a.descripcion,
        "precio": a_float(precio_efectivo),
        "precio_formateado": formatear(precio_efectivo),
        "tipo": a.tipo,
        "disponible": a.esta_disponible(),
        "stock": a.stock,
        "tiempo_preparacion": a.tiempo_preparacion,
        "alergenos": a.alergenos or [],
        "vegetariano": a.vegetariano,
        "vegano": a.vegano,
        "orden": a.orden,
    }


# --- Ubigeo, usuarios y direcciones ---


def distrito_resource(d: Distrito) -> dict:
    return {
        "id": d.id,
        "provincia_id": d.provincia_id,
        "nombre": d.nombre,
        "codigo": d.codigo,
        "codigo_postal": d.codigo_postal,
        "latitud": _coord(d.latitud),
        "longitud": _coord(d.longitud),
        "activo": d.activo,
        "disponible_delivery": d.disponible_delivery,
    }


def user_resource(u: User) -> dict:
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "dni": u.dni,
        "telefono": u.telefono,
        "rol": u.rol,
        "limite_credito": a_float(u.limite_credito),
        "credito_usado": a_float(u.credito_usado),
        "credito_disponible": a_float(u.credito_disponible),
        "verificado": u.verificado,
        "activo": u.activo,
    }


def cliente_resource(c: Cliente) -> dict:
    return {
        "id": c.id,
        "user_id": c.user_id,
        "dni": c.dni,
        "telefono": c.telefono,
        "nombre_completo": c.nombre_completo,
        "apellidos": c.apellidos,
        "fecha_nacimiento": _iso(c.fecha_nacimiento),
        "edad": c.edad(),
        "genero": c.genero,
        "verificado": c.verificado,
        "estado": c.estado,
        "preferencias": c.preferencias or {},
    }


def direccion_resource(d: Direccion, texto: Optional[str] = None, validacion: Optional[DireccionValidada] = None) -> dict:
    data = {
        "id": d.id,
        "user_id": d.user_id,
        "distrito_id": d.distrito_id,
        "direccion": d.direccion,
        "referencia": d.referencia,
        "codigo_postal": d.codigo_postal,
        "numero_exterior": d.numero_exterior,
        "numero_interior": d.numero_interior,
        "urbanizacion": d.urbanizacion,
        "etapa": d.etapa,
        "manzana": d.manzana,
        "lote": d.lote,
        "latitud": _coord(d.latitud),
        "longitud": _coord(d.longitud),
        "predeterminada": d.predeterminada,
        "validada": d.validada,
        "alias": d.alias,
        "instrucciones_entrega": d.instrucciones_entrega,
        "direccion_completa": texto or d.direccion_completa(),
    }
    if validacion is not None:
        data["validacion"] = direccion_validada_resource(validacion)
    return data


def direccion_validada_resource(v: DireccionValidada) -> dict:
    return {
        "id": v.id,
        "direccion_id": v.direccion_id,
        "zona_reparto_id": v.zona_reparto_id,
        "latitud": _coord(v.latitud),
        "longitud": _coord(v.longitud),
        "distancia_tienda_km": a_float(v.distancia_tienda_km),
        "en_zona_cobertura": v.en_zona_cobertura,
        "costo_envio_calculado": a_float(v.costo_envio_calculado),
        "costo_envio_formateado": formatear(v.costo_envio_calculado) if v.costo_envio_calculado is not None else None,
        "tiempo_entrega_estimado": v.tiempo_entrega_estimado,
        "tiempo_entrega_texto": (
            f"{v.tiempo_entrega_estimado} minutos" if v.tiempo_entrega_estimado is not None else "No especificado"
        ),
        "es_valida_para_entrega": v.es_valida_para_entrega(),
        "fecha_ultima_validacion": _iso(v.fecha_ultima_validacion),
        "observaciones_validacion": v.observaciones_validacion,
    }


# --- Zonas ---


def zona_resource(
    z: ZonaReparto,
    distritos: Optional[Iterable[ZonaDistrito]] = None,
    costos: Optional[Iterable[CostoEnvioDinamico]] = None,
    horarios: Optional[Iterable[HorarioZona]] = None,
    excepciones: Optional[Iterable[ExcepcionZona]] = None,
) -> dict:
    centro = parsear_coordenadas(z.coordenadas_centro)
    tmin, tmax = z.tiempo_entrega_min, z.tiempo_entrega_max
    data = {
        "id": z.id,
        "nombre": z.nombre,
        "slug": z.slug,
        "descripcion": z.descripcion,
        "costo_envio": a_float(z.costo_envio),
        "costo_envio_formateado": formatear(z.costo_envio),
        "costo_envio_adicional": a_float(z.costo_envio_adicional),
        "tiempo_entrega_min": tmin,
        "tiempo_entrega_max": tmax,
        "tiempo_entrega_promedio": round((tmin + tmax) / 2) if tmin is not None and tmax is not None else None,
        "tiempo_entrega_texto": texto_tiempo_entrega(tmin, tmax),
        "pedido_minimo": a_float(z.pedido_minimo),
        "envio_gratis_desde": a_float(z.envio_gratis_desde),
        "radio_cobertura_km": a_float(z.radio_cobertura_km),
        "coordenadas_centro": z.coordenadas_centro,
        "coordenadas_centro_array": {"lat": centro[0], "lng": centro[1]} if centro else None,
        "poligono_cobertura": z.poligono_cobertura,
        "activo": z.activo,
        "disponible_24h": z.disponible_24h,
        "orden": z.orden,
        "color_mapa": z.color_mapa,
        "observaciones": z.observaciones,
    }
    if distritos is not None:
        data["distritos"] = [zona_distrito_resource(zd) for zd in distritos]
    if costos is not None:
        data["costos_envio_dinamicos"] = [costo_resource(c) for c in costos]
    if horarios is not None:
        data["horarios"] = [horario_resource(h) for h in horarios]
    if excepciones is not None:
        data["excepciones"] = [excepcion_resource(e) for e in excepciones]
    return data


def zona_distrito_resource(zd: ZonaDistrito) -> dict:
    return {
        "id": zd.id,
        "zona_reparto_id": zd.zona_reparto_id,
        "distrito_id": zd.distrito_id,
        "costo_envio_personalizado": a_float(zd.costo_envio_personalizado),
        "tiempo_adicional": zd.tiempo_adicional,
        "activo": zd.activo,
        "prioridad": zd.prioridad,
        "prioridad_texto": {1: "alta", 2: "media", 3: "baja"}.get(zd.prioridad, "baja"),
    }


def costo_resource(c: CostoEnvioDinamico) -> dict:
    return {
        "id": c.id,
        "zona_reparto_id": c.zona_reparto_id,
        "distancia_desde_km": a_float(c.distancia_desde_km),
        "distancia_hasta_km": a_float(c.distancia_hasta_km),
        "rango_texto": f"{a_float(c.distancia_desde_km)} - {a_float(c.distancia_hasta_km)} km",
        "costo_envio": a_float(c.costo_envio),
        "costo_envio_formateado": formatear(c.costo_envio),
        "tiempo_adicional": c.tiempo_adicional,
        "activo": c.activo,
    }


def horario_resource(h: HorarioZona) -> dict:
    return {
        "id": h.id,
        "zona_reparto_id": h.zona_reparto_id,
        "dia_semana": h.dia_semana,
        "hora_inicio": _hora(h.hora_inicio),
        "hora_fin": _hora(h.hora_fin),
        "activo": h.activo,
        "dia_completo": h.dia_completo,
        "horario_texto": "Todo el día" if h.dia_completo else f"{_hora(h.hora_inicio)} - {_hora(h.hora_fin)}",
        "observaciones": h.observaciones,
    }


def excepcion_resource(e: ExcepcionZona) -> dict:
    return {
        "id": e.id,
        "zona_reparto_id": e.zona_reparto_id,
        "fecha_excepcion": _iso(e.fecha_excepcion),
        "tipo": e.tipo,
        "hora_inicio": _hora(e.hora_inicio),
        "hora_fin": _hora(e.hora_fin),
        "costo_especial": a_float(e.costo_especial),
        "tiempo_especial_min": e.tiempo_especial_min,
        "tiempo_especial_max": e.tiempo_especial_max,
        "motivo": e.motivo,
        "activo": e.activo,
    }


# --- Pagos, cupones y crédito ---


def metodo_pago_resource(m: MetodoPago, monto=None) -> dict:
    data = {
        "id": m.id,
        "nombre": m.nombre,
        "slug": m.slug,
        "tipo": m.tipo,
        "descripcion": m.descripcion,
        "logo": m.logo,
        "activo": m.activo,
        "comision_porcentaje": float(m.comision_porcentaje or 0),
        "comision_fija": a_float(m.comision_fija),
        "monto_minimo": a_float(m.monto_minimo),
        "monto_maximo": a_float(m.monto_maximo),
        "paises_disponibles": m.paises_disponibles,
        "moneda_soportada": m.moneda_soportada,
        "permite_cuotas": m.permite_cuotas,
        "cuotas_maximas": m.cuotas_maximas,
        "instrucciones": m.instrucciones,
    }
    if monto is not None:
        data["comision_calculada"] = a_float(m.calcular_comision(monto))
        data["disponible_para_monto"] = m.esta_disponible_para_monto(monto)
    return data


def pago_resource(p: Pago) -> dict:
    return {
        "id": p.id,
        "pedido_id": p.pedido_id,
        "metodo_pago_id": p.metodo_pago_id,
        "cuota_credito_id": p.cuota_credito_id,
        "monto": a_float(p.monto),
        "comision": a_float(p.comision),
        "monto_con_comision": a_float(p.monto_con_comision),
        "monto_formateado": formatear(p.monto, p.moneda),
        "numero_cuota": p.numero_cuota,
        "fecha_pago": _iso(p.fecha_pago),
        "estado": p.estado,
        "metodo": p.metodo,
        "referencia": p.referencia,
        "moneda": p.moneda,
        "codigo_autorizacion": p.codigo_autorizacion,
        "observaciones": p.observaciones,
    }


def cupon_resource(c: Cupon, hoy: Optional[date] = None) -> dict:
    return {
        "id": c.id,
        "codigo": c.codigo,
        "descuento": a_float(c.descuento),
        "tipo": c.tipo,
        "descuento_texto": f"{a_float(c.descuento):g}%" if c.tipo == "porcentaje" else formatear(c.descuento),
        "fecha_inicio": _iso(c.fecha_inicio),
        "fecha_fin": _iso(c.fecha_fin),
        "limite_uso": c.limite_uso,
        "usos": c.usos,
        "usos_restantes": (c.limite_uso - c.usos) if c.limite_uso is not None else None,
        "monto_minimo": a_float(c.monto_minimo),
        "monto_maximo_descuento": a_float(c.monto_maximo_descuento),
        "activo": c.activo,
        "es_vigente": c.es_vigente(hoy),
        "puede_usarse": c.puede_usarse(hoy),
        "descripcion": c.descripcion,
    }


ESTADOS_CUOTA_DETALLE = {
    "pendiente": ("Pendiente", "warning"),
    "pagado": ("Pagado", "success"),
    "atrasado": ("Atrasado", "danger"),
    "condonado": ("Condonado", "info"),
}


def urgencia_cuota(c: CuotaCredito, hoy: date) -> str:
    if not c.esta_pendiente:
        return "ninguna"
    dias = (hoy - c.fecha_vencimiento).days
    if dias > 0:
        return "critica"
    if dias >= -3:
        return "alta"
    if dias >= -7:
        return "media"
    return "baja"


def cuota_resource(c: CuotaCredito, hoy: Optional[date] = None) -> dict:
    hoy = hoy or date.today()
    dias = (c.fecha_vencimiento - hoy).days
    nombre, color = ESTADOS_CUOTA_DETALLE.get(c.estado, (c.estado, "secondary"))
    return {
        "id": c.id,
        "pedido_id": c.pedido_id,
        "numero_cuota": c.numero_cuota,
        "monto_cuota": a_float(c.monto_cuota),
        "interes": a_float(c.interes),
        "mora": a_float(c.mora),
        "monto_total": a_float(c.monto_total),
        "monto_formateado": formatear(c.monto_total, c.moneda),
        "fecha_vencimiento": _iso(c.fecha_vencimiento),
        "fecha_vencimiento_formateada": c.fecha_vencimiento.strftime("%d/%m/%Y"),
        "fecha_pago": _iso(c.fecha_pago),
        "estado": c.estado,
        "estado_detallado": {"codigo": c.estado, "nombre": nombre, "color": color},
        "moneda": c.moneda,
        "dias_vencimiento": dias,
        "esta_vencida": c.esta_vencida(hoy),
        "dias_atraso": max(0, -dias) if c.esta_pendiente else 0,
        "urgencia": urgencia_cuota(c, hoy),
    }


# --- Pedidos ---


def detalle_resource(d: DetallePedido, adicionales: Optional[list[DetalleAdicional]] = None) -> dict:
    data = {
        "id": d.id,
        "producto_id": d.producto_id,
        "variacion_id": d.variacion_id,
        "cantidad": d.cantidad,
        "precio_unitario": a_float(d.precio_unitario),
        "subtotal": a_float(d.subtotal),
        "descuento": a_float(d.descuento),
        "impuesto": a_float(d.impuesto),
        "total": a_float(d.total),
    }
    if adicionales is not None:
        data["adicionales"] = [
            {
                "id": a.id,
                "adicional_id": a.adicional_id,
                "cantidad": a.cantidad,
                "precio_unitario": a_float(a.precio_unitario),
                "subtotal": a_float(a.subtotal),
            }
            for a in adicionales
        ]
        data["total_con_adicionales"] = a_float(d.total_con_adicionales(adicionales))
    return data


def seguimiento_resource(s: SeguimientoPedido) -> dict:
    return {
        "id": s.id,
        "estado_anterior": s.estado_anterior,
        "estado_actual": s.estado_actual,
        "estado_texto": NOMBRES_ESTADO.get(s.estado_actual, s.estado_actual),
        "observaciones": s.observaciones,
        "usuario_cambio_id": s.usuario_cambio_id,
        "fecha_cambio": _iso(s.fecha_cambio),
    }


def pedido_resource(
    p: Pedido,
    detalles: Optional[list[tuple[DetallePedido, list[DetalleAdicional]]]] = None,
    pagos: Optional[Iterable[Pago]] = None,
    cuotas: Optional[Iterable[CuotaCredito]] = None,
    seguimientos: Optional[Iterable[SeguimientoPedido]] = None,
) -> dict:
    data = {
        "id": p.id,
        "numero_pedido": p.numero_pedido,
        "codigo_rastreo": p.codigo_rastreo,
        "user_id": p.user_id,
        "estado": p.estado,
        "estado_texto": NOMBRES_ESTADO.get(p.estado, p.estado),
        "tipo_pago": p.tipo_pago,
        "tipo_entrega": p.tipo_entrega,
        "es_credito": p.es_credito,
        "puede_ser_cancelado": p.puede_ser_cancelado,
        "subtotal": a_float(p.subtotal),
        "descuento": a_float(p.descuento),
        "igv": a_float(p.igv),
        "costo_envio": a_float(p.costo_envio),
        "total": a_float(p.total),
        "total_formateado": formatear(p.total, p.moneda),
        "moneda": p.moneda,
        "cuotas": p.cuotas,
        "monto_cuota": a_float(p.monto_cuota),
        "interes_total": a_float(p.interes_total),
        "cupon_codigo": p.cupon_codigo,
        "metodo_pago_id": p.metodo_pago_id,
        "zona_reparto_id": p.zona_reparto_id,
        "repartidor_id": p.repartidor_id,
        "direccion_validada_id": p.direccion_validada_id,
        "direccion_entrega": p.direccion_entrega,
        "referencia_entrega": p.referencia_entrega,
        "telefono_entrega": p.telefono_entrega,
        "latitud_entrega": _coord(p.latitud_entrega),
        "longitud_entrega": _coord(p.longitud_entrega),
        "tiempo_entrega_estimado": p.tiempo_entrega_estimado,
        "fecha_entrega_programada": _iso(p.fecha_entrega_programada),
        "fecha_entrega_real": _iso(p.fecha_entrega_real),
        "canal_venta": p.canal_venta,
        "observaciones": p.observaciones,
        "created_at": _iso(p.created_at),
    }
    if detalles is not None:
        data["detalles"] = [detalle_resource(d, ads) for d, ads in detalles]
    if pagos is not None:
        data["pagos"] = [pago_resource(x) for x in pagos]
    if cuotas is not None:
        data["cuotas_credito"] = [cuota_resource(c) for c in cuotas]
    if seguimientos is not None:
        data["seguimiento"] = [seguimiento_resource(s) for s in seguimientos]
    return data


def programacion_resource(e: ProgramacionEntrega) -> dict:
    return {
        "id": e.id,
        "pedido_id": e.pedido_id,
        "repartidor_id": e.repartidor_id,
        "fecha_programada": _iso(e.fecha_programada),
        "hora_inicio_ventana": _hora(e.hora_inicio_ventana),
        "hora_fin_ventana": _hora(e.hora_fin_ventana),
        "estado": e.estado,
        "estado_texto": NOMBRES_ESTADO_ENTREGA.get(e.estado, e.estado),
        "orden_ruta": e.orden_ruta,
        "notas_repartidor": e.notas_repartidor,
        "hora_salida": _iso(e.hora_salida),
        "hora_llegada": _iso(e.hora_llegada),
        "tiempo_entrega_minutos": e.tiempo_entrega_minutos(),
        "motivo_fallo": e.motivo_fallo,
    }


def movimiento_resource(m: InventarioMovimiento) -> dict:
    return {
        "id": m.id,
        "producto_id": m.producto_id,
        "variacion_id": m.variacion_id,
        "tipo": m.tipo,
        "cantidad": m.cantidad,
        "stock_anterior": m.stock_anterior,
        "stock_nuevo": m.stock_nuevo,
        "motivo": m.motivo,
        "referencia": m.referencia,
        "usuario_id": m.usuario_id,
        "created_at": _iso(m.created_at),
    }
