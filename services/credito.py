# NG-HEADER: Nombre de archivo: credito.py
# NG-HEADER: Ubicación: services/credito.py
# NG-HEADER: Descripción: Crédito de clientes: límite, cuotas, pagos, moras y condonaciones.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Ventas al crédito en cuotas.

Invariante: ``0 <= user.credito_usado <= user.limite_credito``. El crédito se
consume con el total del pedido y se libera con cada cuota pagada o
condonada.
"""
from __future__ import annotations

import calendar
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import CuotaCredito, MetodoPago, Pago, Pedido, User
from services import seguimiento
from services.errores import ReglaNegocioError
from tienda_core.config import settings
from tienda_core.dinero import CERO, a_decimal, porcentaje, redondear

logger = logging.getLogger("tienda.credito")

MAXIMO_CUOTAS = 24


def sumar_meses(fecha: date, meses: int) -> date:
    mes0 = fecha.month - 1 + meses
    anio = fecha.year + mes0 // 12
    mes = mes0 % 12 + 1
    dia = min(fecha.day, calendar.monthrange(anio, mes)[1])
    return date(anio, mes, dia)


def credito_disponible(user: User) -> Decimal:
    return user.credito_disponible


def verificar_credito(user: User, monto) -> None:
    monto = redondear(monto)
    if not user.activo:
        raise ReglaNegocioError("Usuario inactivo", campo="user_id")
    if monto > credito_disponible(user):
        logger.warning(
            "Crédito insuficiente user=%s monto=%s disponible=%s",
            user.id, monto, credito_disponible(user),
        )
        raise ReglaNegocioError(
            f"Crédito insuficiente. Disponible: S/ {credito_disponible(user):.2f}",
            campo="tipo_pago",
            codigo="credito_insuficiente",
        )


def consumir_credito(user: User, monto) -> None:
    verificar_credito(user, monto)
    user.credito_usado = redondear(a_decimal(user.credito_usado) + redondear(monto))


def liberar_credito(user: User, monto) -> None:
    user.credito_usado = max(CERO, redondear(a_decimal(user.credito_usado) - redondear(monto)))


def dividir_en_cuotas(total, numero_cuotas: int) -> list[Decimal]:
    """Reparte ``total`` en montos a céntimos; la última cuota absorbe el residuo."""
    if numero_cuotas < 1:
        raise ReglaNegocioError("El número de cuotas debe ser al menos 1", campo="cuotas")
    total = redondear(total)
    base = redondear(total / numero_cuotas)
    montos = [base] * (numero_cuotas - 1)
    montos.append(redondear(total - base * (numero_cuotas - 1)))
    return montos


def generar_cuotas(
    db: AsyncSession,
    pedido: Pedido,
    numero_cuotas: int,
    fecha_inicio: Optional[date] = None,
    tasa_mensual=None,
) -> list[CuotaCredito]:
    """Crea las cuotas mensuales del pedido; la suma de ``monto_cuota`` es el total."""
    if numero_cuotas > MAXIMO_CUOTAS:
        raise ReglaNegocioError(f"Máximo {MAXIMO_CUOTAS} cuotas", campo="cuotas")
    fecha_inicio = fecha_inicio or date.today()
    tasa = a_decimal(settings.interes_credito_mensual if tasa_mensual is None else tasa_mensual)
    cuotas: list[CuotaCredito] = []
    interes_total = CERO
    for i, monto in enumerate(dividir_en_cuotas(pedido.total, numero_cuotas), start=1):
        interes = porcentaje(monto, tasa)
        interes_total += interes
        cuota = CuotaCredito(
            pedido_id=pedido.id,
            numero_cuota=i,
            monto_cuota=monto,
            interes=interes,
            mora=CERO,
            fecha_vencimiento=sumar_meses(fecha_inicio, i),
            estado="pendiente",
            moneda=pedido.moneda,
        )
        db.add(cuota)
        cuotas.append(cuota)
    pedido.cuotas = numero_cuotas
    pedido.monto_cuota = cuotas[0].monto_cuota
    pedido.interes_total = redondear(interes_total)
    return cuotas


async def cuotas_de_pedido(db: AsyncSession, pedido_id: int) -> list[CuotaCredito]:
    return list((await db.execute(
        select(CuotaCredito).where(CuotaCredito.pedido_id == pedido_id).order_by(CuotaCredito.numero_cuota)
    )).scalars().all())


async def _usuario_del_pedido(db: AsyncSession, pedido: Pedido) -> Optional[User]:
    if pedido.user_id is None:
        return None
    return await db.get(User, pedido.user_id)


async def pagar_cuota(
    db: AsyncSession,
    cuota: CuotaCredito,
    metodo_pago: Optional[MetodoPago] = None,
    fecha: Optional[date] = None,
    referencia: Optional[str] = None,
) -> Pago:
    if not cuota.esta_pendiente:
        raise ReglaNegocioError(f"La cuota ya está {cuota.estado}", campo="estado")
    fecha = fecha or date.today()
    pedido = await db.get(Pedido, cuota.pedido_id)
    monto = cuota.monto_total
    comision = metodo_pago.calcular_comision(monto) if metodo_pago is not None else CERO
    pago = Pago(
        pedido_id=cuota.pedido_id,
        metodo_pago_id=metodo_pago.id if metodo_pago is not None else None,
        cuota_credito_id=cuota.id,
        monto=monto,
        comision=comision,
        numero_cuota=cuota.numero_cuota,
        fecha_pago=datetime.combine(fecha, datetime.now().time()),
        estado="pagado",
        metodo=metodo_pago.slug if metodo_pago is not None else "credito",
        referencia=referencia,
        moneda=cuota.moneda,
    )
    db.add(pago)
    cuota.estado = "pagado"
    cuota.fecha_pago = fecha

    user = await _usuario_del_pedido(db, pedido)
    if user is not None:
        liberar_credito(user, cuota.monto_cuota)

    restantes = [c for c in await cuotas_de_pedido(db, cuota.pedido_id) if c.id != cuota.id and c.esta_pendiente]
    if not restantes and pedido.estado == "pendiente":
        seguimiento.registrar_cambio(db, pedido, "confirmado", "Crédito cancelado en su totalidad")
    logger.info("Cuota %s del pedido %s pagada (%s)", cuota.numero_cuota, cuota.pedido_id, monto)
    return pago


def condonar(cuota: CuotaCredito, user: Optional[User]) -> None:
    if not cuota.esta_pendiente:
        raise ReglaNegocioError(f"La cuota ya está {cuota.estado}", campo="estado")
    cuota.estado = "condonado"
    cuota.mora = CERO
    if user is not None:
        liberar_credito(user, cuota.monto_cuota)
    logger.info("Cuota %s del pedido %s condonada", cuota.numero_cuota, cuota.pedido_id)


def calcular_mora(cuota: CuotaCredito) -> Decimal:
    return porcentaje(cuota.monto_cuota, settings.mora_porcentaje)


async def actualizar_moras(db: AsyncSession, hoy: Optional[date] = None) -> dict:
    """Marca como ``atrasado`` las cuotas vencidas y les aplica la mora."""
    hoy = hoy or date.today()
    vencidas = (await db.execute(
        select(CuotaCredito).where(
            CuotaCredito.estado.in_(("pendiente", "atrasado")),
            CuotaCredito.fecha_vencimiento < hoy,
        )
    )).scalars().all()
    nuevas = 0
    for cuota in vencidas:
        if cuota.estado == "pendiente":
            nuevas += 1
        cuota.estado = "atrasado"
        cuota.mora = calcular_mora(cuota)
    if vencidas:
        logger.info("Moras actualizadas: %d cuotas vencidas (%d nuevas)", len(vencidas), nuevas)
    return {"procesadas": len(vencidas), "nuevas_atrasadas": nuevas, "fecha": hoy.isoformat()}


async def liberar_credito_pendiente(db: AsyncSession, pedido: Pedido) -> Decimal:
    """Al cancelar: libera lo no pagado y cancela las cuotas pendientes."""
    user = await _usuario_del_pedido(db, pedido)
    liberado = CERO
    for cuota in await cuotas_de_pedido(db, pedido.id):
        if cuota.esta_pendiente:
            liberado += a_decimal(cuota.monto_cuota)
            cuota.estado = "condonado"
            cuota.mora = CERO
    if user is not None and liberado:
        liberar_credito(user, liberado)
    return redondear(liberado)
