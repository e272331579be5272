#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_zonas_reglas.py
# NG-HEADER: Ubicación: tests/test_zonas_reglas.py
# NG-HEADER: Descripción: Pruebas de las reglas puras de zonas (cobertura, tramos, horarios, excepciones)
# NG-HEADER: Lineamientos: Ver AGENTS.md
from datetime import date, datetime, time
from decimal import Decimal

import pytest

from db.models import CostoEnvioDinamico, ExcepcionZona, HorarioZona, ZonaDistrito, ZonaReparto
from services.zonas import reglas

# Lunes 6 de octubre de 2025, 12:00
LUNES = datetime(2025, 10, 6, 12, 0)


def _zona(**kw) -> ZonaReparto:
    base = dict(
        id=1,
        nombre="Centro",
        slug="centro",
        costo_envio=Decimal("8.00"),
        costo_envio_adicional=Decimal("0"),
        tiempo_entrega_min=30,
        tiempo_entrega_max=60,
        pedido_minimo=None,
        envio_gratis_desde=None,
        radio_cobertura_km=None,
        coordenadas_centro=None,
        poligono_cobertura=None,
        activo=True,
        disponible_24h=False,
        orden=0,
    )
    base.update(kw)
    return ZonaReparto(**base)


def _tramo(id, desde, hasta, costo, tiempo=0, activo=True) -> CostoEnvioDinamico:
    return CostoEnvioDinamico(
        id=id,
        zona_reparto_id=1,
        distancia_desde_km=Decimal(str(desde)),
        distancia_hasta_km=Decimal(str(hasta)),
        costo_envio=Decimal(str(costo)),
        tiempo_adicional=tiempo,
        activo=activo,
    )


def _horario(dia, inicio=None, fin=None, dia_completo=False, activo=True) -> HorarioZona:
    return HorarioZona(
        id=1, zona_reparto_id=1, dia_semana=dia, hora_inicio=inicio, hora_fin=fin,
        dia_completo=dia_completo, activo=activo,
    )


def _excepcion(id, tipo, fecha=LUNES.date(), **kw) -> ExcepcionZona:
    base = dict(
        id=id, zona_reparto_id=1, fecha_excepcion=fecha, tipo=tipo, hora_inicio=None, hora_fin=None,
        costo_especial=None, tiempo_especial_min=None, tiempo_especial_max=None, motivo=None, activo=True,
    )
    base.update(kw)
    return ExcepcionZona(**base)


# --- Geometría ---


def test_haversine_lima_callao():
    # Plaza de Armas de Lima -> Plaza Grau del Callao ~ 11.5 km
    d = reglas.distancia_haversine_km(-12.0464, -77.0428, -12.0566, -77.1500)
    assert 11 < d < 12.5
    assert reglas.distancia_haversine_km(-12.0, -77.0, -12.0, -77.0) == pytest.approx(0.0)


@pytest.mark.parametrize(
    "texto, esperado",
    [
        ("-12.05,-77.04", (-12.05, -77.04)),
        (" -12.05 , -77.04 ", (-12.05, -77.04)),
        ("", None),
        (None, None),
        ("abc", None),
        ("-12.05", None),
        ("95,10", None),
        ("10,190", None),
    ],
)
def test_parsear_coordenadas(texto, esperado):
    assert reglas.parsear_coordenadas(texto) == esperado


def test_punto_en_poligono_acepta_dicts_y_listas():
    cuadrado = [
        {"lat": -12.0, "lng": -77.1},
        {"lat": -12.0, "lng": -77.0},
        {"lat": -12.1, "lng": -77.0},
        {"lat": -12.1, "lng": -77.1},
    ]
    assert reglas.punto_en_poligono(-12.05, -77.05, cuadrado)
    assert not reglas.punto_en_poligono(-12.2, -77.05, cuadrado)
    como_listas = [[v["lat"], v["lng"]] for v in cuadrado]
    assert reglas.punto_en_poligono(-12.05, -77.05, como_listas)
    # Menos de 3 vértices no define área
    assert not reglas.punto_en_poligono(-12.05, -77.05, cuadrado[:2])


def test_cobertura_por_radio_y_sin_restriccion():
    z = _zona(coordenadas_centro="-12.1211,-77.0297", radio_cobertura_km=Decimal("3"))
    assert reglas.zona_cubre_punto(z, -12.1250, -77.0300)
    assert not reglas.zona_cubre_punto(z, -12.0464, -77.0428)
    # Sin coordenadas no se puede descartar
    assert reglas.zona_cubre_punto(z, None, None)
    assert reglas.zona_cubre_punto(_zona(), -12.0464, -77.0428)


def test_cobertura_radio_tiene_prioridad_sobre_poligono():
    z = _zona(
        coordenadas_centro="-12.1211,-77.0297",
        radio_cobertura_km=Decimal("5"),
        poligono_cobertura=[[-11.0, -76.1], [-11.0, -76.0], [-11.1, -76.0], [-11.1, -76.1]],
    )
    # Dentro del radio aunque fuera del polígono
    assert reglas.zona_cubre_punto(z, -12.1220, -77.0300)
    # Fuera del radio aunque dentro del polígono
    assert not reglas.zona_cubre_punto(z, -11.05, -76.05)

    solo_poligono = _zona(poligono_cobertura=[[-12.0, -77.1], [-12.0, -77.0], [-12.1, -77.0], [-12.1, -77.1]])
    assert reglas.zona_cubre_punto(solo_poligono, -12.05, -77.05)
    assert not reglas.zona_cubre_punto(solo_poligono, -12.2, -77.05)


# --- Tramos ---


def test_seleccionar_tramo_intervalo_semiabierto():
    tramos = [_tramo(1, 0, 3, 5), _tramo(2, 3, 6, 9), _tramo(3, 6, 10, 14, activo=False)]
    assert reglas.seleccionar_tramo(tramos, 0).id == 1
    assert reglas.seleccionar_tramo(tramos, 2.999).id == 1
    assert reglas.seleccionar_tramo(tramos, 3).id == 2
    assert reglas.seleccionar_tramo(tramos, 7) is None
    assert reglas.seleccionar_tramo(tramos, None) is None


def test_calcular_costo_envio_cae_al_costo_de_zona():
    z = _zona()
    tramos = [_tramo(1, 0, 3, 5)]
    assert reglas.calcular_costo_envio(z, tramos, 1.0) == Decimal("5.00")
    assert reglas.calcular_costo_envio(z, tramos, 4.0) == Decimal("8.00")


# --- Horarios ---


def test_horario_abierto_reglas_basicas():
    z = _zona()
    # Sin horarios activos: abierto
    assert reglas.horario_abierto(z, [], LUNES)
    h = [_horario("lunes", time(9), time(18))]
    assert reglas.horario_abierto(z, h, LUNES)
    assert not reglas.horario_abierto(z, h, LUNES.replace(hour=20))
    # Otro día de la semana sin horario -> cerrado
    assert not reglas.horario_abierto(z, h, datetime(2025, 10, 7, 12, 0))
    assert reglas.horario_abierto(_zona(disponible_24h=True), h, LUNES.replace(hour=23))


def test_horario_nocturno_cruza_medianoche():
    z = _zona()
    h = [_horario("lunes", time(20), time(2))]
    assert reglas.horario_abierto(z, h, LUNES.replace(hour=23))
    assert reglas.horario_abierto(z, h, LUNES.replace(hour=1))
    assert not reglas.horario_abierto(z, h, LUNES.replace(hour=12))


def test_horario_dia_completo():
    z = _zona()
    assert reglas.horario_abierto(z, [_horario("lunes", dia_completo=True)], LUNES.replace(hour=4))


# --- Resolución completa ---


def test_resolver_base_sin_reglas():
    res = reglas.resolver_envio(_zona(), LUNES)
    assert res.en_cobertura and res.disponible
    assert res.costo_envio == Decimal("8.00")
    assert res.fuente_costo == "zona"
    assert (res.tiempo_min, res.tiempo_max) == (30, 60)
    assert res.tiempo_entrega_texto == "30 - 60 minutos"
    assert res.es_entregable


def test_resolver_zona_inactiva():
    res = reglas.resolver_envio(_zona(activo=False), LUNES)
    assert not res.disponible
    assert res.motivo == reglas.MOTIVO_ZONA_INACTIVA


def test_resolver_tramo_y_distrito():
    z = _zona()
    tramos = [_tramo(7, 0, 5, 6, tiempo=10)]
    res = reglas.resolver_envio(z, LUNES, distancia_km=2.0, tramos=tramos)
    assert res.fuente_costo == "distancia"
    assert res.tramo_id == 7
    assert res.costo_envio == Decimal("6.00")
    assert (res.tiempo_min, res.tiempo_max) == (40, 70)

    asignacion = ZonaDistrito(id=3, zona_reparto_id=1, distrito_id=9, costo_envio_personalizado=Decimal("4.50"),
                              tiempo_adicional=5, activo=True, prioridad=1)
    res = reglas.resolver_envio(z, LUNES, distancia_km=2.0, tramos=tramos, asignacion=asignacion)
    assert res.fuente_costo == "distrito"
    assert res.costo_envio == Decimal("4.50")
    assert res.zona_distrito_id == 3
    assert (res.tiempo_min, res.tiempo_max) == (45, 75)


def test_resolver_asignacion_sin_costo_propio_conserva_costo():
    asignacion = ZonaDistrito(id=3, zona_reparto_id=1, distrito_id=9, costo_envio_personalizado=None,
                              tiempo_adicional=0, activo=True, prioridad=1)
    res = reglas.resolver_envio(_zona(), LUNES, asignacion=asignacion)
    assert res.fuente_costo == "zona"
    assert res.costo_envio == Decimal("8.00")


def test_resolver_excepcion_no_disponible():
    exc = _excepcion(11, "no_disponible", motivo="Feriado")
    res = reglas.resolver_envio(_zona(), LUNES, excepciones=[exc])
    assert not res.disponible
    assert res.motivo == "Feriado"
    assert res.excepcion_id == 11
    # Otro día no afecta
    res = reglas.resolver_envio(_zona(), datetime(2025, 10, 7, 12), excepciones=[exc])
    assert res.disponible


def test_resolver_horario_especial_reemplaza_semanal():
    # Semanal cerrado el lunes a las 12, pero el horario especial lo abre
    horarios = [_horario("lunes", time(18), time(22))]
    especial = _excepcion(12, "horario_especial", hora_inicio=time(10), hora_fin=time(14))
    res = reglas.resolver_envio(_zona(), LUNES, horarios=horarios, excepciones=[especial])
    assert res.disponible
    assert res.excepcion_id == 12
    # Fuera del horario especial aunque el semanal esté abierto
    res = reglas.resolver_envio(_zona(), LUNES.replace(hour=19), horarios=horarios, excepciones=[especial])
    assert not res.disponible
    assert res.motivo == reglas.MOTIVO_FUERA_HORARIO


def test_resolver_fuera_de_horario_semanal():
    horarios = [_horario("lunes", time(18), time(22))]
    res = reglas.resolver_envio(_zona(), LUNES, horarios=horarios)
    assert not res.disponible
    assert res.motivo == reglas.MOTIVO_FUERA_HORARIO


def test_resolver_costo_y_tiempo_especial():
    excepciones = [
        _excepcion(21, "costo_especial", costo_especial=Decimal("15")),
        _excepcion(22, "tiempo_especial", tiempo_especial_min=90, tiempo_especial_max=120),
    ]
    res = reglas.resolver_envio(_zona(), LUNES, excepciones=excepciones)
    assert res.fuente_costo == "excepcion"
    assert res.costo_envio == Decimal("15.00")
    assert (res.tiempo_min, res.tiempo_max) == (90, 120)


def test_resolver_pedido_minimo_agrega_recargo():
    z = _zona(pedido_minimo=Decimal("50"), costo_envio_adicional=Decimal("3"))
    res = reglas.resolver_envio(z, LUNES, monto_pedido=30)
    assert not res.cumple_pedido_minimo
    assert res.recargo_pedido_minimo == Decimal("3.00")
    assert res.costo_envio == Decimal("11.00")
    res = reglas.resolver_envio(z, LUNES, monto_pedido=60)
    assert res.cumple_pedido_minimo
    assert res.costo_envio == Decimal("8.00")


def test_resolver_envio_gratis_zona_y_global():
    z = _zona(envio_gratis_desde=Decimal("100"))
    res = reglas.resolver_envio(z, LUNES, monto_pedido=120, umbral_envio_gratis=500)
    assert res.envio_gratis
    assert res.costo_envio == Decimal("0")
    assert res.fuente_costo == "gratis"
    # Sin umbral de zona se usa el global
    res = reglas.resolver_envio(_zona(), LUNES, monto_pedido=120, umbral_envio_gratis=150)
    assert not res.envio_gratis
    res = reglas.resolver_envio(_zona(), LUNES, monto_pedido=150, umbral_envio_gratis=150)
    assert res.envio_gratis


def test_envio_gratis_requiere_pedido_minimo():
    z = _zona(pedido_minimo=Decimal("200"), envio_gratis_desde=Decimal("100"), costo_envio_adicional=Decimal("2"))
    res = reglas.resolver_envio(z, LUNES, monto_pedido=150)
    assert not res.envio_gratis
    assert res.costo_envio == Decimal("10.00")


def test_as_dict_serializa_montos():
    res = reglas.resolver_envio(_zona(), LUNES, distancia_km=1.23456)
    data = res.as_dict()
    assert data["costo_envio"] == 8.0
    assert data["distancia_km"] == 1.23
    assert data["tiempo_entrega_texto"] == "30 - 60 minutos"
    assert data["pedido_minimo"] is None


def test_texto_tiempo_entrega():
    assert reglas.texto_tiempo_entrega(None, 10) == "No especificado"
    assert reglas.texto_tiempo_entrega(45, 45) == "45 minutos"
    assert reglas.texto_tiempo_entrega(30, 45) == "30 - 45 minutos"


def test_esta_disponible_en_fecha():
    exc = _excepcion(1, "no_disponible", fecha=date(2025, 12, 25))
    navidad = datetime(2025, 12, 25, 10)
    assert not reglas.esta_disponible_en_fecha(_zona(), [exc], navidad)
    assert reglas.esta_disponible_en_fecha(_zona(), [exc], LUNES)
    assert not reglas.esta_disponible_en_fecha(_zona(activo=False), [], LUNES)
