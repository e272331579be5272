#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_envio.py
# NG-HEADER: Ubicación: tests/test_envio.py
# NG-HEADER: Descripción: Pruebas de cotización de envío (zonas propias y opciones de courier)
# NG-HEADER: Lineamientos: Ver AGENTS.md
from decimal import Decimal

from conftest import ADMIN
from services import envio

LUNES_MEDIODIA = "2030-01-07T12:00:00"


# --- Courier ---


def test_opciones_lima_metropolitana():
    opciones = {o.id: o for o in envio.calcular_opciones("Lima", "Lima", "Miraflores", 2, 50)}
    assert set(opciones) == {"estandar", "express", "premium"}
    assert opciones["estandar"].precio == Decimal("10")
    assert opciones["express"].precio == Decimal("25")
    assert opciones["express"].disponible
    assert opciones["premium"].precio == Decimal("50")
    assert opciones["estandar"].falta_para_gratis == Decimal("100.00")


def test_opciones_provincia_y_peso():
    opciones = {o.id: o for o in envio.calcular_opciones("Cusco", "Cusco", "", 7, 50)}
    assert set(opciones) == {"estandar", "rapido_nacional", "premium"}
    assert opciones["estandar"].precio == Decimal("30")
    assert opciones["rapido_nacional"].precio == Decimal("50")
    assert opciones["premium"].precio == Decimal("80")


def test_express_no_disponible_con_mucho_peso():
    express = next(o for o in envio.calcular_opciones("lima", "lima", "", 9, 10) if o.id == "express")
    assert express.precio == Decimal("35")
    assert not express.disponible


def test_envio_gratis_por_valor():
    opciones = {o.id: o for o in envio.calcular_opciones("Lima", "Lima", "", 1, 320)}
    assert opciones["estandar"].es_gratis and opciones["estandar"].precio == 0
    assert opciones["express"].es_gratis
    assert not opciones["premium"].es_gratis
    assert opciones["premium"].falta_para_gratis == Decimal("180.00")
    assert envio.obtener_costo_envio("express", "Lima", "Lima", "", 1, 320) == 0
    assert envio.obtener_costo_envio("rapido_nacional", "Lima", "Lima", "", 1, 320) is None


def test_destinos_bloqueados():
    d = envio.validar_disponibilidad("Loreto", "Requena")
    assert d["disponible"] is False
    assert d["requiere_coordinacion"] is True
    assert envio.validar_disponibilidad("Loreto", "Maynas")["disponible"] is True


def test_textos_de_tiempo():
    assert envio.calcular_tiempo_entrega("express", "Lima") == "Hoy mismo (4-8 horas)"
    assert envio.calcular_tiempo_entrega("express", "Piura") == "No disponible"
    assert envio.calcular_tiempo_entrega("estandar", "Lima") == "1-2 días hábiles"
    assert envio.calcular_tiempo_entrega("desconocida", "Lima") == "3-5 días hábiles"


def test_api_opciones(client):
    r = client.post(
        "/envio/opciones",
        json={"departamento": "Lima", "provincia": "Lima", "distrito": "Surco", "peso_total": 1.5, "valor_total": 80},
    )
    assert r.status_code == 200, r.text
    data = r.json()
    ids = [o["id"] for o in data["opciones"]]
    assert ids == ["estandar", "express", "premium"]
    express = data["opciones"][1]
    assert express["tiempo_entrega_texto"] == "Hoy mismo (4-8 horas)"
    assert express["transportista"] == "Express Lima"
    assert data["restricciones"]["peso_maximo_normal"] == 10.0

    r = client.post(
        "/envio/opciones",
        json={"departamento": "Madre de Dios", "provincia": "Tahuamanu", "peso_total": 1, "valor_total": 80},
    )
    assert r.json()["opciones"] == []
    assert r.json()["disponibilidad"]["disponible"] is False


# --- Zonas propias ---


def test_cotizar_por_distrito_asignado(client, semillas):
    d = semillas.distrito()
    z = semillas.zona(costo_envio=9)
    semillas.asignar(z["id"], d["id"], costo_envio_personalizado=6.5, tiempo_adicional=10)
    r = client.post("/envio/cotizar", json={"distrito_id": d["id"], "fecha_hora": LUNES_MEDIODIA, "monto_pedido": 40})
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["zona_id"] == z["id"]
    assert data["fuente_costo"] == "distrito"
    assert data["costo_envio"] == 6.5
    assert data["tiempo_min"] == 40 and data["tiempo_max"] == 70


def test_cotizar_prioridad_de_asignacion(client, semillas):
    d = semillas.distrito()
    baja = semillas.zona(costo_envio=20)
    alta = semillas.zona(costo_envio=7)
    semillas.asignar(baja["id"], d["id"], prioridad=3)
    semillas.asignar(alta["id"], d["id"], prioridad=1)
    data = client.post("/envio/cotizar", json={"distrito_id": d["id"], "fecha_hora": LUNES_MEDIODIA}).json()
    assert data["zona_id"] == alta["id"]
    assert data["costo_envio"] == 7.0


def test_cotizar_por_coordenadas_sin_asignacion(client, semillas):
    d = semillas.distrito()
    z = semillas.zona(coordenadas_centro="-12.1211,-77.0297", radio_cobertura_km=3)
    r = client.post(
        "/envio/cotizar",
        json={"distrito_id": d["id"], "latitud": -12.1220, "longitud": -77.0300, "fecha_hora": LUNES_MEDIODIA},
    )
    data = r.json()
    assert data["en_cobertura"] is True
    assert data["zona_id"] == z["id"]

    r = client.post("/envio/cotizar", json={"latitud": -11.5, "longitud": -77.0})
    data = r.json()
    assert data["en_cobertura"] is False
    assert data["disponible"] is False
    assert data["motivo"] == "Dirección fuera de zona de cobertura"


def test_cotizar_validaciones(client):
    assert client.post("/envio/cotizar", json={"distrito_id": 999}).status_code == 404
    assert client.post("/envio/cotizar", json={"latitud": -12.1}).status_code == 422
    assert client.post("/envio/cotizar", json={}).status_code == 422


def test_cotizar_distrito_sin_zonas_ni_coordenadas(client, semillas):
    d = semillas.distrito()
    data = client.post("/envio/cotizar", json={"distrito_id": d["id"]}).json()
    assert data["en_cobertura"] is False


def test_cotizar_zona_desactivada_no_cubre(client, semillas):
    d = semillas.distrito()
    z = semillas.zona()
    semillas.asignar(z["id"], d["id"])
    client.post(f"/admin/zonas/{z['id']}/toggle", headers=ADMIN)
    data = client.post("/envio/cotizar", json={"distrito_id": d["id"]}).json()
    assert data["en_cobertura"] is False


def test_cotizar_asignacion_lejana_cae_a_coordenadas(client, semillas):
    d = semillas.distrito()
    lejana = semillas.zona(coordenadas_centro="-11.0,-77.0", radio_cobertura_km=1)
    semillas.asignar(lejana["id"], d["id"])
    cercana = semillas.zona(coordenadas_centro="-12.1211,-77.0297", radio_cobertura_km=3, costo_envio=9)
    r = client.post(
        "/envio/cotizar",
        json={"distrito_id": d["id"], "latitud": -12.1220, "longitud": -77.0300, "fecha_hora": LUNES_MEDIODIA},
    )
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["en_cobertura"] is True
    assert data["zona_id"] == cercana["id"]
    assert data["costo_envio"] == 9.0
