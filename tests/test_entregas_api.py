#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_entregas_api.py
# NG-HEADER: Ubicación: tests/test_entregas_api.py
# NG-HEADER: Descripción: Pruebas de programación de entregas, ruta del repartidor y estados del reparto
# NG-HEADER: Lineamientos: Ver AGENTS.md
from datetime import date, datetime, time, timedelta

import pytest

from conftest import ADMIN
from db.models import ProgramacionEntrega

MANANA = (date.today() + timedelta(days=1)).isoformat()


class Reparto:
    def __init__(self, client, semillas):
        self.client = client
        distrito = semillas.distrito()
        zona = semillas.zona(coordenadas_centro="-12.1211,-77.0297", radio_cobertura_km=5)
        semillas.asignar(zona["id"], distrito["id"])
        self.usuario = semillas.usuario()
        self.direccion = semillas.direccion(self.usuario["id"], distrito["id"])
        self.producto = semillas.producto(precio=30, stock=20)
        self.metodo = semillas.metodo_pago()
        rep = semillas.usuario()
        r = client.patch(f"/admin/usuarios/{rep['id']}", json={"rol": "repartidor"}, headers=ADMIN)
        assert r.status_code == 200, r.text
        self.repartidor = r.json()

    def pedido(self, **extra) -> dict:
        payload = {
            "items": [{"producto_id": self.producto["id"], "cantidad": 1}],
            "user_id": self.usuario["id"],
            "metodo_pago_id": self.metodo["id"],
            "direccion_id": self.direccion["id"],
        }
        payload.update(extra)
        r = self.client.post("/pedidos", json=payload)
        assert r.status_code == 201, r.text
        return r.json()

    def programar(self, pedido_id: int, **extra):
        payload = {
            "pedido_id": pedido_id,
            "repartidor_id": self.repartidor["id"],
            "fecha_programada": MANANA,
            "hora_inicio_ventana": "09:00",
            "hora_fin_ventana": "11:00",
        }
        payload.update(extra)
        return self.client.post("/admin/entregas", json=payload, headers=ADMIN)


@pytest.fixture()
def rep(client, semillas):
    return Reparto(client, semillas)


def _estado(client, entrega_id, estado, **extra):
    return client.post(f"/admin/entregas/{entrega_id}/estado", json={"estado": estado, **extra}, headers=ADMIN)


def test_programar_asigna_repartidor_y_orden_de_ruta(client, semillas, rep):
    p1 = rep.pedido()
    r = rep.programar(p1["id"])
    assert r.status_code == 201, r.text
    e1 = r.json()
    assert (e1["estado"], e1["estado_texto"], e1["orden_ruta"]) == ("programado", "Programado", 1)
    assert (e1["hora_inicio_ventana"], e1["hora_fin_ventana"]) == ("09:00", "11:00")
    assert client.get(f"/pedidos/{p1['id']}").json()["repartidor_id"] == rep.repartidor["id"]

    r = rep.programar(p1["id"])
    assert r.status_code == 422
    assert r.json()["code"] == "programacion_activa"

    p2 = rep.pedido()
    cliente = semillas.usuario()
    r = rep.programar(p2["id"], repartidor_id=cliente["id"])
    assert r.status_code == 422
    assert r.json()["code"] == "repartidor_invalido"
    assert rep.programar(p2["id"], repartidor_id=9999).status_code == 404

    r = rep.programar(p2["id"], hora_inicio_ventana="11:00", hora_fin_ventana="11:00")
    assert r.status_code == 422
    assert r.json()["field"] == "hora_fin_ventana"

    ayer = (date.today() - timedelta(days=1)).isoformat()
    r = rep.programar(p2["id"], fecha_programada=ayer)
    assert r.status_code == 422
    assert r.json()["field"] == "fecha_programada"

    e2 = rep.programar(p2["id"], hora_inicio_ventana="11:00", hora_fin_ventana="13:00").json()
    assert e2["orden_ruta"] == 2

    r = client.get("/admin/entregas/ruta", params={"repartidor_id": rep.repartidor["id"], "fecha": MANANA}, headers=ADMIN)
    assert r.status_code == 200, r.text
    data = r.json()
    assert [x["id"] for x in data["ruta"]] == [e1["id"], e2["id"]]
    assert data["resumen"]["total_entregas"] == 2
    assert data["resumen"]["entregas_pendientes"] == 2
    assert data["resumen"]["entregas_completadas"] == 0

    listado = client.get("/admin/entregas", params={"pedido_id": p2["id"]}, headers=ADMIN).json()
    assert [x["id"] for x in listado["items"]] == [e2["id"]]
    assert client.get("/admin/entregas").status_code == 401


def test_pedido_recojo_no_se_programa(rep):
    p = rep.pedido(tipo_entrega="recojo_tienda", direccion_id=None)
    r = rep.programar(p["id"])
    assert r.status_code == 422
    assert r.json()["code"] == "pedido_no_programable"


def test_salida_y_llegada_avanzan_el_pedido(client, rep):
    p = rep.pedido()
    e = rep.programar(p["id"]).json()

    r = _estado(client, e["id"], "entregado")
    assert r.status_code == 422
    assert r.json()["code"] == "transicion_invalida"
    r = _estado(client, e["id"], "fallido")
    assert r.status_code == 422
    assert r.json()["field"] == "motivo_fallo"

    client.post(f"/admin/pagos/{p['pagos'][0]['id']}/confirmar", json={"codigo_autorizacion": "AUT-1"}, headers=ADMIN)
    for estado in ("preparando", "listo"):
        assert client.put(f"/admin/pedidos/{p['id']}/estado", json={"estado": estado}, headers=ADMIN).status_code == 200

    r = _estado(client, e["id"], "en_ruta")
    assert r.status_code == 200, r.text
    assert r.json()["hora_salida"] is not None
    assert client.get(f"/pedidos/{p['id']}").json()["estado"] == "enviado"

    r = client.delete(f"/admin/entregas/{e['id']}", headers=ADMIN)
    assert r.status_code == 422
    assert r.json()["code"] == "programacion_en_curso"

    r = _estado(client, e["id"], "entregado", notas_repartidor="Recibió el portero")
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["hora_llegada"] is not None
    assert data["tiempo_entrega_minutos"] >= 0
    assert data["notas_repartidor"] == "Recibió el portero"
    pedido = client.get(f"/pedidos/{p['id']}").json()
    assert pedido["estado"] == "entregado"
    assert [s["estado_actual"] for s in pedido["seguimiento"]][-2:] == ["enviado", "entregado"]

    r = client.put(f"/admin/entregas/{e['id']}", json={"orden_ruta": 5}, headers=ADMIN)
    assert r.json()["code"] == "programacion_finalizada"
    body = {"fecha_programada": MANANA, "hora_inicio_ventana": "14:00", "hora_fin_ventana": "16:00", "motivo": "x"}
    assert client.post(f"/admin/entregas/{e['id']}/reprogramar", json=body, headers=ADMIN).status_code == 422


def test_entrega_fallida_se_reprograma_y_elimina(client, rep):
    p = rep.pedido()
    e = rep.programar(p["id"]).json()

    r = _estado(client, e["id"], "fallido", motivo_fallo="Cliente ausente")
    assert r.status_code == 200, r.text
    assert r.json()["motivo_fallo"] == "Cliente ausente"
    r = client.put(f"/admin/entregas/{e['id']}", json={"orden_ruta": 3}, headers=ADMIN)
    assert r.status_code == 422

    pasado_manana = (date.today() + timedelta(days=2)).isoformat()
    body = {"fecha_programada": pasado_manana, "hora_inicio_ventana": "14:00", "hora_fin_ventana": "16:00", "motivo": "Cliente pidió la tarde"}
    r = client.post(f"/admin/entregas/{e['id']}/reprogramar", json=body, headers=ADMIN)
    assert r.status_code == 200, r.text
    data = r.json()
    assert (data["estado"], data["fecha_programada"], data["hora_inicio_ventana"]) == ("reprogramado", pasado_manana, "14:00")
    assert data["motivo_fallo"] == "Cliente pidió la tarde"
    assert data["hora_salida"] is None

    # Una programación reprogramada sigue activa
    assert rep.programar(p["id"]).json()["code"] == "programacion_activa"

    assert _estado(client, e["id"], "programado").status_code == 200
    r = client.put(f"/admin/entregas/{e['id']}", json={"hora_fin_ventana": "13:00"}, headers=ADMIN)
    assert r.status_code == 422
    assert r.json()["field"] == "hora_fin_ventana"

    r = client.delete(f"/admin/entregas/{e['id']}", headers=ADMIN)
    assert r.status_code == 200, r.text
    assert client.get(f"/admin/entregas/{e['id']}", headers=ADMIN).status_code == 404
    assert client.get(f"/pedidos/{p['id']}").json()["repartidor_id"] is None


def test_esta_en_ventana():
    e = ProgramacionEntrega(
        fecha_programada=date(2026, 10, 20),
        hora_inicio_ventana=time(9, 0),
        hora_fin_ventana=time(11, 0),
        hora_salida=datetime(2026, 10, 20, 9, 10),
        hora_llegada=datetime(2026, 10, 20, 9, 55),
    )
    assert e.esta_en_ventana(datetime(2026, 10, 20, 10, 30))
    assert e.esta_en_ventana(datetime(2026, 10, 20, 11, 0))
    assert not e.esta_en_ventana(datetime(2026, 10, 20, 11, 1))
    assert not e.esta_en_ventana(datetime(2026, 10, 21, 10, 0))
    assert e.tiempo_entrega_minutos() == 45
