#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_direcciones_api.py
# NG-HEADER: Ubicación: tests/test_direcciones_api.py
# NG-HEADER: Descripción: Pruebas de direcciones de entrega y su validación contra zonas de reparto
# NG-HEADER: Lineamientos: Ver AGENTS.md
from conftest import ADMIN
from services import direcciones
from services.zonas.reglas import ResolucionEnvio

LUNES_MEDIODIA = "2030-01-07T12:00:00"


def test_crear_direccion_y_predeterminada(client, semillas):
    u = semillas.usuario()
    d = semillas.distrito(nombre="Miraflores")
    a = semillas.direccion(u["id"], d["id"])
    assert a["predeterminada"] is True  # primera dirección del usuario
    assert a["validada"] is False
    assert a["direccion_completa"] == "Av. Larco 123, Miraflores, Lima, Lima"
    assert "validacion" not in a

    b = semillas.direccion(u["id"], d["id"])
    assert b["predeterminada"] is False

    r = client.post(f"/direcciones/{b['id']}/predeterminada")
    assert r.status_code == 200, r.text
    assert r.json()["predeterminada"] is True

    listado = client.get("/direcciones", params={"user_id": u["id"]}).json()
    assert [x["id"] for x in listado] == [b["id"], a["id"]]
    assert [x["predeterminada"] for x in listado] == [True, False]


def test_crear_direccion_errores(client, semillas):
    u = semillas.usuario()
    d = semillas.distrito()
    r = client.post("/direcciones", json={"user_id": 999, "distrito_id": d["id"], "direccion": "Jr. Uno"})
    assert r.status_code == 404
    assert r.json()["detail"] == "Usuario no encontrado"
    r = client.post("/direcciones", json={"user_id": u["id"], "distrito_id": 999, "direccion": "Jr. Uno"})
    assert r.status_code == 422
    assert r.json()["field"] == "distrito_id"


def test_eliminar_predeterminada_reasigna(client, semillas):
    u = semillas.usuario()
    d = semillas.distrito()
    a = semillas.direccion(u["id"], d["id"])
    b = semillas.direccion(u["id"], d["id"])
    r = client.delete(f"/direcciones/{a['id']}")
    assert r.status_code == 200
    assert client.get(f"/direcciones/{b['id']}").json()["predeterminada"] is True
    assert client.get(f"/direcciones/{a['id']}").status_code == 404


def test_validar_direccion_en_cobertura(client, semillas):
    u = semillas.usuario()
    d = semillas.distrito()
    z = semillas.zona(coordenadas_centro="-12.1211,-77.0297", radio_cobertura_km=5)
    semillas.asignar(z["id"], d["id"])
    a = semillas.direccion(u["id"], d["id"], latitud=-12.1411, longitud=-77.0297)

    r = client.post(f"/direcciones/{a['id']}/validar", json={"fecha_hora": LUNES_MEDIODIA})
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["valida_para_entrega"] is True
    assert data["direccion"]["validada"] is True
    v = data["validacion"]
    assert v["en_zona_cobertura"] is True
    assert v["zona_reparto_id"] == z["id"]
    assert v["costo_envio_calculado"] == 8.0
    assert 2 < v["distancia_tienda_km"] < 2.5
    assert 30 < v["tiempo_entrega_estimado"] <= 60

    # La validación queda asociada a la dirección
    assert client.get(f"/direcciones/{a['id']}").json()["validacion"]["id"] == v["id"]

    # Revalidar hace upsert: mismo registro
    r = client.post(f"/direcciones/{a['id']}/validar", json={"fecha_hora": LUNES_MEDIODIA})
    assert r.json()["validacion"]["id"] == v["id"]


def test_validar_direccion_fuera_de_cobertura(client, semillas):
    u = semillas.usuario()
    d = semillas.distrito()
    semillas.zona(coordenadas_centro="-12.1211,-77.0297", radio_cobertura_km=1)
    a = semillas.direccion(u["id"], d["id"], latitud=-12.0464, longitud=-77.0428)
    data = client.post(f"/direcciones/{a['id']}/validar", json={}).json()
    assert data["valida_para_entrega"] is False
    assert data["validacion"]["en_zona_cobertura"] is False
    assert data["validacion"]["costo_envio_calculado"] is None
    assert data["validacion"]["observaciones_validacion"] == "Dirección fuera de zona de cobertura"


def test_validar_sin_coordenadas(client, semillas):
    u = semillas.usuario()
    d = semillas.distrito()
    r = client.post("/direcciones", json={"user_id": u["id"], "distrito_id": d["id"], "direccion": "Jr. Sin GPS 1"})
    assert r.status_code == 201, r.text
    r = client.post(f"/direcciones/{r.json()['id']}/validar", json={})
    assert r.status_code == 422
    assert r.json()["field"] == "latitud"

    r = client.post(f"/direcciones/{999}/validar", json={"latitud": -12.1, "longitud": -77.0})
    assert r.status_code == 404


def test_validar_con_coordenadas_explicitas_las_guarda(client, semillas):
    u = semillas.usuario()
    d = semillas.distrito()
    semillas.zona()
    r = client.post("/direcciones", json={"user_id": u["id"], "distrito_id": d["id"], "direccion": "Jr. Sin GPS 2"})
    did = r.json()["id"]
    r = client.post(f"/direcciones/{did}/validar", json={"latitud": -12.1, "longitud": -77.0})
    assert r.status_code == 200, r.text
    assert r.json()["direccion"]["latitud"] == -12.1


def test_cambio_de_ubicacion_invalida(client, semillas):
    u = semillas.usuario()
    d = semillas.distrito()
    semillas.zona()
    a = semillas.direccion(u["id"], d["id"])
    client.post(f"/direcciones/{a['id']}/validar", json={})
    assert client.get(f"/direcciones/{a['id']}").json()["validada"] is True
    r = client.put(f"/direcciones/{a['id']}", json={"latitud": -12.2, "longitud": -77.1})
    assert r.status_code == 200, r.text
    assert r.json()["validada"] is False
    r = client.put(f"/direcciones/{a['id']}", json={"referencia": "Puerta verde"})
    assert r.json()["referencia"] == "Puerta verde"


def test_revalidar_y_estadisticas(client, semillas):
    u = semillas.usuario()
    d = semillas.distrito()
    semillas.zona(coordenadas_centro="-12.1211,-77.0297", radio_cobertura_km=5)
    dentro = semillas.direccion(u["id"], d["id"], latitud=-12.1250, longitud=-77.0300)
    semillas.direccion(u["id"], d["id"], latitud=-11.0, longitud=-77.0)
    client.post("/direcciones", json={"user_id": u["id"], "distrito_id": d["id"], "direccion": "Sin GPS"})

    r = client.post("/admin/direcciones/revalidar", json={}, headers=ADMIN)
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["total_procesadas"] == 3
    assert data["exitosas"] == 2
    assert len(data["errores"]) == 1

    r = client.get("/admin/direcciones/estadisticas", headers=ADMIN)
    assert r.status_code == 200, r.text
    stats = r.json()
    assert stats["total_validaciones"] == 2
    assert stats["en_cobertura"] == 1
    assert stats["porcentaje_cobertura"] == 50.0
    assert stats["por_zona"][0]["total"] == 1

    r = client.post("/admin/direcciones/revalidar", json={"direccion_ids": [dentro["id"]]}, headers=ADMIN)
    assert r.json()["total_procesadas"] == 1
    assert client.get("/admin/direcciones/estadisticas").status_code == 401


def test_estimar_minutos():
    res = ResolucionEnvio(tiempo_min=30, tiempo_max=60, distancia_km=3.0)
    assert direcciones.estimar_minutos(res) == 40
    res = ResolucionEnvio(tiempo_min=30, tiempo_max=60, distancia_km=20.0)
    assert direcciones.estimar_minutos(res) == 60
    res = ResolucionEnvio(tiempo_min=30, tiempo_max=60, distancia_km=None)
    assert direcciones.estimar_minutos(res) == 30
    assert direcciones.estimar_minutos(ResolucionEnvio()) is None
