#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_cuotas_api.py
# NG-HEADER: Ubicación: tests/test_cuotas_api.py
# NG-HEADER: Descripción: Pruebas de compras al crédito: cuotas, pagos, moras, condonación y cancelación
# NG-HEADER: Lineamientos: Ver AGENTS.md
import pytest

from conftest import ADMIN


@pytest.fixture()
def credito(semillas):
    usuario = semillas.usuario(limite_credito=500)
    producto = semillas.producto(precio=50, stock=20)
    return usuario, producto


def _pedido_credito(client, usuario, producto, cantidad=2, cuotas=3):
    return client.post(
        "/pedidos",
        json={
            "items": [{"producto_id": producto["id"], "cantidad": cantidad}],
            "user_id": usuario["id"],
            "tipo_pago": "credito",
            "tipo_entrega": "recojo_tienda",
            "cuotas": cuotas,
        },
    )


def _credito_usado(client, user_id) -> float:
    return client.get(f"/usuarios/{user_id}").json()["credito_usado"]


def test_pedido_al_credito_genera_cuotas(client, credito):
    usuario, producto = credito
    r = _pedido_credito(client, usuario, producto)
    assert r.status_code == 201, r.text
    p = r.json()
    assert p["es_credito"] is True
    assert p["total"] == 118.0
    assert p["cuotas"] == 3
    assert p["monto_cuota"] == 39.33
    assert p["pagos"] == []
    assert [c["monto_cuota"] for c in p["cuotas_credito"]] == [39.33, 39.33, 39.34]
    assert [c["numero_cuota"] for c in p["cuotas_credito"]] == [1, 2, 3]
    assert all(c["estado"] == "pendiente" for c in p["cuotas_credito"])
    assert _credito_usado(client, usuario["id"]) == 118.0

    r = client.get(f"/usuarios/{usuario['id']}/cuotas")
    data = r.json()
    assert data["credito"] == {"limite_credito": 500.0, "credito_usado": 118.0, "credito_disponible": 382.0}
    assert data["resumen"]["monto_pendiente"] == 118.0


def test_credito_insuficiente_y_validaciones(client, credito, semillas):
    usuario, producto = credito
    r = _pedido_credito(client, usuario, producto, cantidad=9)
    assert r.status_code == 422
    assert r.json()["code"] == "credito_insuficiente"
    assert _credito_usado(client, usuario["id"]) == 0.0

    sin_linea = semillas.usuario()
    r = _pedido_credito(client, sin_linea, producto, cantidad=1)
    assert r.json()["code"] == "credito_insuficiente"

    r = client.post(
        "/pedidos",
        json={"items": [{"producto_id": producto["id"], "cantidad": 1}], "tipo_pago": "credito", "tipo_entrega": "recojo_tienda"},
    )
    assert r.status_code == 422
    assert _pedido_credito(client, usuario, producto, cuotas=25).status_code == 422

    r = client.put(f"/admin/usuarios/{usuario['id']}/credito", json={"limite_credito": 100}, headers=ADMIN)
    assert r.status_code == 200
    _pedido_credito(client, usuario, producto, cantidad=1, cuotas=1)
    r = client.put(f"/admin/usuarios/{usuario['id']}/credito", json={"limite_credito": 10}, headers=ADMIN)
    assert r.status_code == 422


def test_pagar_cuotas_libera_credito_y_confirma(client, credito):
    usuario, producto = credito
    p = _pedido_credito(client, usuario, producto).json()
    cuotas = p["cuotas_credito"]

    r = client.post(f"/cuotas/{cuotas[0]['id']}/pagar", json={"referencia": "OP-1"})
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["cuota"]["estado"] == "pagado"
    assert data["pago"]["monto"] == 39.33
    assert data["pago"]["metodo"] == "credito"
    assert data["pago"]["numero_cuota"] == 1
    assert _credito_usado(client, usuario["id"]) == 78.67

    r = client.post(f"/cuotas/{cuotas[0]['id']}/pagar", json={})
    assert r.status_code == 422

    resumen = client.get(f"/pedidos/{p['id']}/cuotas").json()["resumen"]
    assert (resumen["total_cuotas"], resumen["pendientes"], resumen["pagadas"]) == (3, 2, 1)
    assert resumen["monto_pendiente"] == 78.67

    for c in cuotas[1:]:
        assert client.post(f"/cuotas/{c['id']}/pagar", json={}).status_code == 200
    pedido = client.get(f"/pedidos/{p['id']}").json()
    assert pedido["estado"] == "confirmado"
    assert _credito_usado(client, usuario["id"]) == 0.0
    assert len(client.get(f"/pedidos/{p['id']}/pagos").json()) == 3


def test_pagar_cuota_con_metodo_aplica_comision(client, credito, semillas):
    usuario, producto = credito
    metodo = semillas.metodo_pago(comision_porcentaje=5, comision_fija=0.5)
    p = _pedido_credito(client, usuario, producto).json()
    r = client.post(f"/cuotas/{p['cuotas_credito'][0]['id']}/pagar", json={"metodo_pago_id": metodo["id"]})
    assert r.status_code == 200, r.text
    pago = r.json()["pago"]
    assert pago["comision"] == 2.47
    assert pago["monto_con_comision"] == 41.8
    assert pago["metodo_pago_id"] == metodo["id"]


def test_moras_y_condonacion(client, credito):
    usuario, producto = credito
    p = _pedido_credito(client, usuario, producto).json()
    cuotas = p["cuotas_credito"]

    assert client.post("/admin/cuotas/actualizar-moras", json={}).status_code == 401
    r = client.post("/admin/cuotas/actualizar-moras", json={"fecha": "2099-01-01"}, headers=ADMIN)
    assert r.status_code == 200, r.text
    assert r.json() == {"procesadas": 3, "nuevas_atrasadas": 3, "fecha": "2099-01-01"}
    r = client.post("/admin/cuotas/actualizar-moras", json={"fecha": "2099-01-01"}, headers=ADMIN)
    assert r.json()["nuevas_atrasadas"] == 0

    detalle = client.get(f"/pedidos/{p['id']}/cuotas").json()["cuotas"]
    assert detalle[0]["estado"] == "atrasado"
    assert detalle[0]["mora"] == 3.93
    assert detalle[0]["monto_total"] == 43.26

    r = client.post(f"/admin/cuotas/{cuotas[0]['id']}/condonar", headers=ADMIN)
    assert r.status_code == 200, r.text
    assert r.json()["estado"] == "condonado"
    assert r.json()["mora"] == 0.0
    assert _credito_usado(client, usuario["id"]) == 78.67
    assert client.post(f"/admin/cuotas/{cuotas[0]['id']}/condonar", headers=ADMIN).status_code == 422

    # Una cuota atrasada se paga con su mora
    r = client.post(f"/cuotas/{cuotas[1]['id']}/pagar", json={})
    assert r.json()["pago"]["monto"] == 43.26


def test_cancelar_pedido_al_credito(client, credito):
    usuario, producto = credito
    p = _pedido_credito(client, usuario, producto).json()
    client.post(f"/cuotas/{p['cuotas_credito'][0]['id']}/pagar", json={})

    r = client.post(f"/pedidos/{p['id']}/cancelar", json={"motivo": "Sin stock en tienda"})
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["estado"] == "cancelado"
    assert [c["estado"] for c in data["cuotas_credito"]] == ["pagado", "condonado", "condonado"]
    assert _credito_usado(client, usuario["id"]) == 0.0
    assert client.get(f"/productos/{producto['id']}").json()["stock"] == 20

    pendientes = client.get(f"/usuarios/{usuario['id']}/cuotas", params={"pendientes": True}).json()
    assert pendientes["cuotas"] == []
