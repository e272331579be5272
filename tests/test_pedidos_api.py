#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_pedidos_api.py
# NG-HEADER: Ubicación: tests/test_pedidos_api.py
# NG-HEADER: Descripción: Pruebas de checkout, ciclo de estados, cancelación y rastreo de pedidos
# NG-HEADER: Lineamientos: Ver AGENTS.md
from datetime import date, datetime, timedelta

import pytest

from conftest import ADMIN
from services import pedidos


class Escenario:
    def __init__(self, semillas, precio=50.0, stock=5):
        self.distrito = semillas.distrito()
        self.zona = semillas.zona(coordenadas_centro="-12.1211,-77.0297", radio_cobertura_km=5)
        semillas.asignar(self.zona["id"], self.distrito["id"])
        self.usuario = semillas.usuario()
        self.direccion = semillas.direccion(self.usuario["id"], self.distrito["id"])
        self.producto = semillas.producto(precio=precio, stock=stock)
        self.metodo = semillas.metodo_pago()

    def pedido(self, cantidad=2, **extra):
        payload = {
            "items": [{"producto_id": self.producto["id"], "cantidad": cantidad}],
            "user_id": self.usuario["id"],
            "metodo_pago_id": self.metodo["id"],
            "direccion_id": self.direccion["id"],
        }
        payload.update(extra)
        return payload


@pytest.fixture()
def esc(semillas):
    return Escenario(semillas)


def test_calcular_totales():
    t = pedidos.calcular_totales(200, 20, 0)
    assert [float(t[k]) for k in ("subtotal", "descuento", "igv", "costo_envio", "total")] == [200, 20, 32.4, 0, 212.4]


def test_pedido_delivery_al_contado(client, esc):
    r = client.post("/pedidos", json=esc.pedido())
    assert r.status_code == 201, r.text
    p = r.json()
    assert p["estado"] == "pendiente"
    assert (p["subtotal"], p["descuento"], p["igv"], p["costo_envio"], p["total"]) == (100.0, 0.0, 18.0, 8.0, 126.0)
    assert p["numero_pedido"] == f"PED-{date.today():%Y%m%d}-0001"
    assert p["codigo_rastreo"] == f"PED-{p['id']:06d}-{datetime.now().year}"
    assert p["zona_reparto_id"] == esc.zona["id"]
    assert p["direccion_entrega"] == "Av. Larco 123, Miraflores, Lima, Lima"
    assert p["referencia_entrega"] == "Frente al parque"
    assert p["telefono_entrega"] == "987654321"
    assert p["detalles"][0]["cantidad"] == 2
    assert p["detalles"][0]["precio_unitario"] == 50.0
    assert [(x["estado"], x["monto"]) for x in p["pagos"]] == [("pendiente", 126.0)]
    assert "cuotas_credito" not in p
    assert [s["estado_actual"] for s in p["seguimiento"]] == ["pendiente"]

    assert client.get(f"/productos/{esc.producto['id']}").json()["stock"] == 3

    segundo = client.post("/pedidos", json=esc.pedido(cantidad=1)).json()
    assert segundo["numero_pedido"].endswith("-0002")

    listado = client.get("/pedidos", params={"user_id": esc.usuario["id"]}).json()
    assert [x["id"] for x in listado["items"]] == [segundo["id"], p["id"]]


def test_pedido_con_cupon_y_envio_gratis(client, semillas):
    esc = Escenario(semillas, precio=100)
    hoy = date.today()
    client.post(
        "/admin/cupones",
        json={
            "codigo": "DESC10",
            "descuento": 10,
            "fecha_inicio": hoy.isoformat(),
            "fecha_fin": (hoy + timedelta(days=1)).isoformat(),
            "limite_uso": 1,
        },
        headers=ADMIN,
    )
    r = client.post("/pedidos", json=esc.pedido(cupon_codigo="desc10"))
    assert r.status_code == 201, r.text
    p = r.json()
    assert p["cupon_codigo"] == "DESC10"
    assert (p["subtotal"], p["descuento"], p["igv"], p["costo_envio"], p["total"]) == (200.0, 20.0, 32.4, 0.0, 212.4)

    r = client.post("/pedidos", json=esc.pedido(cantidad=1, cupon_codigo="DESC10"))
    assert r.status_code == 422
    assert r.json()["detail"] == "Cupón sin usos disponibles"


def test_pedido_recojo_en_tienda(client, esc):
    r = client.post("/pedidos", json=esc.pedido(tipo_entrega="recojo_tienda", direccion_id=None))
    assert r.status_code == 201, r.text
    p = r.json()
    assert p["costo_envio"] == 0.0
    assert p["zona_reparto_id"] is None
    assert p["direccion_entrega"] is None
    assert p["total"] == 118.0


def test_pedido_validaciones(client, semillas, esc):
    r = client.post("/pedidos", json=esc.pedido(metodo_pago_id=None))
    assert r.status_code == 422
    assert r.json()["field"] == "metodo_pago_id"

    assert client.post("/pedidos", json=esc.pedido(direccion_id=None)).status_code == 422
    assert client.post("/pedidos", json=esc.pedido(items=[])).status_code == 422
    assert client.post("/pedidos", json=esc.pedido(tipo_pago="trueque")).status_code == 422

    r = client.post("/pedidos", json=esc.pedido(cantidad=6))
    assert r.status_code == 422
    assert r.json()["code"] == "stock_insuficiente"

    r = client.post("/pedidos", json=esc.pedido(items=[{"producto_id": 999, "cantidad": 1}]))
    assert r.status_code == 404

    # Distrito asignado a la zona pero con coordenadas fuera del radio
    lejos = semillas.direccion(esc.usuario["id"], esc.distrito["id"], latitud=-11.5, longitud=-77.0)
    r = client.post("/pedidos", json=esc.pedido(direccion_id=lejos["id"]))
    assert r.status_code == 422
    assert r.json()["field"] == "direccion_id"
    assert r.json()["detail"] == "Dirección fuera de zona de cobertura"

    ajeno = semillas.usuario()
    r = client.post("/pedidos", json=esc.pedido(user_id=ajeno["id"]))
    assert r.status_code == 422
    assert r.json()["detail"] == "La dirección no pertenece al usuario"

    # Los rechazos no tocan el stock
    assert client.get(f"/productos/{esc.producto['id']}").json()["stock"] == 5


def test_confirmar_pago_y_transiciones(client, esc):
    p = client.post("/pedidos", json=esc.pedido()).json()
    pago_id = p["pagos"][0]["id"]

    r = client.post(f"/admin/pagos/{pago_id}/confirmar", json={"codigo_autorizacion": "AUT-1"}, headers=ADMIN)
    assert r.status_code == 200, r.text
    assert r.json()["estado"] == "pagado"
    pedido = client.get(f"/pedidos/{p['id']}").json()
    assert pedido["estado"] == "confirmado"

    url = f"/admin/pedidos/{p['id']}/estado"
    r = client.put(url, json={"estado": "entregado"}, headers=ADMIN)
    assert r.status_code == 422
    assert r.json()["code"] == "transicion_invalida"
    assert client.put(url, json={"estado": "volando"}, headers=ADMIN).status_code == 422
    assert client.put(url, json={"estado": "preparando"}).status_code == 401

    for estado in ("preparando", "listo", "enviado", "entregado"):
        r = client.put(url, json={"estado": estado}, headers=ADMIN)
        assert r.status_code == 200, r.text
    data = r.json()
    assert data["estado"] == "entregado"
    assert data["fecha_entrega_real"] is not None
    assert [s["estado_actual"] for s in data["seguimiento"]] == [
        "pendiente", "confirmado", "preparando", "listo", "enviado", "entregado",
    ]

    r = client.post(f"/pedidos/{p['id']}/cancelar", json={})
    assert r.status_code == 422
    assert r.json()["code"] == "no_cancelable"

    r = client.get(f"/pedidos/rastreo/{p['codigo_rastreo'].lower()}")
    assert r.status_code == 200, r.text
    assert r.json()["estado_texto"] == "Entregado"
    assert client.get(f"/pedidos/rastreo/{p['numero_pedido']}").json()["codigo_rastreo"] == p["codigo_rastreo"]
    assert client.get("/pedidos/rastreo/PED-000000-1999").status_code == 404

    r = client.post(f"/admin/pagos/{pago_id}/reembolsar", json={"motivo": "Devolución"}, headers=ADMIN)
    assert r.json()["estado"] == "reembolsado"


def test_cancelar_pedido_al_contado(client, esc):
    p = client.post("/pedidos", json=esc.pedido(cantidad=3)).json()
    assert client.get(f"/productos/{esc.producto['id']}").json()["stock"] == 2

    r = client.post(f"/pedidos/{p['id']}/cancelar", json={"motivo": "Cliente desistió"})
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["estado"] == "cancelado"
    assert data["pagos"][0]["estado"] == "cancelado"
    assert data["seguimiento"][-1]["observaciones"] == "Cliente desistió"
    assert client.get(f"/productos/{esc.producto['id']}").json()["stock"] == 5

    r = client.post(f"/admin/pagos/{data['pagos'][0]['id']}/fallido", json={}, headers=ADMIN)
    assert r.status_code == 422


def test_zona_con_pedidos_no_se_elimina(client, esc):
    client.post("/pedidos", json=esc.pedido(cantidad=1))
    r = client.delete(f"/admin/zonas/{esc.zona['id']}", headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "zona_con_pedidos"

    listado = client.get("/admin/pedidos", params={"zona_reparto_id": esc.zona["id"]}, headers=ADMIN).json()
    assert listado["total"] == 1


def _stock_adicional(client, adicional_id):
    return next(a["stock"] for a in client.get("/adicionales").json() if a["id"] == adicional_id)


def test_cancelar_devuelve_stock_de_adicionales(client, esc):
    r = client.post("/admin/adicionales", json={"nombre": "Queso extra", "precio": 2, "stock": 5}, headers=ADMIN)
    assert r.status_code == 201, r.text
    queso = r.json()
    client.post(
        f"/admin/productos/{esc.producto['id']}/adicionales",
        json={"adicional_id": queso["id"], "multiple": True},
        headers=ADMIN,
    )
    items = [{"producto_id": esc.producto["id"], "cantidad": 1, "adicionales": [{"adicional_id": queso["id"], "cantidad": 3}]}]
    r = client.post("/pedidos", json=esc.pedido(items=items, tipo_entrega="recojo_tienda", direccion_id=None))
    assert r.status_code == 201, r.text
    assert _stock_adicional(client, queso["id"]) == 2

    r = client.post(f"/pedidos/{r.json()['id']}/cancelar", json={})
    assert r.status_code == 200, r.text
    assert _stock_adicional(client, queso["id"]) == 5
