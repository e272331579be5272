#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_clientes_pagos.py
# NG-HEADER: Ubicación: tests/test_clientes_pagos.py
# NG-HEADER: Descripción: Pruebas de usuarios/clientes, métodos de pago, acceso admin y errores comunes
# NG-HEADER: Lineamientos: Ver AGENTS.md
from conftest import ADMIN


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    data = client.get("/health/db").json()
    assert data["db"]["ok"] is True


def test_registro_de_usuario(client):
    r = client.post("/usuarios", json={"name": "Ana", "email": " Ana@Example.com ", "telefono": "+51987654321"})
    assert r.status_code == 201, r.text
    u = r.json()
    assert u["email"] == "ana@example.com"
    assert u["rol"] == "cliente"
    assert u["credito_disponible"] == 0.0

    r = client.post("/usuarios", json={"name": "Otra", "email": "ana@example.com"})
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "email_duplicado"

    assert client.post("/usuarios", json={"name": "X", "email": "sin-arroba"}).status_code == 422
    assert client.post("/usuarios", json={"name": "X", "email": "x@y.pe", "dni": "123"}).status_code == 422
    assert client.get("/usuarios/999").status_code == 404


def test_perfil_de_cliente(client, semillas):
    u = semillas.usuario()
    otro = semillas.usuario()
    payload = {"dni": "12345678", "nombre_completo": "Ana", "apellidos": "Quispe", "fecha_nacimiento": "1990-05-20", "genero": "F"}
    r = client.put(f"/usuarios/{u['id']}/cliente", json=payload)
    assert r.status_code == 200, r.text
    c = r.json()
    assert c["estado"] == "activo"
    assert c["verificado"] is False
    assert c["edad"] >= 35

    assert client.get(f"/usuarios/{u['id']}").json()["cliente"]["dni"] == "12345678"
    assert client.get(f"/usuarios/{u['id']}").json()["dni"] == "12345678"

    r = client.put(f"/usuarios/{otro['id']}/cliente", json=payload)
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "dni_duplicado"
    assert client.put(f"/usuarios/{otro['id']}/cliente", json={**payload, "dni": "87654321", "genero": "X"}).status_code == 422

    r = client.post(f"/admin/clientes/{c['id']}/verificar", headers=ADMIN)
    assert r.json()["verificado"] is True
    assert client.get(f"/usuarios/{u['id']}").json()["verificado"] is True

    r = client.patch(f"/admin/clientes/{c['id']}/estado", json={"estado": "bloqueado"}, headers=ADMIN)
    assert r.json()["estado"] == "bloqueado"
    assert client.patch(f"/admin/clientes/{c['id']}/estado", json={"estado": "raro"}, headers=ADMIN).status_code == 422


def test_admin_usuarios(client, semillas):
    u = semillas.usuario(email="buscame@example.com")
    semillas.usuario()
    listado = client.get("/admin/usuarios", params={"q": "buscame"}, headers=ADMIN).json()
    assert [x["id"] for x in listado["items"]] == [u["id"]]

    r = client.patch(f"/admin/usuarios/{u['id']}", json={"rol": "repartidor", "activo": False}, headers=ADMIN)
    assert r.status_code == 200, r.text
    assert (r.json()["rol"], r.json()["activo"]) == ("repartidor", False)
    assert client.patch(f"/admin/usuarios/{u['id']}", json={"rol": "rey"}, headers=ADMIN).status_code == 422

    r = client.put(f"/admin/usuarios/{u['id']}/credito", json={"limite_credito": 300}, headers=ADMIN)
    assert r.json()["credito_disponible"] == 300.0


def test_acceso_admin(client):
    assert client.get("/admin/usuarios").status_code == 401
    r = client.get("/admin/usuarios", headers={"X-Admin-Key": "otra"})
    assert r.status_code == 401
    assert r.json()["detail"] == "No autorizado"


def test_sku_duplicado_responde_409(client, semillas):
    semillas.producto(sku="DUP-1")
    r = client.post("/admin/productos", json={"nombre": "Otro", "sku": "DUP-1", "precio": 5}, headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["code"] == "duplicate_sku"


def test_metodos_de_pago_por_monto(client, semillas):
    yape = semillas.metodo_pago(nombre="Yape", monto_maximo=500, orden=1)
    tarjeta = semillas.metodo_pago(
        nombre="Visa", tipo="tarjeta_credito", comision_porcentaje=3.5, comision_fija=0.3, monto_minimo=20, orden=2,
    )
    semillas.metodo_pago(nombre="Apagado", activo=False)
    semillas.metodo_pago(nombre="Dólares", moneda_soportada="USD", orden=3)
    assert yape["slug"] == "yape"

    todos = client.get("/metodos-pago").json()
    assert [m["nombre"] for m in todos] == ["Yape", "Visa", "Dólares"]

    r = client.get("/metodos-pago", params={"monto": 100}).json()
    assert [m["id"] for m in r] == [yape["id"], tarjeta["id"]]
    visa = r[1]
    assert visa["comision_calculada"] == 3.8
    assert visa["disponible_para_monto"] is True

    assert [m["id"] for m in client.get("/metodos-pago", params={"monto": 10}).json()] == [yape["id"]]
    assert [m["id"] for m in client.get("/metodos-pago", params={"monto": 600}).json()] == [tarjeta["id"]]

    r = client.post("/admin/metodos-pago", json={"nombre": "Malo", "tipo": "trueque"}, headers=ADMIN)
    assert r.status_code == 422
    r = client.post("/admin/metodos-pago", json={"nombre": "Rango", "monto_minimo": 10, "monto_maximo": 5}, headers=ADMIN)
    assert r.status_code == 422


def test_pedido_rechaza_metodo_fuera_de_rango(client, semillas):
    u = semillas.usuario()
    p = semillas.producto(precio=10)
    metodo = semillas.metodo_pago(monto_minimo=100)
    r = client.post(
        "/pedidos",
        json={
            "items": [{"producto_id": p["id"], "cantidad": 1}],
            "user_id": u["id"],
            "metodo_pago_id": metodo["id"],
            "tipo_entrega": "recojo_tienda",
        },
    )
    assert r.status_code == 422
    assert r.json()["detail"] == "Monto fuera del rango permitido por el método de pago"
    assert r.json()["field"] == "metodo_pago_id"
