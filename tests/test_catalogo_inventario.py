#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_catalogo_inventario.py
# NG-HEADER: Ubicación: tests/test_catalogo_inventario.py
# NG-HEADER: Descripción: Pruebas de catálogo (productos, categorías, adicionales) y movimientos de inventario
# NG-HEADER: Lineamientos: Ver AGENTS.md
from conftest import ADMIN
from services import catalogo, inventario
from services.errores import ReglaNegocioError

import pytest


def test_slugify():
    assert catalogo.slugify("Café  Orgánico ñandú") == "cafe-organico-nandu"
    assert catalogo.slugify("!!!") == "item"


@pytest.mark.parametrize(
    "tipo,anterior,cantidad,nuevo",
    [("entrada", 5, 3, 8), ("salida", 5, 3, 2), ("ajuste", 5, 12, 12), ("reserva", 5, 5, 0), ("liberacion", 0, 2, 2)],
)
def test_calcular_stock_nuevo(tipo, anterior, cantidad, nuevo):
    assert inventario.calcular_stock_nuevo(tipo, anterior, cantidad) == nuevo


def test_calcular_stock_tipo_invalido():
    with pytest.raises(ReglaNegocioError):
        inventario.calcular_stock_nuevo("robo", 1, 1)


def test_producto_crud_y_listado(client, semillas):
    r = client.post("/admin/categorias", json={"nombre": "Bebidas"}, headers=ADMIN)
    assert r.status_code == 201, r.text
    padre = r.json()
    hija = client.post(
        "/admin/categorias", json={"nombre": "Jugos", "categoria_padre_id": padre["id"]}, headers=ADMIN
    ).json()
    arbol = client.get("/categorias").json()
    assert arbol[0]["slug"] == "bebidas"
    assert arbol[0]["subcategorias"][0]["id"] == hija["id"]

    p = semillas.producto(precio=12, stock=3, nombre="Jugo de Naranja", categoria_id=hija["id"], precio_oferta=9)
    semillas.producto(precio=5, stock=0)
    assert p["slug"] == "jugo-de-naranja"
    assert p["en_oferta"] is True
    assert p["precio_final"] == 9.0
    assert p["descuento_porcentaje"] == 25.0
    assert p["precio_formateado"] == "S/ 9.00"

    listado = client.get("/productos", params={"q": "naranja"}).json()
    assert [x["id"] for x in listado["items"]] == [p["id"]]
    assert client.get("/productos", params={"en_oferta": True}).json()["total"] == 1
    assert client.get("/productos", params={"con_stock": False}).json()["total"] == 1
    assert client.get(f"/productos/slug/{p['slug']}").json()["id"] == p["id"]

    r = client.put(f"/admin/productos/{p['id']}", json={"precio_oferta": 15}, headers=ADMIN)
    assert r.status_code == 422
    r = client.put(f"/admin/productos/{p['id']}", json={"precio": 20, "destacado": True}, headers=ADMIN)
    assert r.status_code == 200, r.text
    assert r.json()["precio"] == 20.0

    assert client.delete(f"/admin/productos/{p['id']}", headers=ADMIN).status_code == 200
    assert client.get(f"/productos/{p['id']}").status_code == 404


def test_producto_validaciones(client):
    r = client.post("/admin/productos", json={"nombre": "X", "sku": "X1", "precio": 10, "precio_oferta": 10}, headers=ADMIN)
    assert r.status_code == 422
    assert client.post("/admin/productos", json={"nombre": "X", "sku": "X1", "precio": -1}, headers=ADMIN).status_code == 422
    assert client.post("/admin/productos", json={"nombre": "X", "sku": "X1", "precio": 1}).status_code == 401


def test_movimientos_de_inventario(client, semillas):
    p = semillas.producto(stock=10)
    pid = p["id"]

    r = client.post(
        "/admin/inventario/movimientos", json={"producto_id": pid, "tipo": "salida", "cantidad": 3}, headers=ADMIN
    )
    assert r.status_code == 201, r.text
    mov = r.json()
    assert (mov["stock_anterior"], mov["stock_nuevo"], mov["cantidad"]) == (10, 7, -3)
    assert mov["motivo"] == "Movimiento manual"

    r = client.post(
        "/admin/inventario/movimientos", json={"producto_id": pid, "tipo": "salida", "cantidad": 20}, headers=ADMIN
    )
    assert r.status_code == 422
    assert r.json()["detail"].startswith("Stock insuficiente")

    r = client.post(
        "/admin/inventario/movimientos", json={"producto_id": pid, "tipo": "reserva", "cantidad": 1}, headers=ADMIN
    )
    assert r.status_code == 422

    r = client.post(
        "/admin/inventario/movimientos",
        json={"producto_id": pid, "tipo": "ajuste", "cantidad": 4, "motivo": "Conteo físico"},
        headers=ADMIN,
    )
    assert r.json()["cantidad"] == -3

    r = client.get(f"/admin/inventario/productos/{pid}/resumen", headers=ADMIN)
    assert r.status_code == 200, r.text
    resumen = r.json()
    assert resumen["stock_actual"] == 4
    assert resumen["por_tipo"]["entrada"] == {"movimientos": 1, "cantidad_neta": 10}
    assert resumen["por_tipo"]["salida"] == {"movimientos": 1, "cantidad_neta": -3}
    assert resumen["ultimo_movimiento"]["motivo"] == "Conteo físico"

    listado = client.get("/admin/inventario/movimientos", params={"producto_id": pid}, headers=ADMIN).json()
    assert listado["total"] == 3
    assert listado["items"][-1]["motivo"] == "Stock inicial"


def test_variacion_con_stock_propio(client, semillas):
    p = semillas.producto(stock=2)
    r = client.post(
        f"/admin/productos/{p['id']}/variaciones",
        json={"sku": "VAR-1", "precio": 22, "stock": 5, "atributos": {"talla": "M"}},
        headers=ADMIN,
    )
    assert r.status_code == 201, r.text
    v = r.json()
    assert v["stock"] == 5
    detalle = client.get(f"/productos/{p['id']}").json()
    assert detalle["stock"] == 2
    assert detalle["variaciones"][0]["atributos"] == {"talla": "M"}


def _adicional(client, nombre, precio, **extra):
    payload = {"nombre": nombre, "precio": precio, "tipo": "otro"}
    payload.update(extra)
    r = client.post("/admin/adicionales", json=payload, headers=ADMIN)
    assert r.status_code == 201, r.text
    return r.json()


def test_adicionales_de_producto_y_validacion(client, semillas):
    p = semillas.producto()
    queso = _adicional(client, "Queso extra", 3)
    tocino = _adicional(client, "Tocino", 4, stock=1)
    ketchup = _adicional(client, "Ketchup", 1, tipo="salsa")
    mayo = _adicional(client, "Mayonesa", 1, tipo="salsa")
    r = client.post(
        "/admin/grupos-adicionales",
        json={"nombre": "Salsas", "obligatorio": True, "multiple_seleccion": False, "adicional_ids": [ketchup["id"], mayo["id"]]},
        headers=ADMIN,
    )
    assert r.status_code == 201, r.text
    grupo = r.json()

    r = client.post(
        f"/admin/productos/{p['id']}/adicionales",
        json={"adicional_id": queso["id"], "multiple": True, "cantidad_maxima": 2, "precio_personalizado": 2.5},
        headers=ADMIN,
    )
    assert r.status_code == 201, r.text
    client.post(f"/admin/productos/{p['id']}/adicionales", json={"adicional_id": tocino["id"]}, headers=ADMIN)
    client.post(f"/admin/productos/{p['id']}/grupos-adicionales", json={"grupo_adicional_id": grupo["id"]}, headers=ADMIN)

    data = client.get(f"/productos/{p['id']}/adicionales").json()
    precios = {a["nombre"]: a["precio"] for a in data["adicionales"]}
    assert precios == {"Queso extra": 2.5, "Tocino": 4.0}
    assert data["grupos"][0]["obligatorio"] is True
    assert {a["id"] for a in data["grupos"][0]["adicionales"]} == {ketchup["id"], mayo["id"]}

    url = f"/productos/{p['id']}/adicionales/validar"
    r = client.post(url, json={"cantidad": 2, "adicionales": [
        {"adicional_id": queso["id"], "cantidad": 2},
        {"adicional_id": ketchup["id"]},
    ]})
    assert r.json() == {"valido": True, "errores": [], "total_adicionales": 12.0}

    r = client.post(url, json={"cantidad": 2, "adicionales": [
        {"adicional_id": queso["id"], "cantidad": 3},
        {"adicional_id": tocino["id"]},
        {"adicional_id": 999},
    ]})
    data = r.json()
    assert data["valido"] is False
    assert data["total_adicionales"] == 0.0
    assert "Adicional 999 no permitido para este producto" in data["errores"]
    assert "Adicional 'Queso extra' admite como máximo 2" in data["errores"]
    assert "Adicional 'Tocino' no disponible o sin stock" in data["errores"]
    assert "Debe elegir una opción de 'Salsas'" in data["errores"]

    r = client.post(url, json={"adicionales": [{"adicional_id": ketchup["id"]}, {"adicional_id": mayo["id"]}]})
    assert "Puede elegir como máximo 1 opciones de 'Salsas'" in r.json()["errores"]

    r = client.delete(f"/admin/productos/{p['id']}/adicionales/{tocino['id']}", headers=ADMIN)
    assert r.status_code == 200
    assert client.delete(f"/admin/productos/{p['id']}/adicionales/{tocino['id']}", headers=ADMIN).status_code == 404


def _dependencias(dependant):
    for dep in dependant.dependencies:
        yield dep.call
        yield from _dependencias(dep)


def test_rutas_admin_en_routers_admin():
    from fastapi.routing import APIRoute

    from services.api import app
    from services.auth import require_admin
    from services.routers import cuotas, pagos, productos

    for mod in (productos, pagos, cuotas):
        assert not [r.path for r in mod.router.routes if r.path.startswith("/admin")], mod.__name__
    rutas = [r for r in app.routes if isinstance(r, APIRoute) and r.path.startswith("/admin")]
    assert {"/admin/productos", "/admin/adicionales", "/admin/metodos-pago", "/admin/cuotas/actualizar-moras"} <= {
        r.path for r in rutas
    }
    assert [r.path for r in rutas if require_admin not in set(_dependencias(r.dependant))] == []
