#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_cupones.py
# NG-HEADER: Ubicación: tests/test_cupones.py
# NG-HEADER: Descripción: Pruebas de reglas de cupones y de su administración
# NG-HEADER: Lineamientos: Ver AGENTS.md
from datetime import date, timedelta
from decimal import Decimal

import pytest

from conftest import ADMIN
from db.models import Cupon
from services import cupones

HOY = date(2030, 1, 7)


def _cupon(**kw) -> Cupon:
    base = dict(
        codigo="PROMO",
        descuento=Decimal("10"),
        tipo="porcentaje",
        fecha_inicio=HOY - timedelta(days=5),
        fecha_fin=HOY + timedelta(days=5),
        limite_uso=None,
        usos=0,
        monto_minimo=None,
        monto_maximo_descuento=None,
        activo=True,
    )
    base.update(kw)
    return Cupon(**base)


def test_descuento_porcentual_y_tope():
    assert cupones.calcular_descuento(_cupon(), 80) == Decimal("8.00")
    tope = _cupon(descuento=Decimal("50"), monto_maximo_descuento=Decimal("30"))
    assert cupones.calcular_descuento(tope, 200) == Decimal("30.00")


def test_descuento_fijo_no_supera_subtotal():
    fijo = _cupon(tipo="monto_fijo", descuento=Decimal("25"))
    assert cupones.calcular_descuento(fijo, 100) == Decimal("25.00")
    assert cupones.calcular_descuento(fijo, 12.5) == Decimal("12.50")
    assert cupones.calcular_descuento(fijo, 0) == Decimal("0")


@pytest.mark.parametrize(
    "cupon,subtotal,motivo",
    [
        (None, None, "Cupón inválido"),
        (_cupon(activo=False), None, "Cupón vencido o inactivo"),
        (_cupon(fecha_fin=HOY - timedelta(days=1)), None, "Cupón vencido o inactivo"),
        (_cupon(fecha_inicio=HOY + timedelta(days=1)), None, "Cupón vencido o inactivo"),
        (_cupon(limite_uso=3, usos=3), None, "Cupón sin usos disponibles"),
        (_cupon(monto_minimo=Decimal("50")), 49.99, "El cupón requiere una compra mínima de S/ 50.00"),
        (_cupon(monto_minimo=Decimal("50")), 50, None),
        (_cupon(), None, None),
    ],
)
def test_motivo_rechazo(cupon, subtotal, motivo):
    assert cupones.motivo_rechazo(cupon, subtotal, hoy=HOY) == motivo


def _payload(**extra):
    hoy = date.today()
    data = {
        "codigo": "verano",
        "descuento": 15,
        "tipo": "porcentaje",
        "fecha_inicio": hoy.isoformat(),
        "fecha_fin": (hoy + timedelta(days=10)).isoformat(),
    }
    data.update(extra)
    return data


def test_admin_crear_y_validar(client):
    r = client.post("/admin/cupones", json=_payload(monto_maximo_descuento=20), headers=ADMIN)
    assert r.status_code == 201, r.text
    c = r.json()
    assert c["codigo"] == "VERANO"
    assert c["descuento_texto"] == "15%"
    assert c["puede_usarse"] is True

    r = client.post("/admin/cupones", json=_payload(codigo="Verano"), headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "cupon_duplicado"

    r = client.post("/cupones/validar", json={"codigo": "verano", "subtotal": 200})
    data = r.json()
    assert data["valido"] is True
    assert data["descuento"] == 20.0

    r = client.post("/cupones/validar", json={"codigo": "otro"})
    assert r.json() == {"valido": False, "mensaje": "Cupón inválido"}


def test_admin_validaciones(client):
    assert client.post("/admin/cupones", json=_payload()).status_code == 401
    assert client.post("/admin/cupones", json=_payload(descuento=120), headers=ADMIN).status_code == 422
    assert client.post("/admin/cupones", json=_payload(tipo="regalo"), headers=ADMIN).status_code == 422
    hoy = date.today()
    fechas = _payload(fecha_inicio=(hoy + timedelta(days=3)).isoformat(), fecha_fin=hoy.isoformat())
    assert client.post("/admin/cupones", json=fechas, headers=ADMIN).status_code == 422


def test_admin_actualizar_y_eliminar(client):
    c = client.post("/admin/cupones", json=_payload(limite_uso=5), headers=ADMIN).json()
    r = client.put(f"/admin/cupones/{c['id']}", json={"descuento": 150}, headers=ADMIN)
    assert r.status_code == 422
    r = client.put(f"/admin/cupones/{c['id']}", json={"descuento": 12, "activo": False}, headers=ADMIN)
    assert r.status_code == 200, r.text
    assert r.json()["descuento"] == 12.0
    assert r.json()["puede_usarse"] is False

    listado = client.get("/admin/cupones", params={"activo": False}, headers=ADMIN).json()
    assert [x["id"] for x in listado["items"]] == [c["id"]]

    r = client.delete(f"/admin/cupones/{c['id']}", headers=ADMIN)
    assert r.json() == {"status": "ok", "id": c["id"], "desactivado": False}
    assert client.delete(f"/admin/cupones/{c['id']}", headers=ADMIN).status_code == 404
