#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: conftest.py
# NG-HEADER: Ubicación: tests/conftest.py
# NG-HEADER: Descripción: Fixtures y configuración compartida de Pytest.
# NG-HEADER: Lineamientos: Ver AGENTS.md
import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Asegurar path del proyecto antes de importar módulos internos
project_root = Path(__file__).resolve().parents[1]
if str(project_root) not in sys.path:
    sys.path.append(str(project_root))

# -------- Entorno base de tests --------
os.environ["DB_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENV"] = "dev"
os.environ.pop("ADMIN_API_KEY", None)
os.environ.pop("TIENDA_COORDENADAS", None)

import db.session as _session  # noqa: E402
import db.base as _base  # noqa: E402
import db.models  # noqa: F401,E402

Base = _base.Base


@pytest_asyncio.fixture(scope="function", autouse=True)
async def db_session():
    """DB limpia por test (SQLite memoria compartida). Retorna sesión para usar en fixtures/tests."""
    engine = _session.engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with _session.SessionLocal() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


from fastapi.testclient import TestClient  # noqa: E402

from services import carrito as _carrito  # noqa: E402
from services.api import app  # noqa: E402

ADMIN = {"X-Admin-Key": "dev-admin-key"}


@pytest.fixture(autouse=True)
def _limpiar_carritos():
    """El carrito vive en memoria del proceso: se vacía entre tests."""
    _carrito.limpiar_cache()
    yield
    _carrito.limpiar_cache()


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


class Semillas:
    """Alta de datos mínimos vía API (admin) para armar escenarios."""

    def __init__(self, client: TestClient):
        self.client = client
        self._n = 0

    def _sec(self) -> int:
        self._n += 1
        return self._n

    def _post(self, url: str, payload: dict, headers: dict | None = None) -> dict:
        r = self.client.post(url, json=payload, headers=headers or ADMIN)
        assert r.status_code == 201, r.text
        return r.json()

    def distrito(self, nombre: str = "Miraflores", latitud: float = -12.1211, longitud: float = -77.0297) -> dict:
        n = self._sec()
        dep = self._post("/admin/ubigeo/departamentos", {"nombre": "Lima", "codigo": f"D{n}"})
        prov = self._post(
            "/admin/ubigeo/provincias", {"departamento_id": dep["id"], "nombre": "Lima", "codigo": f"P{n}"}
        )
        return self._post(
            "/admin/ubigeo/distritos",
            {
                "provincia_id": prov["id"],
                "nombre": nombre,
                "codigo": f"X{n}",
                "latitud": latitud,
                "longitud": longitud,
            },
        )

    def usuario(self, email: str | None = None, limite_credito: float | None = None) -> dict:
        n = self._sec()
        u = self._post(
            "/usuarios",
            {"name": f"Cliente {n}", "email": email or f"cliente{n}@example.com", "telefono": "987654321"},
            headers={},
        )
        if limite_credito is not None:
            r = self.client.put(
                f"/admin/usuarios/{u['id']}/credito", json={"limite_credito": limite_credito}, headers=ADMIN
            )
            assert r.status_code == 200, r.text
            u = r.json()
        return u

    def producto(self, precio: float = 20.0, stock: int = 10, **extra) -> dict:
        n = self._sec()
        payload = {"nombre": f"Producto {n}", "sku": f"SKU-{n:04d}", "precio": precio, "stock": stock}
        payload.update(extra)
        return self._post("/admin/productos", payload)

    def zona(self, **extra) -> dict:
        n = self._sec()
        payload = {
            "nombre": f"Zona {n}",
            "costo_envio": 8.0,
            "tiempo_entrega_min": 30,
            "tiempo_entrega_max": 60,
        }
        payload.update(extra)
        return self._post("/admin/zonas", payload)

    def asignar(self, zona_id: int, distrito_id: int, **extra) -> dict:
        payload = {"distrito_id": distrito_id}
        payload.update(extra)
        return self._post(f"/admin/zonas/{zona_id}/distritos", payload)

    def metodo_pago(self, **extra) -> dict:
        n = self._sec()
        payload = {"nombre": f"Yape {n}", "tipo": "billetera_digital"}
        payload.update(extra)
        return self._post("/admin/metodos-pago", payload)

    def direccion(self, user_id: int, distrito_id: int, latitud: float = -12.1211, longitud: float = -77.0297) -> dict:
        return self._post(
            "/direcciones",
            {
                "user_id": user_id,
                "distrito_id": distrito_id,
                "direccion": "Av. Larco 123",
                "referencia": "Frente al parque",
                "latitud": latitud,
                "longitud": longitud,
            },
            headers={},
        )


@pytest.fixture()
def semillas(client) -> Semillas:
    return Semillas(client)
