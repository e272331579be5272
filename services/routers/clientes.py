# NG-HEADER: Nombre de archivo: clientes.py
# NG-HEADER: Ubicación: services/routers/clientes.py
# NG-HEADER: Descripción: Usuarios, perfil de cliente, verificación y límites de crédito.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ESTADOS_CLIENTE, GENEROS, ROLES_USUARIO, Cliente, User
from db.session import get_session
from services.auditoria import audit, paginar
from services.auth import AdminContext, require_admin
from services.resources import cliente_resource, user_resource
from tienda_core.dinero import a_decimal

logger = logging.getLogger("tienda.clientes")

router = APIRouter(prefix="/usuarios", tags=["clientes"])
admin_router = APIRouter(prefix="/admin", tags=["clientes"])


def _solo_digitos(v: Optional[str], largo: Optional[int] = None) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v.isdigit():
        raise ValueError("Sólo se permiten dígitos")
    if largo is not None and len(v) != largo:
        raise ValueError(f"Debe tener {largo} dígitos")
    return v


def _telefono(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v or any(ch not in "0123456789+" for ch in v):
        raise ValueError("El teléfono sólo admite dígitos y '+'")
    return v


class UserIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    email: str = Field(..., min_length=3, max_length=150)
    dni: Optional[str] = None
    telefono: Optional[str] = Field(None, max_length=20)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("Email inválido")
        return v

    @field_validator("dni")
    @classmethod
    def _dni(cls, v: Optional[str]) -> Optional[str]:
        return _solo_digitos(v, 8)

    @field_validator("telefono")
    @classmethod
    def _tel(cls, v: Optional[str]) -> Optional[str]:
        return _telefono(v)


class ClienteIn(BaseModel):
    dni: str
    nombre_completo: str = Field(..., min_length=1, max_length=150)
    apellidos: Optional[str] = Field(None, max_length=150)
    telefono: Optional[str] = Field(None, max_length=20)
    fecha_nacimiento: Optional[date] = None
    genero: Optional[str] = None
    preferencias: Optional[dict] = None

    @field_validator("dni")
    @classmethod
    def _dni(cls, v: str) -> str:
        return _solo_digitos(v, 8)

    @field_validator("telefono")
    @classmethod
    def _tel(cls, v: Optional[str]) -> Optional[str]:
        return _telefono(v)

    @field_validator("genero")
    @classmethod
    def _genero(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in GENEROS:
            raise ValueError(f"genero debe ser uno de {', '.join(GENEROS)}")
        return v

    @field_validator("fecha_nacimiento")
    @classmethod
    def _nacimiento(cls, v: Optional[date]) -> Optional[date]:
        if v is not None and v >= date.today():
            raise ValueError("fecha_nacimiento debe ser anterior a hoy")
        return v


class UserAdminUpdate(BaseModel):
    rol: Optional[str] = None
    activo: Optional[bool] = None
    verificado: Optional[bool] = None

    @field_validator("rol")
    @classmethod
    def _rol(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ROLES_USUARIO:
            raise ValueError(f"rol debe ser uno de {', '.join(ROLES_USUARIO)}")
        return v


class CreditoIn(BaseModel):
    limite_credito: float = Field(..., ge=0)


class EstadoClienteIn(BaseModel):
    estado: str

    @field_validator("estado")
    @classmethod
    def _estado(cls, v: str) -> str:
        if v not in ESTADOS_CLIENTE:
            raise ValueError(f"estado debe ser uno de {', '.join(ESTADOS_CLIENTE)}")
        return v


async def _user_o_404(db: AsyncSession, user_id: int) -> User:
    u = await db.get(User, user_id)
    if not u or u.deleted_at is not None:
        raise HTTPException(status_code=404, detail="Usuario no encontrado")
    return u


async def _cliente_de(db: AsyncSession, user_id: int) -> Optional[Cliente]:
    return (await db.execute(select(Cliente).where(Cliente.user_id == user_id))).scalar_one_or_none()


async def _cliente_o_404(db: AsyncSession, cliente_id: int) -> Cliente:
    c = await db.get(Cliente, cliente_id)
    if not c:
        raise HTTPException(status_code=404, detail="Cliente no encontrado")
    return c


@router.post("", status_code=201)
async def create_user(payload: UserIn, db: AsyncSession = Depends(get_session)):
    existe = await db.scalar(select(func.count()).select_from(User).where(User.email == payload.email))
    if existe:
        raise HTTPException(status_code=409, detail={"code": "email_duplicado", "message": "El email ya está registrado"})
    u = User(**payload.model_dump(), rol="cliente", limite_credito=a_decimal(0), credito_usado=a_decimal(0))
    db.add(u)
    await db.flush()
    await db.commit()
    logger.info("Usuario %s registrado", u.id)
    return user_resource(u)


@router.get("/{user_id}")
async def get_user(user_id: int, db: AsyncSession = Depends(get_session)):
    u = await _user_o_404(db, user_id)
    data = user_resource(u)
    cliente = await _cliente_de(db, u.id)
    data["cliente"] = cliente_resource(cliente) if cliente else None
    return data


@router.put("/{user_id}/cliente")
async def upsert_cliente(user_id: int, payload: ClienteIn, db: AsyncSession = Depends(get_session)):
    """Crea o actualiza el perfil de cliente (1:1 con el usuario)."""
    u = await _user_o_404(db, user_id)
    duplicado = (await db.execute(
        select(Cliente).where(Cliente.dni == payload.dni, Cliente.user_id != u.id)
    )).scalar_one_or_none()
    if duplicado is not None:
        raise HTTPException(status_code=409, detail={"code": "dni_duplicado", "message": "El DNI ya está registrado"})
    c = await _cliente_de(db, u.id)
    if c is None:
        c = Cliente(user_id=u.id, estado="activo", verificado=False)
        db.add(c)
    for k, v in payload.model_dump().items():
        setattr(c, k, v)
    u.dni = payload.dni
    if payload.telefono:
        u.telefono = payload.telefono
    await db.flush()
    await db.commit()
    return cliente_resource(c)


@admin_router.get("/usuarios", dependencies=[Depends(require_admin)])
async def list_users(
    q: Optional[str] = None,
    rol: Optional[str] = None,
    activo: Optional[bool] = None,
    page: int = 1,
    page_size: int = 20,
    db: AsyncSession = Depends(get_session),
):
    stmt = select(User).where(User.deleted_at.is_(None))
    if q:
        like = f"%{q.strip()}%"
        stmt = stmt.where(or_(User.name.ilike(like), User.email.ilike(like), User.dni.ilike(like)))
    if rol:
        stmt = stmt.where(User.rol == rol)
    if activo is not None:
        stmt = stmt.where(User.activo.is_(activo))
    return await paginar(db, stmt.order_by(User.id), page, page_size, user_resource)


@admin_router.patch("/usuarios/{user_id}")
async def update_user(
    user_id: int,
    payload: UserAdminUpdate,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    u = await _user_o_404(db, user_id)
    cambios = payload.model_dump(exclude_unset=True)
    for k, v in cambios.items():
        setattr(u, k, v)
    audit(db, "user_update", "users", u.id, cambios, ctx, request)
    await db.commit()
    return user_resource(u)


@admin_router.put("/usuarios/{user_id}/credito")
async def update_credito(
    user_id: int,
    payload: CreditoIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    u = await _user_o_404(db, user_id)
    nuevo = a_decimal(payload.limite_credito)
    if nuevo < a_decimal(u.credito_usado):
        raise HTTPException(
            status_code=422,
            detail=f"El límite no puede ser menor al crédito usado (S/ {a_decimal(u.credito_usado):.2f})",
        )
    anterior = u.limite_credito
    u.limite_credito = nuevo
    audit(
        db, "user_credito", "users", u.id,
        {"anterior": str(anterior), "nuevo": str(nuevo)}, ctx, request,
    )
    await db.commit()
    logger.info("Límite de crédito de usuario %s: %s -> %s", u.id, anterior, nuevo)
    return user_resource(u)


@admin_router.patch("/clientes/{cliente_id}/estado")
async def update_estado_cliente(
    cliente_id: int,
    payload: EstadoClienteIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    c = await _cliente_o_404(db, cliente_id)
    c.estado = payload.estado
    audit(db, "cliente_estado", "clientes", c.id, {"estado": c.estado}, ctx, request)
    await db.commit()
    return cliente_resource(c)


@admin_router.post("/clientes/{cliente_id}/verificar")
async def verificar_cliente(
    cliente_id: int,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    c = await _cliente_o_404(db, cliente_id)
    c.verificado = True
    u = await db.get(User, c.user_id)
    if u is not None:
        u.verificado = True
    audit(db, "cliente_verificar", "clientes", c.id, None, ctx, request)
    await db.commit()
    return cliente_resource(c)
