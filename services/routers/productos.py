# NG-HEADER: Nombre de archivo: productos.py
# NG-HEADER: Ubicación: services/routers/productos.py
# NG-HEADER: Descripción: Endpoints de catálogo (categorías, productos, variaciones, imágenes y adicionales).
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import (
    TIPOS_ADICIONAL,
    Adicional,
    Categoria,
    GrupoAdicional,
    ImagenProducto,
    Producto,
    ProductoAdicional,
    ProductoGrupoAdicional,
    VariacionProducto,
    adicional_grupo,
)
from db.session import get_session
from services import catalogo, inventario
from services.auditoria import audit, paginar
from services.auth import AdminContext, require_admin
from services.resources import adicional_resource, categoria_resource, producto_resource, variacion_resource
from tienda_core.dinero import CERO, a_decimal, a_float, redondear

router = APIRouter(tags=["catalogo"])
admin_router = APIRouter(prefix="/admin", tags=["catalogo"])


def _dec(v):
    return a_decimal(v) if v is not None else None


# --- Schemas ---


class CategoriaIn(BaseModel):
    nombre: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    descripcion: Optional[str] = None
    imagen: Optional[str] = None
    categoria_padre_id: Optional[int] = None
    activo: bool = True
    orden: int = 0


class ProductoIn(BaseModel):
    nombre: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    sku: str = Field(..., min_length=1, max_length=100)
    descripcion: Optional[str] = None
    codigo_barras: Optional[str] = None
    categoria_id: Optional[int] = None
    precio: float = Field(..., ge=0)
    precio_oferta: Optional[float] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    stock_minimo: int = Field(0, ge=0)
    imagen_principal: Optional[str] = None
    destacado: bool = False
    activo: bool = True
    marca: Optional[str] = None
    modelo: Optional[str] = None
    garantia: Optional[str] = None
    peso: Optional[float] = Field(None, ge=0)
    moneda: str = Field("PEN", min_length=3, max_length=3)
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    atributos_extra: Optional[dict] = None

    @model_validator(mode="after")
    def _oferta_menor_que_precio(self):
        if self.precio_oferta is not None and self.precio_oferta >= self.precio:
            raise ValueError("precio_oferta debe ser menor que precio")
        return self


class ProductoUpdate(BaseModel):
    nombre: Optional[str] = Field(None, min_length=1, max_length=255)
    descripcion: Optional[str] = None
    codigo_barras: Optional[str] = None
    categoria_id: Optional[int] = None
    precio: Optional[float] = Field(None, ge=0)
    precio_oferta: Optional[float] = Field(None, ge=0)
    stock_minimo: Optional[int] = Field(None, ge=0)
    imagen_principal: Optional[str] = None
    destacado: Optional[bool] = None
    activo: Optional[bool] = None
    marca: Optional[str] = None
    modelo: Optional[str] = None
    garantia: Optional[str] = None
    peso: Optional[float] = Field(None, ge=0)
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    atributos_extra: Optional[dict] = None


class VariacionIn(BaseModel):
    sku: str = Field(..., min_length=1, max_length=100)
    precio: float = Field(..., ge=0)
    precio_oferta: Optional[float] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    activo: bool = True
    imagen: Optional[str] = None
    atributos: Optional[dict] = None


class ImagenIn(BaseModel):
    url: str = Field(..., min_length=1, max_length=500)
    alt: Optional[str] = None
    orden: int = 0
    principal: bool = False


class AdicionalIn(BaseModel):
    nombre: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = None
    descripcion: Optional[str] = None
    precio: float = Field(0, ge=0)
    imagen: Optional[str] = None
    tipo: str = "otro"
    disponible: bool = True
    activo: bool = True
    stock: Optional[int] = Field(None, ge=0)
    tiempo_preparacion: Optional[int] = Field(None, ge=0)
    calorias: Optional[float] = Field(None, ge=0)
    alergenos: Optional[list[str]] = None
    vegetariano: bool = False
    vegano: bool = False
    orden: int = 0

    @field_validator("tipo")
    @classmethod
    def _tipo_valido(cls, v: str) -> str:
        if v not in TIPOS_ADICIONAL:
            raise ValueError(f"tipo debe ser uno de {', '.join(TIPOS_ADICIONAL)}")
        return v


class GrupoAdicionalIn(BaseModel):
    nombre: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = None
    descripcion: Optional[str] = None
    obligatorio: bool = False
    multiple_seleccion: bool = True
    minimo_selecciones: int = Field(0, ge=0)
    maximo_selecciones: Optional[int] = Field(None, ge=1)
    orden: int = 0
    adicional_ids: list[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def _rango(self):
        if self.maximo_selecciones is not None and self.maximo_selecciones < self.minimo_selecciones:
            raise ValueError("maximo_selecciones debe ser >= minimo_selecciones")
        return self


class ProductoAdicionalIn(BaseModel):
    adicional_id: int
    obligatorio: bool = False
    multiple: bool = False
    cantidad_minima: int = Field(0, ge=0)
    cantidad_maxima: Optional[int] = Field(None, ge=1)
    precio_personalizado: Optional[float] = Field(None, ge=0)
    incluido_gratis: bool = False
    orden: int = 0


class ProductoGrupoIn(BaseModel):
    grupo_adicional_id: int
    obligatorio: bool = False
    minimo_selecciones: int = Field(0, ge=0)
    maximo_selecciones: Optional[int] = Field(None, ge=1)
    orden: int = 0


class SeleccionAdicional(BaseModel):
    adicional_id: int
    cantidad: int = Field(1, ge=1)


class ValidarAdicionalesIn(BaseModel):
    cantidad: int = Field(1, ge=1)
    adicionales: list[SeleccionAdicional] = Field(default_factory=list)


async def _producto_o_404(db: AsyncSession, producto_id: int) -> Producto:
    p = await db.get(Producto, producto_id)
    if not p or p.deleted_at is not None:
        raise HTTPException(status_code=404, detail="Producto no encontrado")
    return p


async def _detalle_producto(db: AsyncSession, p: Producto) -> dict:
    variaciones = (await db.execute(
        select(VariacionProducto).where(VariacionProducto.producto_id == p.id).order_by(VariacionProducto.id)
    )).scalars().all()
    imagenes = (await db.execute(
        select(ImagenProducto).where(ImagenProducto.producto_id == p.id).order_by(ImagenProducto.orden, ImagenProducto.id)
    )).scalars().all()
    return producto_resource(p, variaciones=variaciones, imagenes=imagenes)


# --- Categorías ---


@router.get("/categorias")
async def list_categorias(db: AsyncSession = Depends(get_session)):
    rows = (await db.execute(
        select(Categoria).where(Categoria.activo.is_(True)).order_by(Categoria.orden, Categoria.nombre)
    )).scalars().all()
    por_padre: dict[Optional[int], list[dict]] = {}
    for c in rows:
        por_padre.setdefault(c.categoria_padre_id, []).append(categoria_resource(c))

    def _arbol(padre_id):
        out = []
        for item in por_padre.get(padre_id, []):
            item["subcategorias"] = _arbol(item["id"])
            out.append(item)
        return out

    return _arbol(None)


@admin_router.post("/categorias", status_code=201)
async def create_categoria(
    payload: CategoriaIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    if payload.categoria_padre_id is not None and not await db.get(Categoria, payload.categoria_padre_id):
        raise HTTPException(status_code=404, detail="Categoría padre no encontrada")
    data = payload.model_dump()
    data["slug"] = catalogo.slugify(payload.slug or payload.nombre)
    c = Categoria(**data)
    db.add(c)
    await db.flush()
    audit(db, "categoria_create", "categorias", c.id, {"slug": c.slug}, ctx, request)
    await db.commit()
    return categoria_resource(c)


# --- Productos ---


@router.get("/productos")
async def list_productos(
    q: Optional[str] = None,
    categoria_id: Optional[int] = None,
    destacado: Optional[bool] = None,
    en_oferta: Optional[bool] = None,
    con_stock: Optional[bool] = None,
    activo: Optional[bool] = True,
    page: int = 1,
    page_size: int = 20,
    db: AsyncSession = Depends(get_session),
):
    stmt = select(Producto).where(Producto.deleted_at.is_(None))
    if q:
        like = f"%{q.strip()}%"
        stmt = stmt.where(or_(Producto.nombre.ilike(like), Producto.sku.ilike(like)))
    if categoria_id is not None:
        stmt = stmt.where(Producto.categoria_id == categoria_id)
    if destacado is not None:
        stmt = stmt.where(Producto.destacado.is_(destacado))
    if activo is not None:
        stmt = stmt.where(Producto.activo.is_(activo))
    oferta = and_(Producto.precio_oferta.is_not(None), Producto.precio_oferta < Producto.precio)
    if en_oferta is True:
        stmt = stmt.where(oferta)
    elif en_oferta is False:
        stmt = stmt.where(~oferta)
    if con_stock is True:
        stmt = stmt.where(Producto.stock > 0)
    elif con_stock is False:
        stmt = stmt.where(Producto.stock <= 0)
    stmt = stmt.order_by(Producto.destacado.desc(), Producto.nombre, Producto.id)
    return await paginar(db, stmt, page, page_size, producto_resource)


@router.get("/productos/slug/{slug}")
async def get_producto_por_slug(slug: str, db: AsyncSession = Depends(get_session)):
    p = (await db.execute(
        select(Producto).where(Producto.slug == slug, Producto.deleted_at.is_(None))
    )).scalar_one_or_none()
    if not p:
        raise HTTPException(status_code=404, detail="Producto no encontrado")
    return await _detalle_producto(db, p)


@router.get("/productos/{producto_id}")
async def get_producto(producto_id: int, db: AsyncSession = Depends(get_session)):
    return await _detalle_producto(db, await _producto_o_404(db, producto_id))


@admin_router.post("/productos", status_code=201)
async def create_producto(
    payload: ProductoIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    if payload.categoria_id is not None and not await db.get(Categoria, payload.categoria_id):
        raise HTTPException(status_code=404, detail="Categoría no encontrada")
    data = payload.model_dump(exclude={"stock"})
    data["slug"] = catalogo.slugify(payload.slug or payload.nombre)
    for k in ("precio", "precio_oferta", "peso"):
        data[k] = _dec(data[k])
    p = Producto(**data, stock=0)
    db.add(p)
    await db.flush()
    if payload.stock > 0:
        inventario.registrar_movimiento(
            db, p, "entrada", payload.stock, motivo="Stock inicial", usuario_id=ctx.user_id,
        )
    audit(db, "producto_create", "productos", p.id, {"sku": p.sku, "stock_inicial": payload.stock}, ctx, request)
    await db.commit()
    return await _detalle_producto(db, p)


@admin_router.put("/productos/{producto_id}")
async def update_producto(
    producto_id: int,
    payload: ProductoUpdate,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    p = await _producto_o_404(db, producto_id)
    cambios = payload.model_dump(exclude_unset=True)
    precio = a_decimal(cambios.get("precio", p.precio))
    oferta = cambios.get("precio_oferta", p.precio_oferta)
    if oferta is not None and a_decimal(oferta) >= precio:
        raise HTTPException(status_code=422, detail="precio_oferta debe ser menor que precio")
    before = {k: (a_float(getattr(p, k)) if k in ("precio", "precio_oferta", "peso") else getattr(p, k)) for k in cambios}
    for k, v in cambios.items():
        setattr(p, k, _dec(v) if k in ("precio", "precio_oferta", "peso") else v)
    audit(db, "producto_update", "productos", p.id, {"before": before, "after": cambios}, ctx, request)
    await db.commit()
    return await _detalle_producto(db, p)


@admin_router.delete("/productos/{producto_id}")
async def delete_producto(
    producto_id: int,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    p = await _producto_o_404(db, producto_id)
    p.deleted_at = datetime.now()
    p.activo = False
    audit(db, "producto_delete", "productos", p.id, {"sku": p.sku}, ctx, request)
    await db.commit()
    return {"status": "ok", "id": p.id}


@admin_router.post("/productos/{producto_id}/variaciones", status_code=201)
async def create_variacion(
    producto_id: int,
    payload: VariacionIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    p = await _producto_o_404(db, producto_id)
    v = VariacionProducto(
        producto_id=p.id,
        sku=payload.sku,
        precio=a_decimal(payload.precio),
        precio_oferta=_dec(payload.precio_oferta),
        stock=0,
        activo=payload.activo,
        imagen=payload.imagen,
        atributos=payload.atributos,
    )
    db.add(v)
    await db.flush()
    if payload.stock > 0:
        inventario.registrar_movimiento(
            db, p, "entrada", payload.stock, variacion=v, motivo="Stock inicial", usuario_id=ctx.user_id,
        )
    audit(db, "variacion_create", "variaciones_productos", v.id, {"producto_id": p.id, "sku": v.sku}, ctx, request)
    await db.commit()
    return variacion_resource(v)


@admin_router.post("/productos/{producto_id}/imagenes", status_code=201, dependencies=[Depends(require_admin)])
async def add_imagen(
    producto_id: int,
    payload: ImagenIn,
    db: AsyncSession = Depends(get_session),
):
    p = await _producto_o_404(db, producto_id)
    img = ImagenProducto(producto_id=p.id, **payload.model_dump())
    db.add(img)
    if payload.principal:
        p.imagen_principal = payload.url
    await db.commit()
    return {"id": img.id, "url": img.url, "alt": img.alt, "orden": img.orden, "principal": img.principal}


# --- Adicionales ---


@router.get("/adicionales")
async def list_adicionales(
    tipo: Optional[str] = None,
    disponible: Optional[bool] = None,
    db: AsyncSession = Depends(get_session),
):
    stmt = select(Adicional).where(Adicional.activo.is_(True))
    if tipo:
        stmt = stmt.where(Adicional.tipo == tipo)
    rows = (await db.execute(stmt.order_by(Adicional.orden, Adicional.nombre))).scalars().all()
    if disponible is not None:
        rows = [a for a in rows if a.esta_disponible() == disponible]
    return [adicional_resource(a) for a in rows]


@admin_router.post("/adicionales", status_code=201)
async def create_adicional(
    payload: AdicionalIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    data = payload.model_dump()
    data["slug"] = catalogo.slugify(payload.slug or payload.nombre)
    data["precio"] = a_decimal(payload.precio)
    data["calorias"] = _dec(payload.calorias)
    a = Adicional(**data)
    db.add(a)
    await db.flush()
    audit(db, "adicional_create", "adicionales", a.id, {"slug": a.slug}, ctx, request)
    await db.commit()
    return adicional_resource(a)


@admin_router.put("/adicionales/{adicional_id}")
async def update_adicional(
    adicional_id: int,
    payload: AdicionalIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    a = await db.get(Adicional, adicional_id)
    if not a:
        raise HTTPException(status_code=404, detail="Adicional no encontrado")
    cambios = payload.model_dump(exclude_unset=True)
    for k, v in cambios.items():
        setattr(a, k, _dec(v) if k in ("precio", "calorias") else v)
    audit(db, "adicional_update", "adicionales", a.id, cambios, ctx, request)
    await db.commit()
    return adicional_resource(a)


@admin_router.post("/grupos-adicionales", status_code=201)
async def create_grupo(
    payload: GrupoAdicionalIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    data = payload.model_dump(exclude={"adicional_ids"})
    data["slug"] = catalogo.slugify(payload.slug or payload.nombre)
    g = GrupoAdicional(**data)
    db.add(g)
    await db.flush()
    for orden, aid in enumerate(payload.adicional_ids):
        if not await db.get(Adicional, aid):
            raise HTTPException(status_code=404, detail=f"Adicional {aid} no encontrado")
        await db.execute(adicional_grupo.insert().values(adicional_id=aid, grupo_adicional_id=g.id, orden=orden))
    audit(db, "grupo_adicional_create", "grupos_adicionales", g.id, {"adicionales": payload.adicional_ids}, ctx, request)
    await db.commit()
    return {
        "id": g.id,
        "nombre": g.nombre,
        "slug": g.slug,
        "obligatorio": g.obligatorio,
        "multiple_seleccion": g.multiple_seleccion,
        "minimo_selecciones": g.minimo_selecciones,
        "maximo_selecciones": g.maximo_selecciones,
        "adicional_ids": payload.adicional_ids,
    }


@admin_router.post("/productos/{producto_id}/adicionales", status_code=201, dependencies=[Depends(require_admin)])
async def attach_adicional(
    producto_id: int,
    payload: ProductoAdicionalIn,
    db: AsyncSession = Depends(get_session),
):
    p = await _producto_o_404(db, producto_id)
    if not await db.get(Adicional, payload.adicional_id):
        raise HTTPException(status_code=404, detail="Adicional no encontrado")
    if payload.cantidad_maxima is not None and payload.cantidad_maxima < payload.cantidad_minima:
        raise HTTPException(status_code=422, detail="cantidad_maxima debe ser >= cantidad_minima")
    data = payload.model_dump()
    data["precio_personalizado"] = _dec(payload.precio_personalizado)
    pivot = ProductoAdicional(producto_id=p.id, **data)
    db.add(pivot)
    await db.commit()
    return {"id": pivot.id, "producto_id": p.id, "adicional_id": pivot.adicional_id}


@admin_router.delete("/productos/{producto_id}/adicionales/{adicional_id}", dependencies=[Depends(require_admin)])
async def detach_adicional(
    producto_id: int,
    adicional_id: int,
    db: AsyncSession = Depends(get_session),
):
    res = await db.execute(
        delete(ProductoAdicional).where(
            ProductoAdicional.producto_id == producto_id, ProductoAdicional.adicional_id == adicional_id
        )
    )
    if not res.rowcount:
        raise HTTPException(status_code=404, detail="Adicional no asociado al producto")
    await db.commit()
    return {"status": "ok"}


@admin_router.post("/productos/{producto_id}/grupos-adicionales", status_code=201, dependencies=[Depends(require_admin)])
async def attach_grupo(
    producto_id: int,
    payload: ProductoGrupoIn,
    db: AsyncSession = Depends(get_session),
):
    p = await _producto_o_404(db, producto_id)
    if not await db.get(GrupoAdicional, payload.grupo_adicional_id):
        raise HTTPException(status_code=404, detail="Grupo de adicionales no encontrado")
    pivot = ProductoGrupoAdicional(producto_id=p.id, **payload.model_dump())
    db.add(pivot)
    await db.commit()
    return {"id": pivot.id, "producto_id": p.id, "grupo_adicional_id": pivot.grupo_adicional_id}


@router.get("/productos/{producto_id}/adicionales")
async def get_adicionales_producto(producto_id: int, db: AsyncSession = Depends(get_session)):
    await _producto_o_404(db, producto_id)
    reglas = await catalogo.cargar_reglas_adicionales(db, producto_id)
    individuales = []
    for aid, pivot in reglas.pivots.items():
        a = reglas.adicionales[aid]
        item = adicional_resource(a, precio=catalogo.precio_adicional(pivot, a))
        item.update({
            "obligatorio": pivot.obligatorio,
            "multiple": pivot.multiple,
            "cantidad_minima": pivot.cantidad_minima,
            "cantidad_maxima": pivot.cantidad_maxima,
            "incluido_gratis": pivot.incluido_gratis,
        })
        individuales.append(item)
    grupos = []
    for pivot, grupo, ids in reglas.grupos:
        grupos.append({
            "id": grupo.id,
            "nombre": grupo.nombre,
            "obligatorio": bool(pivot.obligatorio or grupo.obligatorio),
            "multiple_seleccion": grupo.multiple_seleccion,
            "minimo_selecciones": max(pivot.minimo_selecciones or 0, grupo.minimo_selecciones or 0),
            "maximo_selecciones": (
                pivot.maximo_selecciones if pivot.maximo_selecciones is not None else grupo.maximo_selecciones
            ),
            "adicionales": [adicional_resource(reglas.adicionales[aid]) for aid in sorted(ids)],
        })
    return {"producto_id": producto_id, "adicionales": individuales, "grupos": grupos}


@router.post("/productos/{producto_id}/adicionales/validar")
async def validar_adicionales(
    producto_id: int,
    payload: ValidarAdicionalesIn,
    db: AsyncSession = Depends(get_session),
):
    await _producto_o_404(db, producto_id)
    reglas = await catalogo.cargar_reglas_adicionales(db, producto_id)
    seleccion = [s.model_dump() for s in payload.adicionales]
    errores = catalogo.validar_seleccion_adicionales(reglas, seleccion, payload.cantidad)
    total = CERO
    if not errores:
        for s in payload.adicionales:
            precio = catalogo.precio_adicional(reglas.pivots.get(s.adicional_id), reglas.adicionales[s.adicional_id])
            total += precio * s.cantidad * payload.cantidad
    return {"valido": not errores, "errores": errores, "total_adicionales": a_float(redondear(total))}
