# NG-HEADER: Nombre de archivo: models.py
# NG-HEADER: Ubicación: db/models.py
# NG-HEADER: Descripción: Modelos ORM de la tienda (catálogo, pedidos, pagos, crédito y zonas de reparto).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Modelos principales de la base de datos."""
from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Table,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tienda_core.dinero import CERO, a_decimal, porcentaje, redondear

from .base import Base

# --- Enumeraciones (se validan con CheckConstraint en la tabla) ---
ROLES_USUARIO = ("autor", "administrador", "cliente", "vendedor", "soporte", "repartidor")
ESTADOS_CLIENTE = ("activo", "inactivo", "bloqueado")
GENEROS = ("M", "F", "O")
ESTADOS_PEDIDO = ("pendiente", "confirmado", "preparando", "listo", "enviado", "entregado", "cancelado", "devuelto")
TIPOS_PAGO = ("contado", "credito", "transferencia", "tarjeta", "yape", "plin", "paypal")
TIPOS_ENTREGA = ("delivery", "recojo_tienda")
ESTADOS_PAGO = ("pendiente", "pagado", "atrasado", "fallido", "cancelado", "reembolsado")
ESTADOS_CUOTA = ("pendiente", "pagado", "atrasado", "condonado")
TIPOS_MOVIMIENTO = ("entrada", "salida", "ajuste", "reserva", "liberacion")
TIPOS_CUPON = ("porcentaje", "monto_fijo")
TIPOS_METODO_PAGO = ("tarjeta_credito", "tarjeta_debito", "billetera_digital", "transferencia", "efectivo", "otro")
TIPOS_ADICIONAL = ("salsa", "queso", "carne", "vegetal", "condimento", "otro")
TIPOS_EXCEPCION = ("no_disponible", "horario_especial", "costo_especial", "tiempo_especial")
DIAS_SEMANA = ("lunes", "martes", "miercoles", "jueves", "viernes", "sabado", "domingo")
ESTADOS_PROGRAMACION = ("programado", "en_ruta", "entregado", "fallido", "reprogramado")


def _en(col: str, valores: tuple[str, ...]) -> str:
    return f"{col} IN (" + ",".join(f"'{v}'" for v in valores) + ")"


# --- Usuarios y clientes ---


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email"),
        CheckConstraint(_en("rol", ROLES_USUARIO), name="ck_users_rol"),
        CheckConstraint(
            "credito_usado >= 0 AND credito_usado <= limite_credito",
            name="ck_users_credito",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(150))
    email: Mapped[str] = mapped_column(String(150))
    dni: Mapped[Optional[str]] = mapped_column(String(8))
    telefono: Mapped[Optional[str]] = mapped_column(String(20))
    rol: Mapped[str] = mapped_column(String(20), default="cliente")
    limite_credito: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    credito_usado: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    verificado: Mapped[bool] = mapped_column(Boolean, default=False)
    activo: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.now, onupdate=datetime.now)

    cliente: Mapped[Optional["Cliente"]] = relationship(back_populates="user", uselist=False)
    direcciones: Mapped[list["Direccion"]] = relationship(back_populates="user")

    @property
    def credito_disponible(self) -> Decimal:
        return redondear(a_decimal(self.limite_credito) - a_decimal(self.credito_usado))


class Cliente(Base):
    __tablename__ = "clientes"
    __table_args__ = (
        UniqueConstraint("user_id"),
        UniqueConstraint("dni"),
        CheckConstraint(_en("estado", ESTADOS_CLIENTE), name="ck_clientes_estado"),
        CheckConstraint("genero IS NULL OR " + _en("genero", GENEROS), name="ck_clientes_genero"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    dni: Mapped[str] = mapped_column(String(8))
    telefono: Mapped[Optional[str]] = mapped_column(String(20))
    nombre_completo: Mapped[str] = mapped_column(String(150))
    apellidos: Mapped[Optional[str]] = mapped_column(String(150))
    fecha_nacimiento: Mapped[Optional[date]] = mapped_column(Date)
    genero: Mapped[Optional[str]] = mapped_column(String(1))
    verificado: Mapped[bool] = mapped_column(Boolean, default=False)
    estado: Mapped[str] = mapped_column(String(10), default="activo")
    preferencias: Mapped[Optional[dict]] = mapped_column(JSON)
    # ``metadata`` está reservado por SQLAlchemy en el modelo declarativo
    metadatos: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.now, onupdate=datetime.now)

    user: Mapped["User"] = relationship(back_populates="cliente")

    def edad(self, hoy: Optional[date] = None) -> Optional[int]:
        if not self.fecha_nacimiento:
            return None
        hoy = hoy or date.today()
        n = self.fecha_nacimiento
        return hoy.year - n.year - ((hoy.month, hoy.day) < (n.month, n.day))

    @property
    def esta_activo(self) -> bool:
        return self.estado == "activo"


# --- Ubigeo ---


class Departamento(Base):
    __tablename__ = "departamentos"
    __table_args__ = (UniqueConstraint("codigo"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    nombre: Mapped[str] = mapped_column(String(100))
    codigo: Mapped[str] = mapped_column(String(10))
    activo: Mapped[bool] = mapped_column(Boolean, default=True)

    provincias: Mapped[list["Provincia"]] = relationship(back_populates="departamento")


class Provincia(Base):
    __tablename__ = "provincias"
    __table_args__ = (UniqueConstraint("codigo"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    departamento_id: Mapped[int] = mapped_column(ForeignKey("departamentos.id", ondelete="CASCADE"))
    nombre: Mapped[str] = mapped_column(String(100))
    codigo: Mapped[str] = mapped_column(String(10))
    activo: Mapped[bool] = mapped_column(Boolean, default=True)

    departamento: Mapped["Departamento"] = relationship(back_populates="provincias")
    distritos: Mapped[list["Distrito"]] = relationship(back_populates="provincia")


class Distrito(Base):
    __tablename__ = "distritos"
    __table_args__ = (UniqueConstraint("codigo"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    provincia_id: Mapped[int] = mapped_column(ForeignKey("provincias.id", ondelete="CASCADE"))
    nombre: Mapped[str] = mapped_column(String(100))
    codigo: Mapped[str] = mapped_column(String(10))
    codigo_inei: Mapped[Optional[str]] = mapped_column(String(10))
    codigo_postal: Mapped[Optional[str]] = mapped_column(String(10))
    latitud: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 8))
    longitud: Mapped[Optional[Decimal]] = mapped_column(Numeric(11, 8))
    activo: Mapped[bool] = mapped_column(Boolean, default=True)
    disponible_delivery: Mapped[bool] = mapped_column(Boolean, default=True)
    limites_geograficos: Mapped[Optional[list]] = mapped_column(JSON)

    provincia: Mapped["Provincia"] = relationship(back_populates="distritos")


# --- Catálogo ---


class Categoria(Base):
    __tablename__ = "categorias"
    __table_args__ = (UniqueConstraint("slug"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    nombre: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(120))
    descripcion: Mapped[Optional[str]] = mapped_column(Text)
    imagen: Mapped[Optional[str]] = mapped_column(String(255))
    categoria_padre_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categorias.id", ondelete="SET NULL"))
    activo: Mapped[bool] = mapped_column(Boolean, default=True)
    orden: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)


class Producto(Base):
    __tablename__ = "productos"
    __table_args__ = (
        UniqueConstraint("slug"),
        UniqueConstraint("sku"),
        CheckConstraint("stock >= 0", name="ck_productos_stock"),
        CheckConstraint("precio >= 0", name="ck_productos_precio"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    categoria_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categorias.id", ondelete="SET NULL"))
    nombre: Mapped[str] = mapped_column(String(200))
    slug: Mapped[str] = mapped_column(String(220))
    descripcion: Mapped[Optional[str]] = mapped_column(Text)
    precio: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    precio_oferta: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    stock: Mapped[int] = mapped_column(Integer, default=0)
    stock_minimo: Mapped[int] = mapped_column(Integer, default=0)
    sku: Mapped[str] = mapped_column(String(100))
    codigo_barras: Mapped[Optional[str]] = mapped_column(String(50))
    imagen_principal: Mapped[Optional[str]] = mapped_column(String(255))
    destacado: Mapped[bool] = mapped_column(Boolean, default=False)
    activo: Mapped[bool] = mapped_column(Boolean, default=True)
    marca: Mapped[Optional[str]] = mapped_column(String(100))
    modelo: Mapped[Optional[str]] = mapped_column(String(100))
    garantia: Mapped[Optional[str]] = mapped_column(String(100))
    # Peso en kg, usado para cotizar envíos nacionales
    peso: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 3))
    moneda: Mapped[str] = mapped_column(String(3), default="PEN")
    meta_title: Mapped[Optional[str]] = mapped_column(String(200))
    meta_description: Mapped[Optional[str]] = mapped_column(String(300))
    atributos_extra: Mapped[Optional[dict]] = mapped_column(JSON)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.now, onupdate=datetime.now)

    variaciones: Mapped[list["VariacionProducto"]] = relationship(back_populates="producto")
    imagenes: Mapped[list["ImagenProducto"]] = relationship(back_populates="producto")

    @property
    def en_oferta(self) -> bool:
        return self.precio_oferta is not None and a_decimal(self.precio_oferta) < a_decimal(self.precio)

    @property
    def precio_final(self) -> Decimal:
        return redondear(self.precio_oferta if self.en_oferta else self.precio)

    @property
    def descuento_porcentaje(self) -> Decimal:
        if not self.en_oferta or not a_decimal(self.precio):
            return CERO
        p = a_decimal(self.precio)
        return redondear((p - a_decimal(self.precio_oferta)) / p * 100)

    def es_stock_suficiente(self, cantidad: int) -> bool:
        return int(self.stock or 0) >= int(cantidad)

    @property
    def stock_bajo(self) -> bool:
        return int(self.stock or 0) <= int(self.stock_minimo or 0)


class ImagenProducto(Base):
    __tablename__ = "imagenes_productos"

    id: Mapped[int] = mapped_column(primary_key=True)
    producto_id: Mapped[int] = mapped_column(ForeignKey("productos.id", ondelete="CASCADE"))
    url: Mapped[str] = mapped_column(String(255))
    alt: Mapped[Optional[str]] = mapped_column(String(200))
    orden: Mapped[int] = mapped_column(Integer, default=0)
    principal: Mapped[bool] = mapped_column(Boolean, default=False)

    producto: Mapped["Producto"] = relationship(back_populates="imagenes")


class Atributo(Base):
    __tablename__ = "atributos"
    __table_args__ = (UniqueConstraint("slug"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    nombre: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(120))
    tipo: Mapped[str] = mapped_column(String(20), default="texto")
    filtrable: Mapped[bool] = mapped_column(Boolean, default=True)
    activo: Mapped[bool] = mapped_column(Boolean, default=True)

    valores: Mapped[list["ValorAtributo"]] = relationship(back_populates="atributo")


class ValorAtributo(Base):
    __tablename__ = "valores_atributo"

    id: Mapped[int] = mapped_column(primary_key=True)
    atributo_id: Mapped[int] = mapped_column(ForeignKey("atributos.id", ondelete="CASCADE"))
    valor: Mapped[str] = mapped_column(String(100))
    codigo: Mapped[Optional[str]] = mapped_column(String(20))
    orden: Mapped[int] = mapped_column(Integer, default=0)

    atributo: Mapped["Atributo"] = relationship(back_populates="valores")


variacion_valor = Table(
    "variacion_valor",
    Base.metadata,
    Column("variacion_id", ForeignKey("variaciones_productos.id", ondelete="CASCADE"), primary_key=True),
    Column("valor_atributo_id", ForeignKey("valores_atributo.id", ondelete="CASCADE"), primary_key=True),
)


class VariacionProducto(Base):
    __tablename__ = "variaciones_productos"
    __table_args__ = (
        UniqueConstraint("sku"),
        CheckConstraint("stock >= 0", name="ck_variaciones_productos_stock"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    producto_id: Mapped[int] = mapped_column(ForeignKey("productos.id", ondelete="CASCADE"))
    sku: Mapped[str] = mapped_column(String(100))
    precio: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    precio_oferta: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    stock: Mapped[int] = mapped_column(Integer, default=0)
    activo: Mapped[bool] = mapped_column(Boolean, default=True)
    imagen: Mapped[Optional[str]] = mapped_column(String(255))
    atributos: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)

    producto: Mapped["Producto"] = relationship(back_populates="variaciones")
    valores: Mapped[list["ValorAtributo"]] = relationship(secondary=variacion_valor)

    @property
    def en_oferta(self) -> bool:
        return self.precio_oferta is not None and a_decimal(self.precio_oferta) < a_decimal(self.precio)

    @property
    def precio_final(self) -> Decimal:
        return redondear(self.precio_oferta if self.en_oferta else self.precio)

    def es_stock_suficiente(self, cantidad: int) -> bool:
        return int(self.stock or 0) >= int(cantidad)


# --- Adicionales (modificadores de producto) ---


adicional_grupo = Table(
    "adicional_grupo",
    Base.metadata,
    Column("adicional_id", ForeignKey("adicionales.id", ondelete="CASCADE"), primary_key=True),
    Column("grupo_adicional_id", ForeignKey("grupos_adicionales.id", ondelete="CASCADE"), primary_key=True),
    Column("orden", Integer, default=0),
)


class Adicional(Base):
    __tablename__ = "adicionales"
    __table_args__ = (
        UniqueConstraint("slug"),
        CheckConstraint(_en("tipo", TIPOS_ADICIONAL), name="ck_adicionales_tipo"),
        CheckConstraint("stock IS NULL OR stock >= 0", name="ck_adicionales_stock"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    nombre: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(120))
    descripcion: Mapped[Optional[str]] = mapped_column(Text)
    precio: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=0)
    imagen: Mapped[Optional[str]] = mapped_column(String(255))
    tipo: Mapped[str] = mapped_column(String(20), default="otro")
    disponible: Mapped[bool] = mapped_column(Boolean, default=True)
    activo: Mapped[bool] = mapped_column(Boolean, default=True)
    # NULL = stock ilimitado
    stock: Mapped[Optional[int]] = mapped_column(Integer)
    tiempo_preparacion: Mapped[Optional[int]] = mapped_column(Integer)
    calorias: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    alergenos: Mapped[Optional[list]] = mapped_column(JSON)
    vegetariano: Mapped[bool] = mapped_column(Boolean, default=False)
    vegano: Mapped[bool] = mapped_column(Boolean, default=False)
    orden: Mapped[int] = mapped_column(Integer, default=0)

    grupos: Mapped[list["GrupoAdicional"]] = relationship(secondary=adicional_grupo, back_populates="adicionales")

    def tiene_stock(self, cantidad: int = 1) -> bool:
        return self.stock is None or self.stock >= cantidad

    def esta_disponible(self, cantidad: int = 1) -> bool:
        return bool(self.activo and self.disponible and self.tiene_stock(cantidad))

    def es_alergeno_libre(self, alergeno: str) -> bool:
        return alergeno not in (self.alergenos or [])


class GrupoAdicional(Base):
    __tablename__ = "grupos_adicionales"
    __table_args__ = (UniqueConstraint("slug"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    nombre: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(120))
    descripcion: Mapped[Optional[str]] = mapped_column(Text)
    obligatorio: Mapped[bool] = mapped_column(Boolean, default=False)
    multiple_seleccion: Mapped[bool] = mapped_column(Boolean, default=True)
    minimo_selecciones: Mapped[int] = mapped_column(Integer, default=0)
    maximo_selecciones: Mapped[Optional[int]] = mapped_column(Integer)
    orden: Mapped[int] = mapped_column(Integer, default=0)
    activo: Mapped[bool] = mapped_column(Boolean, default=True)

    adicionales: Mapped[list["Adicional"]] = relationship(secondary=adicional_grupo, back_populates="grupos")


class ProductoAdicional(Base):
    """Reglas de un adicional dentro de un producto (pivot con datos)."""

    __tablename__ = "producto_adicional"
    __table_args__ = (UniqueConstraint("producto_id", "adicional_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    producto_id: Mapped[int] = mapped_column(ForeignKey("productos.id", ondelete="CASCADE"))
    adicional_id: Mapped[int] = mapped_column(ForeignKey("adicionales.id", ondelete="CASCADE"))
    obligatorio: Mapped[bool] = mapped_column(Boolean, default=False)
    multiple: Mapped[bool] = mapped_column(Boolean, default=False)
    cantidad_minima: Mapped[int] = mapped_column(Integer, default=0)
    cantidad_maxima: Mapped[Optional[int]] = mapped_column(Integer)
    precio_personalizado: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    incluido_gratis: Mapped[bool] = mapped_column(Boolean, default=False)
    orden: Mapped[int] = mapped_column(Integer, default=0)
    activo: Mapped[bool] = mapped_column(Boolean, default=True)

    adicional: Mapped["Adicional"] = relationship()


class ProductoGrupoAdicional(Base):
    __tablename__ = "producto_grupo_adicional"
    __table_args__ = (UniqueConstraint("producto_id", "grupo_adicional_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    producto_id: Mapped[int] = mapped_column(ForeignKey("productos.id", ondelete="CASCADE"))
    grupo_adicional_id: Mapped[int] = mapped_column(ForeignKey("grupos_adicionales.id", ondelete="CASCADE"))
    obligatorio: Mapped[bool] = mapped_column(Boolean, default=False)
    minimo_selecciones: Mapped[int] = mapped_column(Integer, default=0)
    maximo_selecciones: Mapped[Optional[int]] = mapped_column(Integer)
    orden: Mapped[int] = mapped_column(Integer, default=0)
    activo: Mapped[bool] = mapped_column(Boolean, default=True)

    grupo: Mapped["GrupoAdicional"] = relationship()


# --- Pagos y cupones ---


class MetodoPago(Base):
    __tablename__ = "metodos_pago"
    __table_args__ = (
        UniqueConstraint("slug"),
        CheckConstraint(_en("tipo", TIPOS_METODO_PAGO), name="ck_metodos_pago_tipo"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    nombre: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(120))
    tipo: Mapped[str] = mapped_column(String(30), default="otro")
    descripcion: Mapped[Optional[str]] = mapped_column(Text)
    logo: Mapped[Optional[str]] = mapped_column(String(255))
    activo: Mapped[bool] = mapped_column(Boolean, default=True)
    requiere_verificacion: Mapped[bool] = mapped_column(Boolean, default=False)
    comision_porcentaje: Mapped[Decimal] = mapped_column(Numeric(5, 3), default=0)
    comision_fija: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=0)
    monto_minimo: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    monto_maximo: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    orden: Mapped[int] = mapped_column(Integer, default=0)
    configuracion: Mapped[Optional[dict]] = mapped_column(JSON)
    # NULL = disponible en todos los países
    paises_disponibles: Mapped[Optional[list]] = mapped_column(JSON)
    proveedor: Mapped[Optional[str]] = mapped_column(String(100))
    moneda_soportada: Mapped[str] = mapped_column(String(3), default="PEN")
    permite_cuotas: Mapped[bool] = mapped_column(Boolean, default=False)
    cuotas_maximas: Mapped[Optional[int]] = mapped_column(Integer)
    instrucciones: Mapped[Optional[str]] = mapped_column(Text)

    def calcular_comision(self, monto) -> Decimal:
        return redondear(porcentaje(monto, self.comision_porcentaje) + a_decimal(self.comision_fija))

    def esta_disponible_para_monto(self, monto) -> bool:
        m = a_decimal(monto)
        if self.monto_minimo is not None and m < a_decimal(self.monto_minimo):
            return False
        if self.monto_maximo is not None and m > a_decimal(self.monto_maximo):
            return False
        return True

    def esta_disponible_en_pais(self, pais: str) -> bool:
        if not self.paises_disponibles:
            return True
        return pais.upper() in [p.upper() for p in self.paises_disponibles]


class Cupon(Base):
    __tablename__ = "cupones"
    __table_args__ = (
        UniqueConstraint("codigo"),
        CheckConstraint(_en("tipo", TIPOS_CUPON), name="ck_cupones_tipo"),
        CheckConstraint("usos >= 0", name="ck_cupones_usos"),
        CheckConstraint("limite_uso IS NULL OR usos <= limite_uso", name="ck_cupones_limite"),
        CheckConstraint("fecha_inicio <= fecha_fin", name="ck_cupones_fechas"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    codigo: Mapped[str] = mapped_column(String(50))
    descuento: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    tipo: Mapped[str] = mapped_column(String(20), default="porcentaje")
    fecha_inicio: Mapped[date] = mapped_column(Date)
    fecha_fin: Mapped[date] = mapped_column(Date)
    limite_uso: Mapped[Optional[int]] = mapped_column(Integer)
    usos: Mapped[int] = mapped_column(Integer, default=0)
    monto_minimo: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    monto_maximo_descuento: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    activo: Mapped[bool] = mapped_column(Boolean, default=True)
    descripcion: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)

    def es_vigente(self, hoy: Optional[date] = None) -> bool:
        hoy = hoy or date.today()
        return bool(self.activo) and self.fecha_inicio <= hoy <= self.fecha_fin

    @property
    def tiene_usos_disponibles(self) -> bool:
        return self.limite_uso is None or int(self.usos or 0) < int(self.limite_uso)

    def puede_usarse(self, hoy: Optional[date] = None) -> bool:
        return self.es_vigente(hoy) and self.tiene_usos_disponibles


class CuponUsuario(Base):
    __tablename__ = "cupon_usuario"
    __table_args__ = (UniqueConstraint("cupon_id", "user_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    cupon_id: Mapped[int] = mapped_column(ForeignKey("cupones.id", ondelete="CASCADE"))
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    usado: Mapped[bool] = mapped_column(Boolean, default=False)
    fecha_uso: Mapped[Optional[datetime]] = mapped_column(DateTime)


# --- Direcciones y zonas de reparto ---


class Direccion(Base):
    __tablename__ = "direcciones"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    distrito_id: Mapped[int] = mapped_column(ForeignKey("distritos.id"))
    direccion: Mapped[str] = mapped_column(String(255))
    referencia: Mapped[Optional[str]] = mapped_column(String(255))
    codigo_postal: Mapped[Optional[str]] = mapped_column(String(10))
    numero_exterior: Mapped[Optional[str]] = mapped_column(String(20))
    numero_interior: Mapped[Optional[str]] = mapped_column(String(20))
    urbanizacion: Mapped[Optional[str]] = mapped_column(String(100))
    etapa: Mapped[Optional[str]] = mapped_column(String(50))
    manzana: Mapped[Optional[str]] = mapped_column(String(10))
    lote: Mapped[Optional[str]] = mapped_column(String(10))
    latitud: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 8))
    longitud: Mapped[Optional[Decimal]] = mapped_column(Numeric(11, 8))
    predeterminada: Mapped[bool] = mapped_column(Boolean, default=False)
    validada: Mapped[bool] = mapped_column(Boolean, default=False)
    alias: Mapped[Optional[str]] = mapped_column(String(50))
    instrucciones_entrega: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.now, onupdate=datetime.now)

    user: Mapped["User"] = relationship(back_populates="direcciones")
    distrito: Mapped["Distrito"] = relationship()

    @property
    def tiene_coordenadas(self) -> bool:
        return self.latitud is not None and self.longitud is not None

    def direccion_completa(
        self,
        distrito: Optional[str] = None,
        provincia: Optional[str] = None,
        departamento: Optional[str] = None,
    ) -> str:
        """Dirección en una línea: ``Av. Sol 123 Int. 4, Urb. X, Etapa 2, Mz. A, Lote 5, Miraflores, Lima, Lima``."""
        cabecera = self.direccion
        if self.numero_exterior:
            cabecera += f" {self.numero_exterior}"
        if self.numero_interior:
            cabecera += f" Int. {self.numero_interior}"
        partes = [cabecera]
        if self.urbanizacion:
            partes.append(f"Urb. {self.urbanizacion}")
        if self.etapa:
            partes.append(f"Etapa {self.etapa}")
        if self.manzana:
            partes.append(f"Mz. {self.manzana}")
        if self.lote:
            partes.append(f"Lote {self.lote}")
        partes.extend(p for p in (distrito, provincia, departamento) if p)
        return ", ".join(partes)


class ZonaReparto(Base):
    __tablename__ = "zonas_reparto"
    __table_args__ = (
        UniqueConstraint("slug"),
        CheckConstraint("tiempo_entrega_min <= tiempo_entrega_max", name="ck_zonas_reparto_tiempos"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    nombre: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(120))
    descripcion: Mapped[Optional[str]] = mapped_column(Text)
    costo_envio: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=0)
    costo_envio_adicional: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=0)
    # Minutos
    tiempo_entrega_min: Mapped[int] = mapped_column(Integer, default=30)
    tiempo_entrega_max: Mapped[int] = mapped_column(Integer, default=60)
    pedido_minimo: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    envio_gratis_desde: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    radio_cobertura_km: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    # "lat,lng"
    coordenadas_centro: Mapped[Optional[str]] = mapped_column(String(50))
    poligono_cobertura: Mapped[Optional[list]] = mapped_column(JSON)
    activo: Mapped[bool] = mapped_column(Boolean, default=True)
    disponible_24h: Mapped[bool] = mapped_column(Boolean, default=False)
    orden: Mapped[int] = mapped_column(Integer, default=0)
    color_mapa: Mapped[Optional[str]] = mapped_column(String(7))
    observaciones: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.now, onupdate=datetime.now)

    distritos: Mapped[list["ZonaDistrito"]] = relationship(back_populates="zona")
    costos: Mapped[list["CostoEnvioDinamico"]] = relationship(back_populates="zona")
    horarios: Mapped[list["HorarioZona"]] = relationship(back_populates="zona")
    excepciones: Mapped[list["ExcepcionZona"]] = relationship(back_populates="zona")


class ZonaDistrito(Base):
    """Asignación de un distrito a una zona con costo/tiempo propios."""

    __tablename__ = "zona_distrito"
    __table_args__ = (
        UniqueConstraint("zona_reparto_id", "distrito_id"),
        CheckConstraint("prioridad IN (1,2,3)", name="ck_zona_distrito_prioridad"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    zona_reparto_id: Mapped[int] = mapped_column(ForeignKey("zonas_reparto.id", ondelete="CASCADE"))
    distrito_id: Mapped[int] = mapped_column(ForeignKey("distritos.id", ondelete="CASCADE"))
    costo_envio_personalizado: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    tiempo_adicional: Mapped[int] = mapped_column(Integer, default=0)
    activo: Mapped[bool] = mapped_column(Boolean, default=True)
    # 1 = alta, 2 = media, 3 = baja
    prioridad: Mapped[int] = mapped_column(SmallInteger, default=1)

    zona: Mapped["ZonaReparto"] = relationship(back_populates="distritos")
    distrito: Mapped["Distrito"] = relationship()


class CostoEnvioDinamico(Base):
    """Tramo de costo por distancia; el intervalo es ``[desde, hasta)``."""

    __tablename__ = "costos_envio_dinamicos"
    __table_args__ = (
        CheckConstraint("distancia_desde_km >= 0", name="ck_costos_envio_desde"),
        CheckConstraint("distancia_hasta_km > distancia_desde_km", name="ck_costos_envio_tramo"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    zona_reparto_id: Mapped[int] = mapped_column(ForeignKey("zonas_reparto.id", ondelete="CASCADE"))
    distancia_desde_km: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=0)
    distancia_hasta_km: Mapped[Decimal] = mapped_column(Numeric(8, 2))
    costo_envio: Mapped[Decimal] = mapped_column(Numeric(8, 2))
    tiempo_adicional: Mapped[int] = mapped_column(Integer, default=0)
    activo: Mapped[bool] = mapped_column(Boolean, default=True)

    zona: Mapped["ZonaReparto"] = relationship(back_populates="costos")

    def incluye_distancia(self, km) -> bool:
        d = a_decimal(km)
        return a_decimal(self.distancia_desde_km) <= d < a_decimal(self.distancia_hasta_km)


class HorarioZona(Base):
    __tablename__ = "horarios_zona"
    __table_args__ = (
        CheckConstraint(_en("dia_semana", DIAS_SEMANA), name="ck_horarios_zona_dia"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    zona_reparto_id: Mapped[int] = mapped_column(ForeignKey("zonas_reparto.id", ondelete="CASCADE"))
    dia_semana: Mapped[str] = mapped_column(String(10))
    hora_inicio: Mapped[Optional[time]] = mapped_column(Time)
    hora_fin: Mapped[Optional[time]] = mapped_column(Time)
    activo: Mapped[bool] = mapped_column(Boolean, default=True)
    dia_completo: Mapped[bool] = mapped_column(Boolean, default=False)
    observaciones: Mapped[Optional[str]] = mapped_column(Text)

    zona: Mapped["ZonaReparto"] = relationship(back_populates="horarios")

    def esta_abierto(self, momento: datetime) -> bool:
        if not self.activo or self.dia_semana != DIAS_SEMANA[momento.weekday()]:
            return False
        if self.dia_completo:
            return True
        if self.hora_inicio is None or self.hora_fin is None:
            return False
        t = momento.time()
        if self.hora_inicio <= self.hora_fin:
            return self.hora_inicio <= t <= self.hora_fin
        # Turno que cruza la medianoche (p. ej. 18:00 - 02:00)
        return t >= self.hora_inicio or t <= self.hora_fin


class ExcepcionZona(Base):
    __tablename__ = "excepciones_zona"
    __table_args__ = (
        CheckConstraint(_en("tipo", TIPOS_EXCEPCION), name="ck_excepciones_zona_tipo"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    zona_reparto_id: Mapped[int] = mapped_column(ForeignKey("zonas_reparto.id", ondelete="CASCADE"))
    fecha_excepcion: Mapped[date] = mapped_column(Date)
    tipo: Mapped[str] = mapped_column(String(20))
    hora_inicio: Mapped[Optional[time]] = mapped_column(Time)
    hora_fin: Mapped[Optional[time]] = mapped_column(Time)
    costo_especial: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    tiempo_especial_min: Mapped[Optional[int]] = mapped_column(Integer)
    tiempo_especial_max: Mapped[Optional[int]] = mapped_column(Integer)
    motivo: Mapped[Optional[str]] = mapped_column(Text)
    activo: Mapped[bool] = mapped_column(Boolean, default=True)

    zona: Mapped["ZonaReparto"] = relationship(back_populates="excepciones")

    @property
    def tiene_horario(self) -> bool:
        return self.hora_inicio is not None and self.hora_fin is not None

    def aplica_en_hora(self, momento: datetime) -> bool:
        if not self.activo or self.fecha_excepcion != momento.date():
            return False
        if self.tipo == "no_disponible":
            return True
        if self.tiene_horario:
            return self.hora_inicio <= momento.time() <= self.hora_fin
        return True


class DireccionValidada(Base):
    __tablename__ = "direcciones_validadas"
    __table_args__ = (UniqueConstraint("direccion_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    direccion_id: Mapped[int] = mapped_column(ForeignKey("direcciones.id", ondelete="CASCADE"))
    zona_reparto_id: Mapped[Optional[int]] = mapped_column(ForeignKey("zonas_reparto.id", ondelete="SET NULL"))
    latitud: Mapped[Decimal] = mapped_column(Numeric(10, 8))
    longitud: Mapped[Decimal] = mapped_column(Numeric(11, 8))
    distancia_tienda_km: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    en_zona_cobertura: Mapped[bool] = mapped_column(Boolean, default=False)
    costo_envio_calculado: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    # Minutos
    tiempo_entrega_estimado: Mapped[Optional[int]] = mapped_column(Integer)
    fecha_ultima_validacion: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    observaciones_validacion: Mapped[Optional[str]] = mapped_column(Text)

    direccion: Mapped["Direccion"] = relationship()
    zona: Mapped[Optional["ZonaReparto"]] = relationship()

    def es_valida_para_entrega(self) -> bool:
        return bool(self.en_zona_cobertura) and self.zona_reparto_id is not None and self.costo_envio_calculado is not None


# --- Pedidos ---


class Pedido(Base):
    __tablename__ = "pedidos"
    __table_args__ = (
        UniqueConstraint("numero_pedido"),
        UniqueConstraint("codigo_rastreo"),
        CheckConstraint(_en("estado", ESTADOS_PEDIDO), name="ck_pedidos_estado"),
        CheckConstraint(_en("tipo_pago", TIPOS_PAGO), name="ck_pedidos_tipo_pago"),
        CheckConstraint(_en("tipo_entrega", TIPOS_ENTREGA), name="ck_pedidos_tipo_entrega"),
        CheckConstraint("total >= 0", name="ck_pedidos_total"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    numero_pedido: Mapped[str] = mapped_column(String(30))
    metodo_pago_id: Mapped[Optional[int]] = mapped_column(ForeignKey("metodos_pago.id", ondelete="SET NULL"))
    zona_reparto_id: Mapped[Optional[int]] = mapped_column(ForeignKey("zonas_reparto.id", ondelete="SET NULL"))
    direccion_validada_id: Mapped[Optional[int]] = mapped_column(ForeignKey("direcciones_validadas.id", ondelete="SET NULL"))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    descuento: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    igv: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    costo_envio: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=0)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    estado: Mapped[str] = mapped_column(String(20), default="pendiente")
    tipo_pago: Mapped[str] = mapped_column(String(20), default="contado")
    tipo_entrega: Mapped[str] = mapped_column(String(20), default="delivery")
    cuotas: Mapped[Optional[int]] = mapped_column(Integer)
    monto_cuota: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    interes_total: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    observaciones: Mapped[Optional[str]] = mapped_column(Text)
    codigo_rastreo: Mapped[Optional[str]] = mapped_column(String(30))
    moneda: Mapped[str] = mapped_column(String(3), default="PEN")
    canal_venta: Mapped[str] = mapped_column(String(30), default="web")
    # Minutos
    tiempo_entrega_estimado: Mapped[Optional[int]] = mapped_column(Integer)
    fecha_entrega_programada: Mapped[Optional[datetime]] = mapped_column(DateTime)
    fecha_entrega_real: Mapped[Optional[datetime]] = mapped_column(DateTime)
    direccion_entrega: Mapped[Optional[str]] = mapped_column(Text)
    telefono_entrega: Mapped[Optional[str]] = mapped_column(String(20))
    referencia_entrega: Mapped[Optional[str]] = mapped_column(Text)
    latitud_entrega: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 8))
    longitud_entrega: Mapped[Optional[Decimal]] = mapped_column(Numeric(11, 8))
    repartidor_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    datos_cliente: Mapped[Optional[dict]] = mapped_column(JSON)
    cupon_codigo: Mapped[Optional[str]] = mapped_column(String(50))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.now, onupdate=datetime.now)

    detalles: Mapped[list["DetallePedido"]] = relationship(back_populates="pedido")
    pagos: Mapped[list["Pago"]] = relationship(back_populates="pedido")
    cuotas_credito: Mapped[list["CuotaCredito"]] = relationship(back_populates="pedido")
    seguimientos: Mapped[list["SeguimientoPedido"]] = relationship(back_populates="pedido")

    @property
    def puede_ser_cancelado(self) -> bool:
        return self.estado in ("pendiente", "confirmado")

    @property
    def es_credito(self) -> bool:
        return self.tipo_pago == "credito"

    def total_esperado(self) -> Decimal:
        """``subtotal + igv + costo_envio - descuento``."""
        return redondear(
            a_decimal(self.subtotal)
            + a_decimal(self.igv)
            + a_decimal(self.costo_envio)
            - a_decimal(self.descuento)
        )


class DetallePedido(Base):
    __tablename__ = "detalle_pedidos"
    __table_args__ = (CheckConstraint("cantidad > 0", name="ck_detalle_pedidos_cantidad"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    pedido_id: Mapped[int] = mapped_column(ForeignKey("pedidos.id", ondelete="CASCADE"))
    producto_id: Mapped[int] = mapped_column(ForeignKey("productos.id"))
    variacion_id: Mapped[Optional[int]] = mapped_column(ForeignKey("variaciones_productos.id", ondelete="SET NULL"))
    cantidad: Mapped[int] = mapped_column(Integer)
    precio_unitario: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    descuento: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    impuesto: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    moneda: Mapped[str] = mapped_column(String(3), default="PEN")

    pedido: Mapped["Pedido"] = relationship(back_populates="detalles")
    adicionales: Mapped[list["DetalleAdicional"]] = relationship(back_populates="detalle")

    @property
    def total(self) -> Decimal:
        return redondear(a_decimal(self.subtotal) + a_decimal(self.impuesto) - a_decimal(self.descuento))

    def total_con_adicionales(self, adicionales: list["DetalleAdicional"]) -> Decimal:
        return redondear(self.total + sum((a_decimal(a.subtotal) for a in adicionales), CERO))


class DetalleAdicional(Base):
    __tablename__ = "detalle_adicionales"

    id: Mapped[int] = mapped_column(primary_key=True)
    detalle_pedido_id: Mapped[int] = mapped_column(ForeignKey("detalle_pedidos.id", ondelete="CASCADE"))
    adicional_id: Mapped[int] = mapped_column(ForeignKey("adicionales.id"))
    cantidad: Mapped[int] = mapped_column(Integer, default=1)
    precio_unitario: Mapped[Decimal] = mapped_column(Numeric(8, 2))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    observaciones: Mapped[Optional[str]] = mapped_column(Text)

    detalle: Mapped["DetallePedido"] = relationship(back_populates="adicionales")


class CuotaCredito(Base):
    __tablename__ = "cuotas_credito"
    __table_args__ = (
        UniqueConstraint("pedido_id", "numero_cuota"),
        CheckConstraint(_en("estado", ESTADOS_CUOTA), name="ck_cuotas_credito_estado"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    pedido_id: Mapped[int] = mapped_column(ForeignKey("pedidos.id", ondelete="CASCADE"))
    numero_cuota: Mapped[int] = mapped_column(Integer)
    monto_cuota: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    interes: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    mora: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    fecha_vencimiento: Mapped[date] = mapped_column(Date)
    fecha_pago: Mapped[Optional[date]] = mapped_column(Date)
    estado: Mapped[str] = mapped_column(String(20), default="pendiente")
    moneda: Mapped[str] = mapped_column(String(3), default="PEN")

    pedido: Mapped["Pedido"] = relationship(back_populates="cuotas_credito")

    @property
    def monto_total(self) -> Decimal:
        return redondear(a_decimal(self.monto_cuota) + a_decimal(self.interes) + a_decimal(self.mora))

    @property
    def esta_pendiente(self) -> bool:
        return self.estado in ("pendiente", "atrasado")

    def esta_vencida(self, hoy: Optional[date] = None) -> bool:
        hoy = hoy or date.today()
        return self.esta_pendiente and self.fecha_vencimiento < hoy


class Pago(Base):
    __tablename__ = "pagos"
    __table_args__ = (
        CheckConstraint(_en("estado", ESTADOS_PAGO), name="ck_pagos_estado"),
        CheckConstraint("monto >= 0", name="ck_pagos_monto"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    pedido_id: Mapped[int] = mapped_column(ForeignKey("pedidos.id", ondelete="CASCADE"))
    metodo_pago_id: Mapped[Optional[int]] = mapped_column(ForeignKey("metodos_pago.id", ondelete="SET NULL"))
    cuota_credito_id: Mapped[Optional[int]] = mapped_column(ForeignKey("cuotas_credito.id", ondelete="SET NULL"))
    monto: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    comision: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    numero_cuota: Mapped[Optional[int]] = mapped_column(Integer)
    fecha_pago: Mapped[Optional[datetime]] = mapped_column(DateTime)
    estado: Mapped[str] = mapped_column(String(20), default="pendiente")
    metodo: Mapped[Optional[str]] = mapped_column(String(50))
    referencia: Mapped[Optional[str]] = mapped_column(String(100))
    moneda: Mapped[str] = mapped_column(String(3), default="PEN")
    respuesta_proveedor: Mapped[Optional[dict]] = mapped_column(JSON)
    codigo_autorizacion: Mapped[Optional[str]] = mapped_column(String(100))
    observaciones: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)

    pedido: Mapped["Pedido"] = relationship(back_populates="pagos")

    @property
    def monto_con_comision(self) -> Decimal:
        return redondear(a_decimal(self.monto) + a_decimal(self.comision))


class SeguimientoPedido(Base):
    __tablename__ = "seguimiento_pedidos"
    __table_args__ = (
        CheckConstraint(_en("estado_actual", ESTADOS_PEDIDO), name="ck_seguimiento_pedidos_estado"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    pedido_id: Mapped[int] = mapped_column(ForeignKey("pedidos.id", ondelete="CASCADE"))
    estado_anterior: Mapped[Optional[str]] = mapped_column(String(20))
    estado_actual: Mapped[str] = mapped_column(String(20))
    observaciones: Mapped[Optional[str]] = mapped_column(Text)
    usuario_cambio_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    fecha_cambio: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    notificado_cliente: Mapped[bool] = mapped_column(Boolean, default=False)

    pedido: Mapped["Pedido"] = relationship(back_populates="seguimientos")


class ProgramacionEntrega(Base):
    """Entrega asignada a un repartidor dentro de una ventana horaria."""

    __tablename__ = "programacion_entregas"
    __table_args__ = (
        CheckConstraint(_en("estado", ESTADOS_PROGRAMACION), name="ck_programacion_entregas_estado"),
        CheckConstraint("hora_fin_ventana > hora_inicio_ventana", name="ck_programacion_entregas_ventana"),
        Index("ix_programacion_entregas_repartidor_fecha", "repartidor_id", "fecha_programada"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    pedido_id: Mapped[int] = mapped_column(ForeignKey("pedidos.id", ondelete="CASCADE"))
    repartidor_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    fecha_programada: Mapped[date] = mapped_column(Date)
    hora_inicio_ventana: Mapped[time] = mapped_column(Time)
    hora_fin_ventana: Mapped[time] = mapped_column(Time)
    estado: Mapped[str] = mapped_column(String(20), default="programado")
    orden_ruta: Mapped[Optional[int]] = mapped_column(Integer)
    notas_repartidor: Mapped[Optional[str]] = mapped_column(Text)
    hora_salida: Mapped[Optional[datetime]] = mapped_column(DateTime)
    hora_llegada: Mapped[Optional[datetime]] = mapped_column(DateTime)
    motivo_fallo: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.now, onupdate=datetime.now)

    def esta_en_ventana(self, momento: datetime) -> bool:
        if momento.date() != self.fecha_programada:
            return False
        return self.hora_inicio_ventana <= momento.time() <= self.hora_fin_ventana

    def tiempo_entrega_minutos(self) -> Optional[int]:
        if self.hora_salida is None or self.hora_llegada is None:
            return None
        return int((self.hora_llegada - self.hora_salida).total_seconds() // 60)


# --- Inventario y auditoría ---


class InventarioMovimiento(Base):
    """Movimiento de stock; ``cantidad`` es con signo (negativa en salidas)."""

    __tablename__ = "inventario_movimientos"
    __table_args__ = (
        CheckConstraint(_en("tipo", TIPOS_MOVIMIENTO), name="ck_inventario_movimientos_tipo"),
        CheckConstraint("stock_nuevo - stock_anterior = cantidad", name="ck_inventario_movimientos_delta"),
        CheckConstraint("stock_nuevo >= 0", name="ck_inventario_movimientos_stock"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    producto_id: Mapped[int] = mapped_column(ForeignKey("productos.id", ondelete="CASCADE"))
    variacion_id: Mapped[Optional[int]] = mapped_column(ForeignKey("variaciones_productos.id", ondelete="CASCADE"))
    tipo: Mapped[str] = mapped_column(String(20))
    cantidad: Mapped[int] = mapped_column(Integer)
    stock_anterior: Mapped[int] = mapped_column(Integer)
    stock_nuevo: Mapped[int] = mapped_column(Integer)
    motivo: Mapped[Optional[str]] = mapped_column(String(255))
    referencia: Mapped[Optional[str]] = mapped_column(String(100))
    usuario_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)


class LogAuditoria(Base):
    __tablename__ = "logs_auditoria"

    id: Mapped[int] = mapped_column(primary_key=True)
    accion: Mapped[str] = mapped_column(String(50))
    tabla: Mapped[str] = mapped_column(String(50))
    entidad_id: Mapped[Optional[int]] = mapped_column(Integer)
    meta: Mapped[Optional[dict]] = mapped_column(JSON)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    ip: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
