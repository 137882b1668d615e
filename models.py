# models.py
from sqlalchemy import (
    CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, func
)
from sqlalchemy.orm import relationship
from database import Base

ROLES = ("admin", "cliente", "user")

ESTADO_PENDIENTE = "pendiente"
ESTADO_APROBADO = "aprobado"


class Usuario(Base):
    __tablename__ = "usuarios"

    id = Column(Integer, primary_key=True, index=True)
    nombre = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password = Column(String(255), nullable=False)  # hash bcrypt
    rol = Column(String(50), nullable=False, default="user")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # passive_deletes: el FK de pedidos impide borrar usuarios con pedidos
    pedidos = relationship("Pedido", back_populates="usuario", passive_deletes="all")


class Producto(Base):
    __tablename__ = "productos"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_productos_stock_no_negativo"),
        CheckConstraint("precio >= 0", name="ck_productos_precio_no_negativo"),
    )

    id = Column(Integer, primary_key=True, index=True)
    nombre = Column(String(255), nullable=False)
    descripcion = Column(Text, nullable=True)
    precio = Column(Numeric(10, 2), nullable=False)
    imagen_url = Column(String(500), nullable=True)
    tipo = Column(String(100), nullable=True)
    marca = Column(String(100), nullable=True)
    stock = Column(Integer, nullable=False, default=0, server_default="0")


class Pedido(Base):
    __tablename__ = "pedidos"

    id = Column(Integer, primary_key=True, index=True)
    usuario_id = Column(Integer, ForeignKey("usuarios.id"), nullable=False, index=True)
    total = Column(Numeric(10, 2), nullable=False)
    comprobante_url = Column(String(500), nullable=True)
    estado = Column(String(50), nullable=False, default=ESTADO_PENDIENTE, server_default=ESTADO_PENDIENTE)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    usuario = relationship("Usuario", back_populates="pedidos")
    items = relationship("PedidoItem", back_populates="pedido", cascade="all, delete-orphan")


class PedidoItem(Base):
    __tablename__ = "pedido_items"

    id = Column(Integer, primary_key=True, index=True)
    pedido_id = Column(Integer, ForeignKey("pedidos.id", ondelete="CASCADE"), nullable=False, index=True)
    producto_id = Column(Integer, ForeignKey("productos.id"), nullable=False, index=True)
    cantidad = Column(Integer, nullable=False)
    precio_unitario = Column(Numeric(10, 2), nullable=False)

    pedido = relationship("Pedido", back_populates="items")
    producto = relationship("Producto")
