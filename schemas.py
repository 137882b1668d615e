# schemas.py
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, constr
from typing import Optional, List, Literal

Rol = Literal["admin", "cliente", "user"]

# --- Usuarios / Auth ---
class RegistroIn(BaseModel):
    nombre: constr(min_length=1)
    email: EmailStr
    password: constr(min_length=1)

class LoginIn(BaseModel):
    email: EmailStr
    password: constr(min_length=1)

class LoginOut(BaseModel):
    message: str
    token: str

class TokenData(BaseModel):
    id: int
    nombre: Optional[str] = None
    rol: Optional[str] = None

class UsuarioCreate(RegistroIn):
    rol: Rol

class UsuarioUpdate(BaseModel):
    nombre: constr(min_length=1)
    email: EmailStr
    rol: Rol
    password: Optional[str] = None  # vacío o ausente: se conserva el actual

class UsuarioOut(BaseModel):
    id: int
    nombre: Optional[str]
    email: str
    rol: str

    class Config:
        from_attributes = True

# --- Productos ---
class ProductoOut(BaseModel):
    id: int
    nombre: str
    descripcion: Optional[str]
    precio: float
    imagen_url: Optional[str]
    tipo: Optional[str]
    marca: Optional[str]
    stock: int

    class Config:
        from_attributes = True

# --- Pedidos ---
class ItemPedido(BaseModel):
    # El carrito envía el producto completo; solo el id es relevante
    id: int
    nombre: Optional[str] = None
    precio: Optional[float] = None

class ConfirmarPedidoIn(BaseModel):
    pedido: List[ItemPedido] = Field(default_factory=list)
    total: Optional[float] = None
    paymentMethod: Optional[str] = None

class PedidoCreadoOut(BaseModel):
    message: str
    pedidoId: int

class PedidoAdminOut(BaseModel):
    id: int
    total: float
    comprobante_url: Optional[str]
    estado: str
    created_at: datetime
    usuario_nombre: Optional[str]
    usuario_email: str

class EstadoPedidoIn(BaseModel):
    estado: Optional[constr(strip_whitespace=True, max_length=50)] = None

# --- Genéricos ---
class Mensaje(BaseModel):
    message: str

class MensajeId(Mensaje):
    id: int
