# main.py
import io
import logging
import os
from contextlib import asynccontextmanager
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from dotenv import load_dotenv, find_dotenv
load_dotenv(find_dotenv(usecwd=True), override=True)

from database import crear_engine, crear_session_factory, get_db
from schemas import (
    RegistroIn, LoginIn, LoginOut, UsuarioCreate, UsuarioUpdate, UsuarioOut,
    ProductoOut, ItemPedido, ConfirmarPedidoIn, PedidoCreadoOut, PedidoAdminOut,
    EstadoPedidoIn, Mensaje, MensajeId, TokenData,
)
from crud import (
    get_usuario_by_email, get_usuario, get_usuarios, contar_usuarios, create_usuario,
    update_usuario, delete_usuario, authenticate_usuario,
    get_productos, get_producto, create_producto, update_producto, delete_producto,
    get_pedidos_con_usuario, get_pedido, update_estado_pedido,
)
from security import create_access_token, get_current_user, require_admin
from pedidos import realizar_pedido
from models import ESTADO_APROBADO, ESTADO_PENDIENTE
from migraciones import aplicar_migraciones, asegurar_admin
from reportes import REPORTES, generar_reporte
from uploads import eliminar_archivo, media_dir, subir_comprobante, subir_imagen_producto

logger = logging.getLogger(__name__)

METODOS_TARJETA = {"card", "tarjeta"}
PRECIO_MAXIMO = Decimal("1e8")

router = APIRouter()

# ---------- HELPERS ----------
_items_pedido = TypeAdapter(List[ItemPedido])

def _a_float(valor) -> Optional[float]:
    try:
        return float(valor)
    except (TypeError, ValueError):
        return None

def _precio_y_stock(precio: str, stock: str) -> tuple[Decimal, int]:
    try:
        precio_num = Decimal(precio.strip())
        stock_int = int(stock)
        if not precio_num.is_finite():
            raise ValueError(precio)
        precio_num = precio_num.quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError, AttributeError):
        raise HTTPException(status_code=400, detail="Precio y stock deben ser números válidos.")
    if precio_num < 0 or stock_int < 0:
        raise HTTPException(status_code=400, detail="Precio y stock no pueden ser negativos.")
    # productos.precio es Numeric(10,2)
    if precio_num >= PRECIO_MAXIMO:
        raise HTTPException(status_code=400, detail="El precio supera el máximo permitido.")
    return precio_num, stock_int

def _responder_pedido(resultado, mensaje: str):
    if not resultado.ok:
        # Falta de stock se informa como 500 con el motivo (compatibilidad con el frontend)
        raise HTTPException(status_code=500, detail=resultado.motivo)
    return {"message": mensaje, "pedidoId": resultado.pedido_id}

# ---------- PÚBLICO ----------
@router.get("/api/productos", response_model=List[ProductoOut], tags=["productos"])
def listar_productos(db: Session = Depends(get_db)):
    return get_productos(db)

# ---------- AUTH ----------
def _registrar(data: RegistroIn, rol: str, db: Session):
    if get_usuario_by_email(db, data.email):
        raise HTTPException(status_code=409, detail="El email ya está registrado.")
    create_usuario(db, data.nombre, data.email, data.password, rol)
    return {"message": "Usuario registrado exitosamente."}

def _login(data: LoginIn, db: Session):
    user = authenticate_usuario(db, data.email, data.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Credenciales inválidas.")
    token = create_access_token(user_id=user.id, nombre=user.nombre, rol=user.rol)
    return {"message": "Login exitoso.", "token": token}

@router.post("/api/users/register", response_model=Mensaje, status_code=201, tags=["auth"])
def registrar_cliente(data: RegistroIn, db: Session = Depends(get_db)):
    return _registrar(data, "cliente", db)

@router.post("/api/users/login", response_model=LoginOut, tags=["auth"])
def login_cliente(data: LoginIn, db: Session = Depends(get_db)):
    return _login(data, db)

@router.post("/api/register", response_model=Mensaje, status_code=201, tags=["auth"])
def registrar(data: RegistroIn, db: Session = Depends(get_db)):
    # El primer usuario del sistema es admin, los siguientes 'user'
    rol = "admin" if contar_usuarios(db) == 0 else "user"
    return _registrar(data, rol, db)

@router.post("/api/login", response_model=LoginOut, tags=["auth"])
def login(data: LoginIn, db: Session = Depends(get_db)):
    return _login(data, db)

# ---------- PEDIDOS ----------
@router.post("/api/orders", response_model=PedidoCreadoOut, status_code=201, tags=["pedidos"])
def crear_pedido(
    pedido: Optional[str] = Form(None),
    total: Optional[str] = Form(None),
    comprobante: Optional[UploadFile] = File(None),
    current: TokenData = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if comprobante is None or not comprobante.filename:
        raise HTTPException(status_code=400, detail="El comprobante de pago es requerido.")
    try:
        items = _items_pedido.validate_json(pedido or "[]")
    except ValidationError:
        raise HTTPException(status_code=400, detail="El pedido no tiene un formato válido.")
    if not items:
        raise HTTPException(status_code=400, detail="El pedido no contiene items.")

    comprobante_url = subir_comprobante(comprobante)
    resultado = realizar_pedido(
        db, current.id, [i.id for i in items],
        comprobante_url=comprobante_url,
        estado=ESTADO_PENDIENTE,
        total_cliente=_a_float(total),
    )
    if not resultado.ok:
        # Pedido rechazado: el comprobante ya subido no queda referenciado
        eliminar_archivo(comprobante_url)
    return _responder_pedido(resultado, "¡Gracias! Hemos recibido tu comprobante y procesaremos tu pedido.")

@router.post("/api/confirm-order", response_model=PedidoCreadoOut, status_code=201, tags=["pedidos"])
def confirmar_pedido(data: ConfirmarPedidoIn, current: TokenData = Depends(get_current_user), db: Session = Depends(get_db)):
    if not data.pedido:
        raise HTTPException(status_code=400, detail="El pedido no contiene items.")
    estado = ESTADO_APROBADO if (data.paymentMethod or "").lower() in METODOS_TARJETA else ESTADO_PENDIENTE
    resultado = realizar_pedido(
        db, current.id, [i.id for i in data.pedido],
        estado=estado,
        total_cliente=data.total,
    )
    return _responder_pedido(resultado, "Compra confirmada exitosamente. Tu pedido está siendo procesado.")

# ---------- ADMIN: PRODUCTOS ----------
@router.get("/api/admin/productos", response_model=List[ProductoOut], tags=["admin"])
def admin_listar_productos(current=Depends(require_admin), db: Session = Depends(get_db)):
    return get_productos(db)

@router.post("/api/admin/productos", status_code=201, tags=["admin"])
def admin_crear_producto(
    nombre: str = Form(...),
    precio: str = Form(...),
    stock: str = Form(...),
    descripcion: Optional[str] = Form(None),
    tipo: Optional[str] = Form(None),
    marca: Optional[str] = Form(None),
    imagen: Optional[UploadFile] = File(None),
    current=Depends(require_admin),
    db: Session = Depends(get_db),
):
    precio_num, stock_int = _precio_y_stock(precio, stock)
    imagen_url = subir_imagen_producto(imagen) if imagen is not None and imagen.filename else None
    prod = create_producto(
        db,
        nombre=nombre,
        descripcion=descripcion,
        precio=precio_num,
        imagen_url=imagen_url,
        tipo=tipo,
        marca=marca,
        stock=stock_int,
    )
    return {"message": "Producto agregado exitosamente.", "insertId": prod.id}

@router.put("/api/admin/productos/{producto_id}", response_model=Mensaje, tags=["admin"])
def admin_actualizar_producto(
    producto_id: int,
    nombre: str = Form(...),
    precio: str = Form(...),
    stock: str = Form(...),
    descripcion: Optional[str] = Form(None),
    tipo: Optional[str] = Form(None),
    marca: Optional[str] = Form(None),
    imagen_url_existente: Optional[str] = Form(None),
    imagen: Optional[UploadFile] = File(None),
    current=Depends(require_admin),
    db: Session = Depends(get_db),
):
    precio_num, stock_int = _precio_y_stock(precio, stock)
    prod = get_producto(db, producto_id)
    if not prod:
        raise HTTPException(status_code=404, detail="Producto no encontrado.")
    imagen_url = imagen_url_existente
    if imagen is not None and imagen.filename:
        imagen_url = subir_imagen_producto(imagen)
    update_producto(
        db, prod,
        nombre=nombre,
        descripcion=descripcion,
        precio=precio_num,
        imagen_url=imagen_url,
        tipo=tipo,
        marca=marca,
        stock=stock_int,
    )
    return {"message": "Producto actualizado exitosamente."}

@router.delete("/api/admin/productos/{producto_id}", response_model=Mensaje, tags=["admin"])
def admin_eliminar_producto(producto_id: int, current=Depends(require_admin), db: Session = Depends(get_db)):
    prod = get_producto(db, producto_id)
    if not prod:
        raise HTTPException(status_code=404, detail="Producto no encontrado.")
    delete_producto(db, prod)
    return {"message": "Producto eliminado exitosamente."}

# ---------- ADMIN: USUARIOS ----------
@router.get("/api/admin/usuarios", response_model=List[UsuarioOut], tags=["admin"])
def admin_listar_usuarios(current=Depends(require_admin), db: Session = Depends(get_db)):
    return get_usuarios(db)

@router.post("/api/admin/usuarios", response_model=MensajeId, status_code=201, tags=["admin"])
def admin_crear_usuario(data: UsuarioCreate, current=Depends(require_admin), db: Session = Depends(get_db)):
    if get_usuario_by_email(db, data.email):
        raise HTTPException(status_code=409, detail="El email ya está en uso.")
    user = create_usuario(db, data.nombre, data.email, data.password, data.rol)
    return {"message": "Usuario creado exitosamente.", "id": user.id}

@router.put("/api/admin/usuarios/{usuario_id}", response_model=Mensaje, tags=["admin"])
def admin_actualizar_usuario(usuario_id: int, data: UsuarioUpdate, current=Depends(require_admin), db: Session = Depends(get_db)):
    user = get_usuario(db, usuario_id)
    if not user:
        raise HTTPException(status_code=404, detail="Usuario no encontrado.")
    otro = get_usuario_by_email(db, data.email)
    if otro and otro.id != usuario_id:
        raise HTTPException(status_code=409, detail="El email ya está en uso por otro usuario.")
    update_usuario(db, user, nombre=data.nombre, email=data.email, rol=data.rol, password=data.password)
    return {"message": "Usuario actualizado exitosamente."}

@router.delete("/api/admin/usuarios/{usuario_id}", response_model=Mensaje, tags=["admin"])
def admin_eliminar_usuario(usuario_id: int, current: TokenData = Depends(require_admin), db: Session = Depends(get_db)):
    if usuario_id == current.id:
        raise HTTPException(status_code=400, detail="No puedes eliminar tu propia cuenta de administrador.")
    user = get_usuario(db, usuario_id)
    if not user:
        raise HTTPException(status_code=404, detail="Usuario no encontrado.")
    delete_usuario(db, user)
    return {"message": "Usuario eliminado exitosamente."}

# ---------- ADMIN: PEDIDOS ----------
@router.get("/api/admin/pedidos", response_model=List[PedidoAdminOut], tags=["admin"])
def admin_listar_pedidos(current=Depends(require_admin), db: Session = Depends(get_db)):
    return get_pedidos_con_usuario(db)

@router.put("/api/admin/pedidos/{pedido_id}", response_model=Mensaje, tags=["admin"])
def admin_actualizar_pedido(pedido_id: int, data: EstadoPedidoIn, current=Depends(require_admin), db: Session = Depends(get_db)):
    if not data.estado:
        raise HTTPException(status_code=400, detail="El estado es requerido.")
    pedido = get_pedido(db, pedido_id)
    if not pedido:
        raise HTTPException(status_code=404, detail="Pedido no encontrado.")
    update_estado_pedido(db, pedido, data.estado)
    return {"message": "Estado del pedido actualizado exitosamente."}

# ---------- ADMIN: REPORTES ----------
@router.get(
    "/api/admin/reportes/{tipo}",
    responses={200: {"content": {"application/pdf": {}}}, 400: {"description": "Tipo inválido"}},
    tags=["admin"],
)
def admin_reporte(tipo: str, current=Depends(require_admin), db: Session = Depends(get_db)):
    if tipo not in REPORTES:
        raise HTTPException(status_code=400, detail="Tipo de reporte no válido.")
    filename, pdf = generar_reporte(db, tipo)
    return StreamingResponse(
        io.BytesIO(pdf),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

# Debug
@router.get("/_debug/uploads", tags=["debug"])
def debug_uploads():
    return {"cloudinary_key_present": bool(os.getenv("CLOUDINARY_API_KEY")), "media_dir": media_dir()}

# ---------- ERRORES ----------
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"message": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))

async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"message": "Datos inválidos en la petición.", "errores": jsonable_encoder(exc.errors())},
        status_code=400,
    )

# SQLSTATE de PostgreSQL / texto de SQLite -> (status, mensaje)
_INTEGRIDAD = [
    ("23505", "UNIQUE", 409, "Conflicto: el registro ya existe."),
    ("23503", "FOREIGN KEY", 409, "Conflicto: el registro está en uso por otros datos."),
    ("23514", "CHECK", 400, "Datos inválidos: no cumplen las restricciones del registro."),
    ("23502", "NOT NULL", 400, "Datos inválidos: falta un campo obligatorio."),
]

def respuesta_integridad(exc: IntegrityError) -> tuple[int, str]:
    pgcode = getattr(exc.orig, "pgcode", None)
    texto = str(exc.orig).upper()
    for codigo, marcador, status_code, mensaje in _INTEGRIDAD:
        if pgcode == codigo or (pgcode is None and marcador in texto):
            return status_code, mensaje
    return 409, "Conflicto de integridad de datos."

async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("Conflicto de integridad en %s %s: %s", request.method, request.url.path, exc.orig)
    status_code, mensaje = respuesta_integridad(exc)
    return JSONResponse({"message": mensaje}, status_code=status_code)

async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Error no manejado en %s %s", request.method, request.url.path)
    return JSONResponse({"message": "Ocurrió un error inesperado en el servidor."}, status_code=500)

# ---------- APP ----------
def create_app(database_url: Optional[str] = None) -> FastAPI:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    engine = crear_engine(database_url)
    session_factory = crear_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Esquema al día antes de atender tráfico
        aplicar_migraciones(engine)
        asegurar_admin(session_factory)
        yield
        engine.dispose()

    app = FastAPI(title="Tienda API", version="1.0.0", lifespan=lifespan)
    app.state.engine = engine
    app.state.session_factory = session_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Estáticos para /media (subidas sin Cloudinary)
    os.makedirs(media_dir(), exist_ok=True)
    app.mount("/media", StaticFiles(directory=media_dir()), name="media")

    app.include_router(router)
    return app


app = create_app()
