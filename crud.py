# crud.py
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from models import Usuario, Producto, Pedido
from security import get_password_hash, verify_password

# ------- Usuarios -------
def get_usuario_by_email(db: Session, email: str):
    return db.query(Usuario).filter(Usuario.email == email).first()

def get_usuario(db: Session, usuario_id: int):
    return db.get(Usuario, usuario_id)

def get_usuarios(db: Session):
    return db.query(Usuario).order_by(Usuario.id.asc()).all()

def contar_usuarios(db: Session) -> int:
    return db.scalar(select(func.count()).select_from(Usuario))

def create_usuario(db: Session, nombre: str, email: str, password: str, rol: str):
    user = Usuario(nombre=nombre, email=email, password=get_password_hash(password), rol=rol)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user

def update_usuario(db: Session, usuario: Usuario, *, nombre: str, email: str, rol: str, password: str | None = None):
    usuario.nombre = nombre
    usuario.email = email
    usuario.rol = rol
    if password:
        usuario.password = get_password_hash(password)
    db.add(usuario)
    db.commit()
    db.refresh(usuario)
    return usuario

def delete_usuario(db: Session, usuario: Usuario):
    db.delete(usuario)
    db.commit()

def authenticate_usuario(db: Session, email: str, password: str):
    user = get_usuario_by_email(db, email)
    if not user or not verify_password(password, user.password):
        return None
    return user

# ------- Productos -------
def get_productos(db: Session):
    return db.query(Producto).order_by(Producto.id.asc()).all()

def get_producto(db: Session, producto_id: int):
    return db.get(Producto, producto_id)

def create_producto(db: Session, **fields):
    prod = Producto(**fields)
    db.add(prod)
    db.commit()
    db.refresh(prod)
    return prod

def update_producto(db: Session, producto: Producto, **fields):
    for k, v in fields.items():
        setattr(producto, k, v)
    db.add(producto)
    db.commit()
    db.refresh(producto)
    return producto

def delete_producto(db: Session, producto: Producto):
    db.delete(producto)
    db.commit()

# ------- Pedidos (administración) -------
def get_pedidos_con_usuario(db: Session):
    rows = (
        db.query(Pedido, Usuario.nombre, Usuario.email)
        .join(Usuario, Pedido.usuario_id == Usuario.id)
        .order_by(Pedido.created_at.desc(), Pedido.id.desc())
        .all()
    )
    return [
        {
            "id": p.id,
            "total": p.total,
            "comprobante_url": p.comprobante_url,
            "estado": p.estado,
            "created_at": p.created_at,
            "usuario_nombre": nombre,
            "usuario_email": email,
        }
        for p, nombre, email in rows
    ]

def get_pedido(db: Session, pedido_id: int):
    return db.get(Pedido, pedido_id)

def update_estado_pedido(db: Session, pedido: Pedido, estado: str):
    # Cambiar el estado no repone stock
    pedido.estado = estado
    db.add(pedido)
    db.commit()
    db.refresh(pedido)
    return pedido
