# migraciones.py
"""
Migraciones versionadas. Se aplican una sola vez, en orden, al arrancar la
app y antes de atender requests. Cada versión aplicada queda registrada en
``schema_migrations``. Nunca modificar una migración ya publicada: agregar
una nueva al final de MIGRACIONES.
"""
import logging
import os

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, func, insert, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session

from models import Pedido, PedidoItem, Producto, Usuario
from crud import create_usuario, get_usuario_by_email

logger = logging.getLogger(__name__)

_meta = MetaData()
schema_migrations = Table(
    "schema_migrations", _meta,
    Column("version", Integer, primary_key=True),
    Column("nombre", String(255), nullable=False),
    Column("aplicada_en", DateTime(timezone=True), server_default=func.now(), nullable=False),
)


def _0001_catalogo_y_usuarios(conn: Connection) -> None:
    Usuario.__table__.create(conn, checkfirst=True)
    Producto.__table__.create(conn, checkfirst=True)


def _0002_pedidos(conn: Connection) -> None:
    Pedido.__table__.create(conn, checkfirst=True)
    PedidoItem.__table__.create(conn, checkfirst=True)


MIGRACIONES = [
    (1, "catalogo_y_usuarios", _0001_catalogo_y_usuarios),
    (2, "pedidos", _0002_pedidos),
]


def versiones_aplicadas(engine: Engine) -> list[int]:
    with engine.connect() as conn:
        if not engine.dialect.has_table(conn, "schema_migrations"):
            return []
        return [v for (v,) in conn.execute(select(schema_migrations.c.version).order_by(schema_migrations.c.version))]


def aplicar_migraciones(engine: Engine) -> list[int]:
    """Aplica las migraciones pendientes. Devuelve las versiones aplicadas en esta llamada."""
    nuevas = []
    with engine.begin() as conn:
        schema_migrations.create(conn, checkfirst=True)
        hechas = set(conn.execute(select(schema_migrations.c.version)).scalars())
        for version, nombre, migrar in MIGRACIONES:
            if version in hechas:
                continue
            migrar(conn)
            conn.execute(insert(schema_migrations).values(version=version, nombre=nombre))
            logger.info("Migración %04d_%s aplicada", version, nombre)
            nuevas.append(version)
    if not nuevas:
        logger.info("Esquema al día (versión %d)", MIGRACIONES[-1][0])
    return nuevas


def asegurar_admin(session_factory) -> bool:
    """Crea el admin definido por ADMIN_EMAIL/ADMIN_PASSWORD si aún no existe."""
    email = os.getenv("ADMIN_EMAIL")
    password = os.getenv("ADMIN_PASSWORD")
    if not email or not password:
        return False
    db: Session = session_factory()
    try:
        if get_usuario_by_email(db, email):
            logger.info("El usuario administrador '%s' ya existe.", email)
            return False
        create_usuario(db, "Administrador", email, password, "admin")
        logger.info("Usuario administrador '%s' creado.", email)
        return True
    finally:
        db.close()
