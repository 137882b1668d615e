"""Shared pytest fixtures: app over a temporary SQLite file, users, products and tokens."""

import os
import tempfile
from decimal import Decimal

import pytest

# Antes de importar main: main crea una app a nivel de módulo
os.environ.setdefault("MEDIA_DIR", tempfile.mkdtemp(prefix="tienda-media-"))
os.environ["JWT_SECRET"] = "clave-de-pruebas"
for _var in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET", "ADMIN_EMAIL", "ADMIN_PASSWORD"):
    os.environ.pop(_var, None)

from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
from crud import create_usuario  # noqa: E402
from models import Producto  # noqa: E402
from security import create_access_token  # noqa: E402


@pytest.fixture
def media(tmp_path, monkeypatch):
    carpeta = tmp_path / "media"
    monkeypatch.setenv("MEDIA_DIR", str(carpeta))
    return carpeta


@pytest.fixture
def app(tmp_path, media):
    return main.create_app(f"sqlite:///{tmp_path / 'tienda.db'}")


@pytest.fixture
def client(app):
    """TestClient con lifespan: las migraciones quedan aplicadas."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db(app, client):
    session = app.state.session_factory()
    yield session
    session.close()


@pytest.fixture
def admin(db):
    return create_usuario(db, "Admin", "admin@tienda.com", "secreto1", "admin")


@pytest.fixture
def cliente(db):
    return create_usuario(db, "Ana", "ana@tienda.com", "secreto2", "cliente")


def _auth(usuario):
    token = create_access_token(user_id=usuario.id, nombre=usuario.nombre, rol=usuario.rol)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin):
    return _auth(admin)


@pytest.fixture
def cliente_headers(cliente):
    return _auth(cliente)


@pytest.fixture
def crear_producto(db):
    """Factory de productos persistidos."""

    def _crear(nombre="Remera", precio="19.99", stock=5, **extra):
        prod = Producto(nombre=nombre, precio=Decimal(precio), stock=stock, **extra)
        db.add(prod)
        db.commit()
        db.refresh(prod)
        return prod

    return _crear
