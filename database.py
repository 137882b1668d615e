# database.py
import os
from contextlib import contextmanager

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite:///./tienda.db"


def normalizar_url(url: str) -> str:
    # Render/Heroku entregan postgres://, SQLAlchemy solo acepta postgresql://
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


def crear_engine(url: str | None = None) -> Engine:
    url = normalizar_url(url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL))
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _sqlite_foreign_keys)
        return engine
    return create_engine(url, pool_pre_ping=True)


def _sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def crear_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db(request: Request):
    """Sesión por request, tomada de la fábrica registrada en la app."""
    db: Session = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaccion(db: Session):
    """
    Unidad de trabajo: commit si el bloque termina bien, rollback en
    cualquier otra salida (incluidas excepciones que se relanzan).
    """
    try:
        yield db
        db.commit()
    except BaseException:
        db.rollback()
        raise
