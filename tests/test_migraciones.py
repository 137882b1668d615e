from sqlalchemy import inspect

from database import crear_engine, crear_session_factory
from migraciones import MIGRACIONES, aplicar_migraciones, asegurar_admin, versiones_aplicadas
from models import Usuario


def test_migraciones_se_aplican_una_sola_vez(tmp_path):
    engine = crear_engine(f"sqlite:///{tmp_path / 'm.db'}")

    assert versiones_aplicadas(engine) == []
    assert aplicar_migraciones(engine) == [v for v, _, _ in MIGRACIONES]
    assert aplicar_migraciones(engine) == []
    assert versiones_aplicadas(engine) == [1, 2]
    tablas = set(inspect(engine).get_table_names())
    assert {"usuarios", "productos", "pedidos", "pedido_items", "schema_migrations"} <= tablas


def test_arranque_de_la_app_migra(client, app):
    assert versiones_aplicadas(app.state.engine) == [1, 2]


def test_asegurar_admin_desde_entorno(tmp_path, monkeypatch):
    engine = crear_engine(f"sqlite:///{tmp_path / 'a.db'}")
    aplicar_migraciones(engine)
    factory = crear_session_factory(engine)
    monkeypatch.setenv("ADMIN_EMAIL", "jefe@tienda.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "clave-admin")

    assert asegurar_admin(factory) is True
    assert asegurar_admin(factory) is False

    db = factory()
    try:
        admins = db.query(Usuario).filter_by(rol="admin").all()
        assert [a.email for a in admins] == ["jefe@tienda.com"]
    finally:
        db.close()


def test_asegurar_admin_sin_configuracion_no_hace_nada(tmp_path):
    engine = crear_engine(f"sqlite:///{tmp_path / 'b.db'}")
    aplicar_migraciones(engine)

    assert asegurar_admin(crear_session_factory(engine)) is False
