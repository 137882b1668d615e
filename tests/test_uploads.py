import io

from fastapi import UploadFile

import uploads


def _archivo(nombre="pago.png", contenido=b"bytes"):
    return UploadFile(file=io.BytesIO(contenido), filename=nombre)


def test_sin_cloudinary_guarda_en_media(media):
    url = uploads.subir_comprobante(_archivo())

    assert url.startswith("/media/comprobante-") and url.endswith(".png")
    assert (media / url.rsplit("/", 1)[1]).read_bytes() == b"bytes"


def test_con_cloudinary_sube_a_la_carpeta_correspondiente(media, monkeypatch):
    for var in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET"):
        monkeypatch.setenv(var, "x")
    llamadas = []

    def upload_falso(contenido, **opciones):
        llamadas.append((contenido, opciones))
        return {"secure_url": "https://res.cloudinary.com/demo/producto.jpg"}

    monkeypatch.setattr(uploads.cloudinary.uploader, "upload", upload_falso)

    url = uploads.subir_imagen_producto(_archivo("foto.jpg", b"jpeg"))

    assert url == "https://res.cloudinary.com/demo/producto.jpg"
    contenido, opciones = llamadas[0]
    assert contenido == b"jpeg"
    assert opciones["folder"] == "tienda_productos"
    assert opciones["format"] == "jpg"
    assert opciones["public_id"].startswith("producto-")
    assert not media.exists() or not any(media.iterdir())


def test_eliminar_archivo_local(media):
    url = uploads.subir_comprobante(_archivo())

    uploads.eliminar_archivo(url)
    uploads.eliminar_archivo(url)

    assert list(media.iterdir()) == []


def test_eliminar_archivo_en_cloudinary_usa_el_public_id(monkeypatch):
    for var in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET"):
        monkeypatch.setenv(var, "x")
    borrados = []
    monkeypatch.setattr(uploads.cloudinary.uploader, "destroy", borrados.append)

    uploads.eliminar_archivo(
        "https://res.cloudinary.com/demo/image/upload/v1700000000/tienda_comprobantes/comprobante-123.png"
    )

    assert borrados == ["tienda_comprobantes/comprobante-123"]
