# uploads.py
import logging
import os
import re
import time

import cloudinary
import cloudinary.uploader
from fastapi import UploadFile

logger = logging.getLogger(__name__)

CARPETA_COMPROBANTES = "tienda_comprobantes"
CARPETA_PRODUCTOS = "tienda_productos"


def _slug(s: str) -> str:
    return re.sub(r'[^a-zA-Z0-9_-]+', '-', s).strip('-').lower()[:60]


def media_dir() -> str:
    return os.getenv("MEDIA_DIR", "media")


def _cloudinary_configurado() -> bool:
    return all(
        os.getenv(k) for k in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET")
    )


def _guardar_local(contenido: bytes, public_id: str, formato: str) -> str:
    carpeta = media_dir()
    os.makedirs(carpeta, exist_ok=True)
    filename = f"{_slug(public_id)}.{formato}"
    with open(os.path.join(carpeta, filename), "wb") as f:
        f.write(contenido)
    return f"/media/{filename}"


def _configurar_cloudinary() -> None:
    cloudinary.config(
        cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
        api_key=os.getenv("CLOUDINARY_API_KEY"),
        api_secret=os.getenv("CLOUDINARY_API_SECRET"),
        secure=True,
    )


def _subir_cloudinary(contenido: bytes, carpeta: str, public_id: str, formato: str) -> str:
    _configurar_cloudinary()
    resp = cloudinary.uploader.upload(contenido, folder=carpeta, public_id=public_id, format=formato)
    return resp["secure_url"]


def subir_archivo(archivo: UploadFile, carpeta: str, prefijo: str, formato: str) -> str:
    """
    Sube un archivo al hosting de imágenes y devuelve su URL pública.
      - cloudinary: si las tres variables CLOUDINARY_* están definidas
      - local: guarda en MEDIA_DIR y devuelve /media/<archivo>
    Los errores de Cloudinary se propagan; no hay reintentos.
    """
    contenido = archivo.file.read()
    public_id = f"{prefijo}-{int(time.time() * 1000)}"

    if _cloudinary_configurado():
        url = _subir_cloudinary(contenido, carpeta, public_id, formato)
        logger.info("Archivo %s subido a Cloudinary (%s)", archivo.filename, carpeta)
        return url

    logger.debug("Cloudinary no configurado, guardando %s en %s", archivo.filename, media_dir())
    return _guardar_local(contenido, public_id, formato)


def _public_id_cloudinary(url: str) -> str | None:
    # .../image/upload/v1700000000/tienda_comprobantes/comprobante-123.png -> tienda_comprobantes/comprobante-123
    m = re.search(r'/upload/(?:v\d+/)?(.+?)(?:\.[a-zA-Z0-9]+)?$', url)
    return m.group(1) if m else None


def eliminar_archivo(url: str) -> None:
    """Borra un archivo subido con subir_archivo (local o Cloudinary)."""
    if url.startswith("/media/"):
        path = os.path.join(media_dir(), os.path.basename(url))
        if os.path.exists(path):
            os.remove(path)
        logger.info("Archivo local %s eliminado", url)
        return
    public_id = _public_id_cloudinary(url)
    if public_id and _cloudinary_configurado():
        _configurar_cloudinary()
        cloudinary.uploader.destroy(public_id)
        logger.info("Archivo %s eliminado de Cloudinary", public_id)


def subir_comprobante(archivo: UploadFile) -> str:
    return subir_archivo(archivo, CARPETA_COMPROBANTES, "comprobante", "png")


def subir_imagen_producto(archivo: UploadFile) -> str:
    return subir_archivo(archivo, CARPETA_PRODUCTOS, "producto", "jpg")
