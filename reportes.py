# reportes.py
"""Reportes PDF para administración (ventas, usuarios, stock)."""
import io
import time
from datetime import datetime
from decimal import Decimal

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from sqlalchemy.orm import Session

from models import Pedido, PedidoItem, Producto, Usuario

MARGEN = 30
ALTO_FILA = 20

# tipo -> (título, [(encabezado, clave)])
REPORTES = {
    "sales": ("Ventas", [
        ("Pedido ID", "pedido_id"), ("Usuario", "usuario"), ("Producto", "producto"),
        ("Cantidad", "cantidad"), ("Precio Unitario", "precio_unitario"), ("Fecha Pedido", "fecha_pedido"),
    ]),
    "users": ("Usuarios", [
        ("ID", "id"), ("Nombre", "nombre"), ("Email", "email"), ("Rol", "rol"), ("Fecha Registro", "fecha_registro"),
    ]),
    "stock": ("Stock", [
        ("ID", "id"), ("Nombre", "nombre"), ("Marca", "marca"), ("Stock", "stock"), ("Precio", "precio"),
    ]),
}


def filas_ventas(db: Session) -> list[dict]:
    rows = (
        db.query(
            Pedido.id, Usuario.nombre, Producto.nombre,
            PedidoItem.cantidad, PedidoItem.precio_unitario, Pedido.created_at,
        )
        .join(Usuario, Pedido.usuario_id == Usuario.id)
        .join(PedidoItem, PedidoItem.pedido_id == Pedido.id)
        .join(Producto, PedidoItem.producto_id == Producto.id)
        .order_by(Pedido.created_at.desc(), Pedido.id.desc())
        .all()
    )
    return [
        {"pedido_id": pid, "usuario": usuario, "producto": producto, "cantidad": cantidad,
         "precio_unitario": precio, "fecha_pedido": fecha}
        for pid, usuario, producto, cantidad, precio, fecha in rows
    ]


def filas_usuarios(db: Session) -> list[dict]:
    return [
        {"id": u.id, "nombre": u.nombre, "email": u.email, "rol": u.rol, "fecha_registro": u.created_at}
        for u in db.query(Usuario).order_by(Usuario.id.asc()).all()
    ]


def filas_stock(db: Session) -> list[dict]:
    return [
        {"id": p.id, "nombre": p.nombre, "marca": p.marca, "stock": p.stock, "precio": p.precio}
        for p in db.query(Producto).order_by(Producto.id.asc()).all()
    ]


CONSULTAS = {"sales": filas_ventas, "users": filas_usuarios, "stock": filas_stock}


def _formatear(valor) -> str:
    if valor is None:
        return "N/A"
    if isinstance(valor, datetime):
        return valor.strftime("%d/%m/%Y %H:%M:%S")
    if isinstance(valor, Decimal):
        return f"{valor:.2f}"
    return str(valor)


def _recortar(c: canvas.Canvas, texto: str, ancho: float, fuente: str, tamano: int) -> str:
    if c.stringWidth(texto, fuente, tamano) <= ancho:
        return texto
    while texto and c.stringWidth(texto + "…", fuente, tamano) > ancho:
        texto = texto[:-1]
    return texto + "…"


def generar_pdf(titulo: str, columnas: list[tuple[str, str]], filas: list[dict]) -> bytes:
    """Tabla simple en A4: título, fecha de generación, encabezados en negrita y salto de página."""
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    c.setTitle(f"Reporte de {titulo}")
    ancho_pag, alto_pag = A4
    ancho_col = (ancho_pag - 2 * MARGEN) / len(columnas)

    def encabezados(y: float) -> float:
        c.setFont("Helvetica-Bold", 10)
        for i, (encabezado, _) in enumerate(columnas):
            x = MARGEN + i * ancho_col
            c.drawCentredString(x + ancho_col / 2, y, _recortar(c, encabezado, ancho_col - 4, "Helvetica-Bold", 10))
        c.setFont("Helvetica", 9)
        return y - ALTO_FILA

    y = alto_pag - MARGEN - 20
    c.setFont("Helvetica-Bold", 20)
    c.drawCentredString(ancho_pag / 2, y, f"Reporte de {titulo}")
    y -= 18
    c.setFont("Helvetica", 10)
    c.drawCentredString(ancho_pag / 2, y, f"Generado el: {datetime.now().strftime('%d/%m/%Y %H:%M:%S')}")
    y = encabezados(y - 2 * ALTO_FILA)

    for fila in filas:
        if y < MARGEN:
            c.showPage()
            y = encabezados(alto_pag - MARGEN - ALTO_FILA)
        for i, (_, clave) in enumerate(columnas):
            texto = _recortar(c, _formatear(fila.get(clave)), ancho_col - 4, "Helvetica", 9)
            c.drawString(MARGEN + i * ancho_col + 2, y, texto)
        y -= ALTO_FILA

    c.save()
    return buffer.getvalue()


def nombre_archivo(titulo: str) -> str:
    return f"{titulo.replace(' ', '_').lower()}_{int(time.time() * 1000)}.pdf"


def generar_reporte(db: Session, tipo: str) -> tuple[str, bytes]:
    """Devuelve (nombre_de_archivo, pdf). KeyError si el tipo no existe."""
    titulo, columnas = REPORTES[tipo]
    filas = CONSULTAS[tipo](db)
    return nombre_archivo(titulo), generar_pdf(titulo, columnas, filas)
