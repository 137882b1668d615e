# pedidos.py
"""
Motor de pedidos: verificación de stock, alta del pedido con sus items y
descuento de stock dentro de una única transacción.

Política: si cualquier producto no tiene stock se rechaza el pedido completo,
no hay cumplimiento parcial. La cantidad por item es siempre 1.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from database import transaccion
from models import ESTADO_PENDIENTE, Pedido, PedidoItem, Producto

logger = logging.getLogger(__name__)

CANTIDAD_POR_ITEM = 1


class FueraDeStock(Exception):
    def __init__(self, producto_id: int, nombre: Optional[str] = None):
        self.producto_id = producto_id
        self.nombre = nombre
        etiqueta = f"'{nombre}'" if nombre else f"con id {producto_id}"
        super().__init__(f"El producto {etiqueta} está fuera de stock.")


@dataclass(frozen=True)
class ResultadoPedido:
    ok: bool
    pedido_id: Optional[int] = None
    motivo: Optional[str] = None
    producto_id: Optional[int] = None

    @classmethod
    def exito(cls, pedido_id: int) -> "ResultadoPedido":
        return cls(ok=True, pedido_id=pedido_id)

    @classmethod
    def fallo(cls, motivo: str, producto_id: Optional[int] = None) -> "ResultadoPedido":
        return cls(ok=False, motivo=motivo, producto_id=producto_id)


def _ids_unicos(producto_ids: Iterable[int]) -> list[int]:
    return list(dict.fromkeys(producto_ids))


def _total_difiere(total_cliente: Optional[float], total: Decimal) -> bool:
    # Solo informativo: un total del cliente no representable no afecta el pedido
    if total_cliente is None:
        return False
    try:
        enviado = Decimal(str(total_cliente))
        if not enviado.is_finite():
            return True
        return enviado.quantize(Decimal("0.01")) != total
    except InvalidOperation:
        return True


def _bloquear_productos(db: Session, ids: list[int]) -> dict[int, Producto]:
    # Orden fijo de bloqueo para que dos checkouts con productos en común no se bloqueen mutuamente
    bloqueados = {}
    for pid in sorted(ids):
        producto = db.execute(
            select(Producto).where(Producto.id == pid).with_for_update()
        ).scalar_one_or_none()
        if producto is None:
            raise FueraDeStock(pid)
        if producto.stock < CANTIDAD_POR_ITEM:
            raise FueraDeStock(pid, producto.nombre)
        bloqueados[pid] = producto
    return bloqueados


def _descontar_stock(db: Session, producto: Producto) -> None:
    # Guardia en el propio UPDATE: sin bloqueo de filas (SQLite) tampoco se sobrevende
    resultado = db.execute(
        update(Producto)
        .where(Producto.id == producto.id, Producto.stock >= CANTIDAD_POR_ITEM)
        .values(stock=Producto.stock - CANTIDAD_POR_ITEM)
        .execution_options(synchronize_session=False)
    )
    if resultado.rowcount != 1:
        raise FueraDeStock(producto.id, producto.nombre)


def realizar_pedido(
    db: Session,
    usuario_id: int,
    producto_ids: Iterable[int],
    *,
    comprobante_url: Optional[str] = None,
    estado: str = ESTADO_PENDIENTE,
    total_cliente: Optional[float] = None,
) -> ResultadoPedido:
    """
    Crea el pedido de ``usuario_id`` con una unidad de cada producto.

    Devuelve ``ResultadoPedido.exito`` con el id del pedido o
    ``ResultadoPedido.fallo`` con el motivo si algún producto no existe o no
    tiene stock; en ese caso no queda nada persistido. Los errores de base de
    datos no se capturan.
    """
    ids = _ids_unicos(producto_ids)
    if not ids:
        return ResultadoPedido.fallo("El pedido no contiene items.")

    try:
        with transaccion(db):
            productos = _bloquear_productos(db, ids)
            total = sum((Decimal(productos[pid].precio) for pid in ids), Decimal("0"))
            if _total_difiere(total_cliente, total):
                logger.warning(
                    "Total enviado por el cliente (%s) distinto del calculado (%s) para usuario %s",
                    total_cliente, total, usuario_id,
                )

            pedido = Pedido(
                usuario_id=usuario_id,
                total=total,
                comprobante_url=comprobante_url,
                estado=estado,
            )
            db.add(pedido)
            db.flush()

            for pid in ids:
                producto = productos[pid]
                db.add(PedidoItem(
                    pedido_id=pedido.id,
                    producto_id=pid,
                    cantidad=CANTIDAD_POR_ITEM,
                    precio_unitario=producto.precio,
                ))
                _descontar_stock(db, producto)
            db.flush()
            pedido_id = pedido.id
    except FueraDeStock as e:
        logger.info("Pedido rechazado para usuario %s: %s", usuario_id, e)
        return ResultadoPedido.fallo(str(e), e.producto_id)

    logger.info("Pedido %s creado para usuario %s (%d items, total %s)", pedido_id, usuario_id, len(ids), total)
    return ResultadoPedido.exito(pedido_id)
