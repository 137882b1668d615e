from models import Pedido, Producto


def _comprar(client, headers, producto_id, metodo="transfer"):
    resp = client.post(
        "/api/confirm-order",
        json={"pedido": [{"id": producto_id}], "paymentMethod": metodo},
        headers=headers,
    )
    assert resp.status_code == 201
    return resp.json()["pedidoId"]


def test_listado_de_pedidos_con_datos_del_usuario(client, admin_headers, cliente_headers, crear_producto):
    prod = crear_producto(precio="19.99", stock=5)
    primero = _comprar(client, cliente_headers, prod.id)
    segundo = _comprar(client, cliente_headers, prod.id, metodo="card")

    resp = client.get("/api/admin/pedidos", headers=admin_headers)

    assert resp.status_code == 200
    pedidos = resp.json()
    assert [p["id"] for p in pedidos] == [segundo, primero]
    assert pedidos[0]["usuario_nombre"] == "Ana"
    assert pedidos[0]["usuario_email"] == "ana@tienda.com"
    assert pedidos[0]["estado"] == "aprobado"
    assert pedidos[0]["total"] == 19.99


def test_cambiar_estado_no_repone_stock(client, db, admin_headers, cliente_headers, crear_producto):
    prod = crear_producto(stock=1)
    pedido_id = _comprar(client, cliente_headers, prod.id)

    resp = client.put(f"/api/admin/pedidos/{pedido_id}", json={"estado": "rechazado"}, headers=admin_headers)

    assert resp.status_code == 200
    db.expire_all()
    assert db.get(Pedido, pedido_id).estado == "rechazado"
    assert db.get(Producto, prod.id).stock == 0


def test_cambiar_estado_sin_estado_es_400(client, admin_headers, cliente_headers, crear_producto):
    pedido_id = _comprar(client, cliente_headers, crear_producto().id)

    assert client.put(f"/api/admin/pedidos/{pedido_id}", json={}, headers=admin_headers).status_code == 400
    assert client.put(f"/api/admin/pedidos/{pedido_id}", json={"estado": "  "}, headers=admin_headers).status_code == 400


def test_cambiar_estado_de_pedido_inexistente_es_404(client, admin_headers):
    resp = client.put("/api/admin/pedidos/404", json={"estado": "aprobado"}, headers=admin_headers)
    assert resp.status_code == 404


def test_pedidos_de_admin_requieren_rol_admin(client, db, cliente_headers, crear_producto):
    pedido_id = _comprar(client, cliente_headers, crear_producto().id)

    assert client.get("/api/admin/pedidos").status_code == 401
    assert client.get("/api/admin/pedidos", headers=cliente_headers).status_code == 403
    resp = client.put(f"/api/admin/pedidos/{pedido_id}", json={"estado": "aprobado"}, headers=cliente_headers)
    assert resp.status_code == 403
    db.expire_all()
    assert db.get(Pedido, pedido_id).estado == "pendiente"
