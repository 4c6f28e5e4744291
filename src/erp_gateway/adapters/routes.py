"""Inbound route table: public path segments mapped to upstream ERP paths.

Read routes are exposed as ``GET /erp/<resource>`` and forward their query
string. Write routes are exposed as ``POST /erp/<operation>`` and forward
their JSON body. Every operation appears exactly once.
"""

from collections.abc import Iterable
from typing import Any

READ_ROUTES: dict[str, str] = {
    "items": "/items",
    "items/estado": "/obtenerEstadoItems",
    "compras": "/compras",
    "depositos": "/deposito",
    "empresas": "/empresas",
    "facturas": "/facturas",
    "factura/estado": "/obtenerEstadoFactura",
    "pedidos": "/pedidos",
    "listas-precio-venta": "/listaprecioventa",
    "localidades": "/localidades",
    "percepciones": "/percepcionesImpuestos",
    "personal": "/personal",
    "provincias": "/provincias",
    "rubros": "/rubros",
    "subrubros": "/subrubros",
    "sucursales": "/sucursales",
}

WRITE_ROUTES: dict[str, str] = {
    "pedido": "/pedido/nuevopedido",
    "factura": "/factura/nuevaFactura",
    "items/modificar": "/item/nuevoItem",
    "nota-credito": "/notaCredito/nuevaNotaCredito",
    "nota-debito": "/notaDebito/nuevaNotaDebito",
    "cobranza": "/cobranza/nuevaCobranza",
    "pago": "/pago/nuevoPago",
    "remito": "/remito/nuevoRemito",
    "transferencia": "/transferencia/nuevaTransferencia",
    "ajuste-stock": "/ajusteStock/nuevoAjusteStock",
    "movimiento-stock": "/movimientoStock/nuevoMovimientoStock",
}

# Query defaults applied when the caller leaves them out
READ_DEFAULTS: dict[str, dict[str, Any]] = {
    "items": {"limit": 20, "offset": 0},
}


def read_params(resource: str, query: Iterable[tuple[str, str]]) -> dict[str, Any]:
    """Return the upstream query for ``resource``, defaults filled in.

    Repeated keys become lists. Defaulted keys are coerced to integers and
    fall back to the default when missing, zero or not a number.

    Example:
        >>> read_params("items", [("limit", "5"), ("offset", "abc")])
        {'limit': 5, 'offset': 0}
        >>> read_params("facturas", [("idEmpresa", "1"), ("idSucursal", "2"), ("idSucursal", "3")])
        {'idEmpresa': '1', 'idSucursal': ['2', '3']}
    """
    params: dict[str, Any] = {}
    for key, value in query:
        if key not in params:
            params[key] = value
        elif isinstance(params[key], list):
            params[key].append(value)
        else:
            params[key] = [params[key], value]

    for key, default in READ_DEFAULTS.get(resource, {}).items():
        params[key] = _int_or_default(params.get(key), default)
    return params


def _int_or_default(value: Any, default: int) -> int:
    if isinstance(value, list):
        value = value[0]
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number or default


def missing_write_fields(operation: str, body: Any) -> list[str]:
    """Names of the required fields ``body`` lacks for ``operation``.

    Only ``pedido`` has required fields: a truthy ``clienteId`` and a
    non-empty ``items`` list.
    """
    if operation != "pedido":
        return []

    fields = body if isinstance(body, dict) else {}
    missing = []
    if not fields.get("clienteId"):
        missing.append("clienteId")
    items = fields.get("items")
    if not isinstance(items, list) or not items:
        missing.append("items[]")
    return missing
