"""Top-sold ranking computed from paged ERP invoices or orders.

The ranking pages ``/facturas`` (or ``/pedidos``) through ``Gateway.dispatch``,
so every page takes its turn in the rate-limited lane and gets the usual
retries. Each row's detail lines are summed per item id and the items with
the highest quantity are returned.

ERP rows are not uniform: the detail lines, item ids, quantities and names
live under several alternative keys, so each is picked from a list of
candidates.

Examples:
    >>> query = TopSoldQuery.from_query({"idEmpresa": "12", "top": "5"})
    >>> report = await top_sold(gateway, query)
    >>> report.to_response()["top"][0]
    {'itemId': 7, 'nombre': 'Yerba 1kg', 'cantidad': 40}
"""

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, Field

from erp_gateway.core.gateway import Gateway
from erp_gateway.exceptions import InvalidParamsError, UpstreamDispatchError
from erp_gateway.observability.logging import get_logger

logger = get_logger(__name__)

SOURCE_PATHS = {"facturas": "/facturas", "pedidos": "/pedidos"}

# Where ERP rows keep their lines, tried in order
DETAIL_KEYS = (
    "detalle",
    "detalles",
    "renglones",
    "items",
    "lineas",
    "líneas",
    "detalleFactura",
    "detalle_factura",
    "renglon",
    "productos",
    "articulos",
)
ITEM_ID_KEYS = ("itemId", "idItem", "idArticulo", "articuloId", "id", "codigoArticulo")
QUANTITY_KEYS = ("cantidad", "cant", "cantidadFacturada", "cantidadVendida", "unidades")
NAME_KEYS = ("descripcion", "nombre", "detalle", "descripcionArticulo", "nombreArticulo")
ROW_LIST_KEYS = ("data", "facturas", "pedidos", "resultado")


def _int_or(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number or default


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class TopSoldQuery(BaseModel):
    """Parameters of a top-sold ranking.

    Attributes:
        id_empresa: ERP company id (required).
        id_sucursal: Optional branch filter.
        fecha_desde: Optional start date, passed to the ERP as given.
        fecha_hasta: Optional end date, passed to the ERP as given.
        source: Which listing to aggregate.
        top: Ranking length, 1 to 100.
        page_size: Rows requested per page, 50 to 500.
        max_pages: Pages read at most, in case the ERP ignores ``offset``.
    """

    id_empresa: str = Field(..., min_length=1)
    id_sucursal: str | None = None
    fecha_desde: str | None = None
    fecha_hasta: str | None = None
    source: Literal["facturas", "pedidos"] = "facturas"
    top: int = Field(default=10, ge=1, le=100)
    page_size: int = Field(default=200, ge=50, le=500)
    max_pages: int = Field(default=1000, ge=1)

    model_config = {"frozen": True}

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> "TopSoldQuery":
        """Build a query from inbound query-string parameters.

        ``top`` and ``pageSize`` fall back to their defaults when missing or
        not a number and are clamped into range. Any ``source`` other than
        ``pedidos`` means ``facturas``.

        Raises:
            InvalidParamsError: If ``idEmpresa`` is missing.

        Example:
            >>> TopSoldQuery.from_query({"idEmpresa": "1", "top": "500"}).top
            100
        """
        id_empresa = query.get("idEmpresa")
        if not id_empresa:
            raise InvalidParamsError("Missing idEmpresa", ["idEmpresa"])

        source = (query.get("source") or "facturas").lower()
        return cls(
            id_empresa=id_empresa,
            id_sucursal=query.get("idSucursal") or None,
            fecha_desde=query.get("fechaDesde") or None,
            fecha_hasta=query.get("fechaHasta") or None,
            source="pedidos" if source == "pedidos" else "facturas",
            top=_clamp(_int_or(query.get("top"), 10), 1, 100),
            page_size=_clamp(_int_or(query.get("pageSize"), 200), 50, 500),
        )

    def page_params(self, offset: int) -> dict[str, Any]:
        params: dict[str, Any] = {
            "idEmpresa": self.id_empresa,
            "limit": self.page_size,
            "offset": offset,
        }
        if self.fecha_desde:
            params["fechaDesde"] = self.fecha_desde
        if self.fecha_hasta:
            params["fechaHasta"] = self.fecha_hasta
        if self.id_sucursal:
            params["idSucursal"] = self.id_sucursal
        return params


class RankedItem(BaseModel):
    item_id: Any
    nombre: str | None = None
    cantidad: int | float = 0


class TopSoldReport(BaseModel):
    """Result of a top-sold ranking.

    Attributes:
        query: The query that produced the report.
        ranking: Best-selling items, highest quantity first.
        total_items: Distinct items seen across all rows.
        rows_processed: Rows read from the ERP.
        pages: Pages requested from the ERP.
        first_row_keys: Keys of the first row, to diagnose unusual payloads.
        first_line_keys: Keys of the first detail line.
    """

    query: TopSoldQuery
    ranking: list[RankedItem]
    total_items: int = 0
    rows_processed: int = 0
    pages: int = 0
    first_row_keys: list[str] = Field(default_factory=list)
    first_line_keys: list[str] = Field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        """Render the report as the HTTP response body."""
        body: dict[str, Any] = {
            "top": [
                {"itemId": item.item_id, "nombre": item.nombre, "cantidad": item.cantidad}
                for item in self.ranking
            ],
            "total_items": self.total_items,
            "filas_procesadas": self.rows_processed,
            "rango": {
                "fechaDesde": self.query.fecha_desde,
                "fechaHasta": self.query.fecha_hasta,
            },
            "idEmpresa": self.query.id_empresa,
            "source": self.query.source,
            "debug_sample": {
                "first_row_keys": self.first_row_keys,
                "first_line_keys": self.first_line_keys,
            },
        }
        if self.query.id_sucursal:
            body["idSucursal"] = self.query.id_sucursal
        return body


def page_rows(page: Any) -> list[Any]:
    """Rows of one listing page: a bare list or a list under a known key."""
    if isinstance(page, list):
        return page
    if isinstance(page, dict):
        for key in ROW_LIST_KEYS:
            if page.get(key):
                return page[key] if isinstance(page[key], list) else []
    return []


def detail_lines(row: Any) -> list[Any]:
    """Detail lines of a row, or [] when it has none."""
    if not isinstance(row, dict):
        return []
    for key in DETAIL_KEYS:
        if isinstance(row.get(key), list):
            return row[key]
    # Otherwise any list of objects
    for value in row.values():
        if isinstance(value, list) and value and isinstance(value[0], dict):
            return value
    return []


def _first_present(line: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if line.get(key) is not None:
            return line[key]
    return None


def _as_number(value: Any) -> int | float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            try:
                return float(text)
            except ValueError:
                return None
    return None


def line_quantity(line: dict[str, Any]) -> int | float:
    """First non-zero numeric quantity of a line, else 0."""
    for key in QUANTITY_KEYS:
        number = _as_number(line.get(key))
        if number:
            return number
    return 0


class _Tally:
    def __init__(self) -> None:
        self.items: dict[Any, RankedItem] = {}
        self.rows = 0
        self.first_row_keys: list[str] | None = None
        self.first_line_keys: list[str] | None = None

    def add_row(self, row: Any) -> None:
        self.rows += 1
        if self.first_row_keys is None and isinstance(row, dict):
            self.first_row_keys = list(row)

        for line in detail_lines(row):
            if not isinstance(line, dict):
                continue
            if self.first_line_keys is None:
                self.first_line_keys = list(line)

            item_id = _first_present(line, ITEM_ID_KEYS)
            quantity = line_quantity(line)
            if not item_id or not quantity or not isinstance(item_id, (str, int, float)):
                continue

            name = _first_present(line, NAME_KEYS)
            if not isinstance(name, str):
                name = None
            item = self.items.get(item_id)
            if item is None:
                self.items[item_id] = RankedItem(item_id=item_id, nombre=name, cantidad=quantity)
            else:
                item.cantidad += quantity
                if not item.nombre:
                    item.nombre = name

    def ranking(self, top: int) -> list[RankedItem]:
        # Stable: ties keep first-seen order
        return sorted(self.items.values(), key=lambda item: item.cantidad, reverse=True)[:top]


async def top_sold(gateway: Gateway, query: TopSoldQuery) -> TopSoldReport:
    """Page the source listing and rank items by quantity sold.

    Pages are requested at increasing offsets until one comes back short
    or empty.

    Raises:
        UpstreamDispatchError: If a page could not be fetched.
        QueueClosedError: If the gateway is shutting down.
    """
    path = SOURCE_PATHS[query.source]
    tally = _Tally()
    offset = 0
    pages = 0

    while pages < query.max_pages:
        result = await gateway.dispatch(path, "GET", query.page_params(offset))
        pages += 1
        if not result.ok:
            raise UpstreamDispatchError(f"Could not read {path} at offset {offset}", result)

        rows = page_rows(result.body)
        for row in rows:
            tally.add_row(row)

        if len(rows) < query.page_size:
            break
        offset += query.page_size
    else:
        logger.warning("analytics.page_limit_reached", path=path, pages=pages)

    report = TopSoldReport(
        query=query,
        ranking=tally.ranking(query.top),
        total_items=len(tally.items),
        rows_processed=tally.rows,
        pages=pages,
        first_row_keys=tally.first_row_keys or [],
        first_line_keys=tally.first_line_keys or [],
    )
    logger.info(
        "analytics.top_sold",
        source=query.source,
        pages=pages,
        rows=tally.rows,
        items=report.total_items,
    )
    return report
