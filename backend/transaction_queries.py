"""Month-scoped read queries behind the dashboard endpoints.

Every function takes an open connection and a month index (1-12) produced by
:func:`backend.month_filter.parse_month`. Nothing here writes to the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, func, or_, select
from sqlalchemy.engine import Connection
from sqlalchemy.sql.elements import ColumnElement

from backend.month_filter import month_of_sale
from backend.transaction_store import transactions

ZERO = Decimal("0")
DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 10
MAX_PAGE = 1_000_000
MAX_PER_PAGE = 1000


@dataclass(frozen=True)
class TransactionRecord:
    id: str
    title: str
    description: str
    price: Decimal
    category: str
    sold: bool
    date_of_sale: datetime
    image: str


@dataclass(frozen=True)
class TransactionPage:
    transactions: list[TransactionRecord]
    total: int


@dataclass(frozen=True)
class SalesStatistics:
    total_sales: Decimal = ZERO
    total_sold_items: int = 0
    total_not_sold_items: int = 0


@dataclass(frozen=True)
class PriceRange:
    label: str
    minimum: Decimal
    maximum: Optional[Decimal] = None

    def condition(self) -> ColumnElement[bool]:
        # Both ends inclusive; prices between two integer bounds match no range.
        lower = transactions.c.price >= self.minimum
        if self.maximum is None:
            return lower
        return lower & (transactions.c.price <= self.maximum)


@dataclass(frozen=True)
class PriceRangeCount:
    range: str
    count: int


@dataclass(frozen=True)
class CategoryCount:
    category: str
    count: int


@dataclass(frozen=True)
class DashboardSummary:
    statistics: SalesStatistics
    bar_chart: list[PriceRangeCount]
    pie_chart: list[CategoryCount]


PRICE_RANGES: tuple[PriceRange, ...] = (
    PriceRange("0-100", Decimal("0"), Decimal("100")),
    PriceRange("101-200", Decimal("101"), Decimal("200")),
    PriceRange("201-300", Decimal("201"), Decimal("300")),
    PriceRange("301-400", Decimal("301"), Decimal("400")),
    PriceRange("401-500", Decimal("401"), Decimal("500")),
    PriceRange("501-600", Decimal("501"), Decimal("600")),
    PriceRange("601-700", Decimal("601"), Decimal("700")),
    PriceRange("701-800", Decimal("701"), Decimal("800")),
    PriceRange("801-900", Decimal("801"), Decimal("900")),
    PriceRange("901-above", Decimal("901")),
)


def search_condition(search: str) -> ColumnElement[bool]:
    """Case-insensitive literal substring match on title or description."""
    return or_(
        transactions.c.title.icontains(search, autoescape=True),
        transactions.c.description.icontains(search, autoescape=True),
    )


def list_transactions_page(
    conn: Connection,
    month_index: int,
    page: int = DEFAULT_PAGE,
    per_page: int = DEFAULT_PER_PAGE,
    search: str = "",
) -> TransactionPage:
    if page < 1:
        raise ValueError("page must be 1 or greater.")
    if per_page < 1:
        raise ValueError("perPage must be 1 or greater.")
    if page > MAX_PAGE:
        raise ValueError(f"page must be {MAX_PAGE} or less.")
    if per_page > MAX_PER_PAGE:
        raise ValueError(f"perPage must be {MAX_PER_PAGE} or less.")

    conditions = [month_of_sale(month_index)]
    normalized_search = (search or "").strip()
    if normalized_search:
        conditions.append(search_condition(normalized_search))

    total = conn.execute(
        select(func.count()).select_from(transactions).where(*conditions)
    ).scalar_one()
    rows = conn.execute(
        select(transactions)
        .where(*conditions)
        .order_by(transactions.c.date_of_sale.asc(), transactions.c.id.asc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    ).mappings().all()

    return TransactionPage(
        transactions=[
            TransactionRecord(
                id=row["id"],
                title=row["title"],
                description=row["description"],
                price=_coerce_decimal(row["price"]),
                category=row["category"],
                sold=bool(row["sold"]),
                date_of_sale=row["date_of_sale"],
                image=row["image"],
            )
            for row in rows
        ],
        total=int(total or 0),
    )


def fetch_statistics(conn: Connection, month_index: int) -> SalesStatistics:
    total_sales_expr = func.coalesce(func.sum(transactions.c.price), 0).label("total_sales")
    sold_count_expr = func.coalesce(
        func.sum(case((transactions.c.sold.is_(True), 1), else_=0)), 0
    ).label("total_sold_items")
    total_count_expr = func.count(transactions.c.id).label("total_items")
    row = conn.execute(
        select(total_sales_expr, sold_count_expr, total_count_expr).where(
            month_of_sale(month_index)
        )
    ).mappings().one()

    total_items = int(row["total_items"] or 0)
    total_sold_items = int(row["total_sold_items"] or 0)
    return SalesStatistics(
        total_sales=_coerce_decimal(row["total_sales"] or 0),
        total_sold_items=total_sold_items,
        total_not_sold_items=total_items - total_sold_items,
    )


def fetch_price_histogram(conn: Connection, month_index: int) -> list[PriceRangeCount]:
    bucket_columns = [
        func.coalesce(func.sum(case((price_range.condition(), 1), else_=0)), 0).label(
            f"bucket_{position}"
        )
        for position, price_range in enumerate(PRICE_RANGES)
    ]
    row = conn.execute(
        select(*bucket_columns).select_from(transactions).where(month_of_sale(month_index))
    ).mappings().one()
    return [
        PriceRangeCount(range=price_range.label, count=int(row[f"bucket_{position}"] or 0))
        for position, price_range in enumerate(PRICE_RANGES)
    ]


def fetch_category_breakdown(conn: Connection, month_index: int) -> list[CategoryCount]:
    count_expr = func.count(transactions.c.id).label("count")
    rows = conn.execute(
        select(transactions.c.category, count_expr)
        .where(month_of_sale(month_index))
        .group_by(transactions.c.category)
        .order_by(transactions.c.category.asc())
    ).mappings().all()
    return [CategoryCount(category=row["category"], count=int(row["count"])) for row in rows]


def fetch_dashboard(conn: Connection, month_index: int) -> DashboardSummary:
    return DashboardSummary(
        statistics=fetch_statistics(conn, month_index),
        bar_chart=fetch_price_histogram(conn, month_index),
        pie_chart=fetch_category_breakdown(conn, month_index),
    )


def _coerce_decimal(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))
