from __future__ import annotations

import logging
from typing import Iterable, Mapping

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    create_engine,
    delete,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

metadata = MetaData()

transactions = Table(
    "transactions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("title", String(255), nullable=False),
    Column("description", Text, nullable=False),
    # Read back as float; the query layer coerces prices to Decimal.
    Column("price", Numeric(12, 2, asdecimal=False), nullable=False),
    Column("category", String(255), nullable=False),
    Column("sold", Boolean, nullable=False, default=False),
    Column("date_of_sale", DateTime, nullable=False, server_default=func.now()),
    Column("image", String(500), nullable=False),
    CheckConstraint("price >= 0", name="ck_transactions_price_non_negative"),
    Index("ix_transactions_date_of_sale", "date_of_sale"),
)


def create_store_engine(database_url: str) -> Engine:
    connect_args = {}
    engine_kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            # One shared connection, otherwise every checkout sees an empty database.
            engine_kwargs["poolclass"] = StaticPool
    return create_engine(database_url, connect_args=connect_args, **engine_kwargs)


def init_store(engine: Engine) -> None:
    metadata.create_all(engine)


def count_transactions(conn: Connection) -> int:
    return int(conn.execute(select(func.count()).select_from(transactions)).scalar_one() or 0)


def replace_all_transactions(conn: Connection, rows: Iterable[Mapping[str, object]]) -> int:
    """Delete every stored transaction and insert ``rows`` in their place.

    Runs on the caller's connection; callers wrap it in ``engine.begin()`` so
    a failed insert rolls the delete back too.
    """
    payload = [dict(row) for row in rows]
    deleted = conn.execute(delete(transactions)).rowcount
    if payload:
        conn.execute(insert(transactions), payload)
    logger.info("transactions_replaced deleted=%s inserted=%s", deleted, len(payload))
    return len(payload)
