from __future__ import annotations

import json
import logging
import math
import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Protocol, Sequence
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.engine import Engine

from backend.transaction_store import replace_all_transactions

logger = logging.getLogger(__name__)

IMAGE_URL_PATTERN = re.compile(r'^(http|https)://[^ "]+$')


class SeedSourceUnavailable(RuntimeError):
    """Raised when the seed source cannot be fetched or is not a JSON list."""


class InvalidSeedItem(ValueError):
    """Raised when one item of the seed data cannot become a transaction."""

    def __init__(self, index: int, reason: str) -> None:
        super().__init__(f"Seed item {index} is invalid: {reason}")
        self.index = index
        self.reason = reason


class SeedSource(Protocol):
    def fetch(self) -> list[Mapping[str, Any]]: ...


@dataclass(frozen=True)
class StaticSeedSource:
    """Deterministic, in-memory seed items."""

    items: Sequence[Mapping[str, Any]] = ()

    def fetch(self) -> list[Mapping[str, Any]]:
        return [dict(item) for item in self.items]


@dataclass(frozen=True)
class RemoteSeedSource:
    url: str
    timeout_seconds: float = 10.0

    def fetch(self) -> list[Mapping[str, Any]]:
        try:
            with urlopen(self.url, timeout=self.timeout_seconds) as response:
                payload = json.load(response)
        except (HTTPError, URLError, TimeoutError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SeedSourceUnavailable("Failed to fetch data from the third-party API") from exc

        if not isinstance(payload, list):
            raise SeedSourceUnavailable("Seed source response is not a JSON list")
        return payload


class SeedItem(BaseModel):
    title: str
    description: str
    price: Decimal
    category: str
    sold: bool | None = None
    date_of_sale: datetime = Field(alias="dateOfSale")
    image: str

    @classmethod
    def validate_payload(cls, payload: "SeedItem") -> "SeedItem":
        payload.title = payload.title.strip()
        payload.description = payload.description.strip()
        payload.category = payload.category.strip()
        payload.image = payload.image.strip()
        if not payload.title:
            raise ValueError("Title is required.")
        if not payload.description:
            raise ValueError("Description is required.")
        if not payload.category:
            raise ValueError("Category is required.")
        if not payload.price.is_finite():
            raise ValueError(f"{payload.price} is not a valid number!")
        if payload.price < 0:
            raise ValueError("Price cannot be negative.")
        if not IMAGE_URL_PATTERN.match(payload.image):
            raise ValueError(f"{payload.image} is not a valid URL!")
        return payload


def normalize_sale_timestamp(value: datetime) -> datetime:
    """Return a naive UTC datetime; offsets are applied before dropping them."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def build_transaction_rows(items: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for index, raw_item in enumerate(items):
        if not isinstance(raw_item, Mapping):
            raise InvalidSeedItem(index, "expected a JSON object.")
        payload = dict(raw_item)
        price = payload.get("price")
        if isinstance(price, float):
            if not math.isfinite(price):
                raise InvalidSeedItem(index, f"{price} is not a valid number!")
            # repr keeps 109.95 as 109.95.
            payload["price"] = Decimal(repr(price))
        try:
            item = SeedItem.validate_payload(SeedItem.model_validate(payload))
        except ValidationError as exc:
            raise InvalidSeedItem(index, _summarize_validation_error(exc)) from exc
        except ValueError as exc:
            raise InvalidSeedItem(index, str(exc)) from exc
        rows.append(
            {
                "id": str(uuid.uuid4()),
                "title": item.title,
                "description": item.description,
                "price": item.price,
                "category": item.category,
                "sold": bool(item.sold),
                "date_of_sale": normalize_sale_timestamp(item.date_of_sale),
                "image": item.image,
            }
        )
    return rows


def initialize_transactions(engine: Engine, source: SeedSource) -> int:
    """Replace the whole store with the items served by ``source``.

    The fetch happens before anything is deleted, and the delete and insert
    share one database transaction.
    """
    items = source.fetch()
    rows = build_transaction_rows(items)
    with engine.begin() as conn:
        return replace_all_transactions(conn, rows)


@dataclass
class SeedGate:
    """Tracks whether the store has been seeded and serializes seed runs."""

    PENDING = "pending"
    RUNNING = "running"
    READY = "ready"
    FAILED = "failed"

    state: str = PENDING
    last_count: int | None = None
    last_error: str | None = None
    _run_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_ready(self) -> bool:
        return self.state == self.READY

    def mark_ready(self) -> None:
        self.state = self.READY

    def run(self, engine: Engine, source: SeedSource) -> int:
        with self._run_lock:
            # An open gate stays open while a re-seed runs; the old rows stay readable.
            if self.state != self.READY:
                self.state = self.RUNNING
            logger.info("seed_started state=%s source=%s", self.state, type(source).__name__)
            try:
                count = initialize_transactions(engine, source)
            except Exception as exc:
                self.last_error = str(exc)
                if self.state != self.READY:
                    self.state = self.FAILED
                logger.error("seed_failed state=%s error=%s", self.state, exc)
                raise
            self.state = self.READY
            self.last_count = count
            self.last_error = None
            logger.info("seed_completed count=%s", count)
            return count


def _summarize_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "item"
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts)
