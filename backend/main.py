import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from backend.config import Settings, configure_logging, load_settings
from backend.month_filter import InvalidMonth, parse_month
from backend.seed_loader import (
    InvalidSeedItem,
    RemoteSeedSource,
    SeedGate,
    SeedSource,
    SeedSourceUnavailable,
)
from backend.transaction_queries import (
    DEFAULT_PAGE,
    DEFAULT_PER_PAGE,
    CategoryCount,
    PriceRangeCount,
    SalesStatistics,
    TransactionRecord,
    fetch_category_breakdown,
    fetch_dashboard,
    fetch_price_histogram,
    fetch_statistics,
    list_transactions_page,
)
from backend.transaction_store import create_store_engine, init_store

logger = logging.getLogger(__name__)


class TransactionApiError(Exception):
    def __init__(self, status_code: int, error: str, details: str | None = None) -> None:
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TransactionResponse(ApiModel):
    id: str
    title: str
    description: str
    price: float
    category: str
    sold: bool
    date_of_sale: datetime
    image: str


class TransactionListResponse(ApiModel):
    transactions: list[TransactionResponse]
    total: int


class StatisticsResponse(ApiModel):
    total_sales: float
    total_sold_items: int
    total_not_sold_items: int


class PriceRangeResponse(ApiModel):
    range: str
    count: int


class CategoryCountResponse(ApiModel):
    category: str
    count: int


class CombinedResponse(ApiModel):
    statistics: StatisticsResponse
    bar_chart: list[PriceRangeResponse]
    pie_chart: list[CategoryCountResponse]


class InitializeResponse(ApiModel):
    message: str
    count: int


def to_transaction_response(record: TransactionRecord) -> TransactionResponse:
    # Stored timestamps are naive UTC.
    date_of_sale = record.date_of_sale
    if date_of_sale.tzinfo is None:
        date_of_sale = date_of_sale.replace(tzinfo=timezone.utc)
    return TransactionResponse(
        id=record.id,
        title=record.title,
        description=record.description,
        price=float(record.price),
        category=record.category,
        sold=record.sold,
        date_of_sale=date_of_sale,
        image=record.image,
    )


def to_statistics_response(result: SalesStatistics) -> StatisticsResponse:
    return StatisticsResponse(
        total_sales=float(result.total_sales),
        total_sold_items=result.total_sold_items,
        total_not_sold_items=result.total_not_sold_items,
    )


def to_price_range_responses(result: list[PriceRangeCount]) -> list[PriceRangeResponse]:
    return [PriceRangeResponse(range=entry.range, count=entry.count) for entry in result]


def to_category_responses(result: list[CategoryCount]) -> list[CategoryCountResponse]:
    return [CategoryCountResponse(category=entry.category, count=entry.count) for entry in result]


def resolve_month(value: str | None) -> int:
    try:
        return parse_month(value)
    except InvalidMonth as exc:
        raise TransactionApiError(400, "Invalid month.", str(exc)) from exc


def require_ready_store(request: Request) -> Engine:
    gate: SeedGate = request.app.state.seed_gate
    if not gate.is_ready:
        details = f"Seed state is '{gate.state}'."
        if gate.last_error:
            details = f"{details} Last error: {gate.last_error}"
        raise TransactionApiError(503, "Transaction store is not ready.", details)
    return request.app.state.engine


router = APIRouter(prefix="/api/transactions", tags=["transactions"])


@router.get(
    "/initialize",
    response_model=InitializeResponse,
    summary="Initialize the database with transaction data",
)
def initialize_database(request: Request) -> InitializeResponse:
    gate: SeedGate = request.app.state.seed_gate
    try:
        count = gate.run(request.app.state.engine, request.app.state.seed_source)
    except (SeedSourceUnavailable, InvalidSeedItem, SQLAlchemyError) as exc:
        logger.exception("initialize_failed")
        raise TransactionApiError(500, "Error initializing database.", str(exc)) from exc
    return InitializeResponse(message="Database initialized successfully!", count=count)


@router.get(
    "",
    response_model=TransactionListResponse,
    summary="List transactions with search and pagination",
)
@router.get("/", response_model=TransactionListResponse, include_in_schema=False)
def list_transactions(
    request: Request,
    month: str | None = Query(None, description="Month name or 1-12; defaults to January."),
    page: int = Query(DEFAULT_PAGE),
    per_page: int = Query(DEFAULT_PER_PAGE, alias="perPage"),
    search: str = Query(""),
) -> TransactionListResponse:
    month_index = resolve_month(month)
    engine = require_ready_store(request)
    try:
        with engine.connect() as conn:
            result = list_transactions_page(
                conn,
                month_index,
                page=page,
                per_page=per_page,
                search=search,
            )
    except ValueError as exc:
        raise TransactionApiError(400, "Invalid pagination.", str(exc)) from exc
    except SQLAlchemyError as exc:
        logger.exception("list_transactions_failed month=%s page=%s", month_index, page)
        raise TransactionApiError(500, "Error fetching transactions.", str(exc)) from exc
    return TransactionListResponse(
        transactions=[to_transaction_response(record) for record in result.transactions],
        total=result.total,
    )


@router.get(
    "/statistics",
    response_model=StatisticsResponse,
    summary="Get sales statistics for a month",
)
def statistics(
    request: Request,
    month: str | None = Query(None),
) -> StatisticsResponse:
    month_index = resolve_month(month)
    engine = require_ready_store(request)
    try:
        with engine.connect() as conn:
            result = fetch_statistics(conn, month_index)
    except SQLAlchemyError as exc:
        logger.exception("statistics_failed month=%s", month_index)
        raise TransactionApiError(500, "Error fetching statistics.", str(exc)) from exc
    return to_statistics_response(result)


@router.get(
    "/bar-chart",
    response_model=list[PriceRangeResponse],
    summary="Get transaction counts per price range",
)
def bar_chart(
    request: Request,
    month: str | None = Query(None),
) -> list[PriceRangeResponse]:
    month_index = resolve_month(month)
    engine = require_ready_store(request)
    try:
        with engine.connect() as conn:
            result = fetch_price_histogram(conn, month_index)
    except SQLAlchemyError as exc:
        logger.exception("bar_chart_failed month=%s", month_index)
        raise TransactionApiError(500, "Error fetching bar chart data.", str(exc)) from exc
    return to_price_range_responses(result)


@router.get(
    "/pie-chart",
    response_model=list[CategoryCountResponse],
    summary="Get transaction counts per category",
)
def pie_chart(
    request: Request,
    month: str | None = Query(None),
) -> list[CategoryCountResponse]:
    month_index = resolve_month(month)
    engine = require_ready_store(request)
    try:
        with engine.connect() as conn:
            result = fetch_category_breakdown(conn, month_index)
    except SQLAlchemyError as exc:
        logger.exception("pie_chart_failed month=%s", month_index)
        raise TransactionApiError(500, "Error fetching pie chart data.", str(exc)) from exc
    return to_category_responses(result)


@router.get(
    "/combined-response",
    response_model=CombinedResponse,
    summary="Get statistics, bar chart and pie chart data in one payload",
)
def combined_response(
    request: Request,
    month: str | None = Query(None),
) -> CombinedResponse:
    month_index = resolve_month(month)
    engine = require_ready_store(request)
    try:
        with engine.connect() as conn:
            result = fetch_dashboard(conn, month_index)
    except SQLAlchemyError as exc:
        logger.exception("combined_response_failed month=%s", month_index)
        raise TransactionApiError(500, "Error fetching combined response.", str(exc)) from exc
    return CombinedResponse(
        statistics=to_statistics_response(result.statistics),
        bar_chart=to_price_range_responses(result.bar_chart),
        pie_chart=to_category_responses(result.pie_chart),
    )


async def handle_api_error(request: Request, exc: TransactionApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "details": exc.details},
    )


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
        for error in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request parameters.", "details": details},
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    # Runs in ServerErrorMiddleware, outside CORSMiddleware, so browsers cannot
    # read this body. Known failures must be raised as TransactionApiError.
    logger.exception(
        "unhandled_exception method=%s path=%s exception_type=%s",
        request.method,
        request.url.path,
        type(exc).__name__,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Something went wrong!", "details": str(exc)},
    )


def create_app(
    settings: Settings | None = None,
    *,
    engine: Engine | None = None,
    seed_source: SeedSource | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    store_engine = engine or create_store_engine(settings.database_url)
    source = seed_source or RemoteSeedSource(
        url=settings.seed_source_url,
        timeout_seconds=settings.seed_timeout_seconds,
    )
    gate = SeedGate()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_store(store_engine)
        if settings.seed_on_startup:
            try:
                await run_in_threadpool(gate.run, store_engine, source)
            except (SeedSourceUnavailable, InvalidSeedItem, SQLAlchemyError):
                # Data endpoints answer 503 until /initialize succeeds.
                logger.exception("startup_seed_failed")
        else:
            gate.mark_ready()
        yield

    app = FastAPI(
        title="Transaction API",
        version="1.0.0",
        description="Month-filtered statistics, charts and search over product transactions.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = store_engine
    app.state.seed_source = source
    app.state.seed_gate = gate

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TransactionApiError, handle_api_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "seed": gate.state}

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
