import logging
import threading
from contextlib import asynccontextmanager
from time import perf_counter
from typing import Annotated, Any, AsyncGenerator, Awaitable, Callable

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status

from api.dependencies import get_account_service, get_rate_cache
from config import config
from domain.errors import ProviderError, UsernameTakenError, ValidationError
from services.account_service import AccountService, InMemoryAccountBackend
from services.rate_cache import RateCache, build_rate_cache

logger = logging.getLogger(__name__)

MISSING_CURRENCY = "Base currency and conversion currency must be provided"


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI) -> AsyncGenerator[None, None]:
    settings = config()
    rate_cache = build_rate_cache(settings)
    fastapi_app.state.rate_cache = rate_cache
    fastapi_app.state.account_service = AccountService(InMemoryAccountBackend(chain_id=settings.account_chain_id))
    if settings.warm_up_on_startup:
        threading.Thread(
            target=rate_cache.warm_up,
            args=(settings.warm_up_pairs,),
            name="rate-cache-warm-up",
            daemon=True,
        ).start()
    yield
    rate_cache.close()


convert_router = APIRouter(prefix="/convert")
account_router = APIRouter(prefix="/account")


@convert_router.get("/exch")
def get_exchange_rate(
    cache: Annotated[RateCache, Depends(get_rate_cache)],
    base: str | None = None,
    to: str | None = None,
) -> float:
    if not base or not to:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, MISSING_CURRENCY)
    try:
        return cache.get_rate(base, to)
    except ValidationError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, MISSING_CURRENCY) from exc
    except ProviderError as exc:
        logger.exception("Exchange rate lookup failed for %s to %s", base, to)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to get exchange rate") from exc


@convert_router.get("/convert")
def convert_currencies(
    cache: Annotated[RateCache, Depends(get_rate_cache)],
    base: str | None = None,
    to: str | None = None,
    amount: float = 1.0,
) -> str:
    if not base or not to:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, MISSING_CURRENCY)
    try:
        converted = cache.convert(amount, base, to)
    except ValidationError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, MISSING_CURRENCY) from exc
    except ProviderError as exc:
        logger.exception("Conversion failed for %s %s to %s", amount, base, to)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to convert currencies") from exc
    return f"{converted} {to}"


@convert_router.get("/health")
def get_health_check() -> dict[str, str]:
    return {"status": "ok"}


@account_router.get("/create")
def create_account(
    service: Annotated[AccountService, Depends(get_account_service)],
    username: str | None = None,
) -> dict[str, Any]:
    try:
        account = service.create_account(username)
    except UsernameTakenError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Username already exists") from exc
    except ValidationError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Username must be provided") from exc
    return {
        "paymentAddress": account.payment_address,
        "accountAddress": account.account_address,
        "accountChainId": account.account_chain_id,
    }


app = FastAPI(lifespan=lifespan)
app.include_router(convert_router)
app.include_router(account_router)


@app.middleware("http")
async def log_process_time(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    start_time = perf_counter()
    response = await call_next(request)
    process_time = perf_counter() - start_time
    logger.info("Request time: %s %s: %.4fs", request.method, request.url, process_time)
    return response


@app.get("/health")
def get_health() -> dict[str, str]:
    return {"status": "ok"}
