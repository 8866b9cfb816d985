from fastapi import Request

from services.account_service import AccountService
from services.rate_cache import RateCache


def get_rate_cache(request: Request) -> RateCache:
    return request.app.state.rate_cache


def get_account_service(request: Request) -> AccountService:
    return request.app.state.account_service
