"""Read-only JSON API for automation clients."""
from __future__ import annotations

import os
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel, Field
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .auth import AuthService
from .config import Settings, load_settings, resolve_settings_path, trusted_proxy_hosts
from .database import Database, resolve_database_path
from .errors import AccessDeniedError, AccountLockedError, AuthenticationError
from .models import AuditFilters, AuditRecord, Rate, User


class RateResponse(BaseModel):
    id: int
    kwh_rate: float
    kwh_rate2: float
    kwh_rate3: float
    effective_from: date
    archived: bool
    updated_at: datetime
    updated_by: Optional[int]
    updated_by_name: str
    notes: str = ""


class RatePageResponse(BaseModel):
    items: List[RateResponse]
    has_more: bool
    next_cursor: Optional[str] = None
    prev_cursor: Optional[str] = None


class AuditRecordResponse(BaseModel):
    id: int
    action: str
    timestamp: datetime
    uid: Optional[int]
    user_name: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class AuditPageResponse(BaseModel):
    items: List[AuditRecordResponse]
    has_more: bool
    next_cursor: Optional[str] = None
    prev_cursor: Optional[str] = None
    total: int


def _rate_to_response(rate: Rate) -> RateResponse:
    return RateResponse(
        id=rate.id,
        kwh_rate=rate.kwh_rate,
        kwh_rate2=rate.kwh_rate2,
        kwh_rate3=rate.kwh_rate3,
        effective_from=rate.effective_from,
        archived=rate.archived,
        updated_at=rate.updated_at,
        updated_by=rate.updated_by,
        updated_by_name=rate.updated_by_name,
        notes=rate.notes,
    )


def _audit_to_response(record: AuditRecord) -> AuditRecordResponse:
    return AuditRecordResponse(
        id=record.id,
        action=record.action,
        timestamp=record.timestamp,
        uid=record.uid,
        user_name=record.user_name,
        details=dict(record.details),
    )


def require_admin_credentials(auth: AuthService) -> Callable[..., Awaitable[User]]:
    """Build a dependency that accepts HTTP Basic credentials of admin accounts only."""

    basic = HTTPBasic(auto_error=False)

    async def _dependency(credentials: Optional[HTTPBasicCredentials] = Depends(basic)) -> User:
        if credentials is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing credentials",
                headers={"WWW-Authenticate": "Basic"},
            )
        try:
            return auth.verify_admin(credentials.username, credentials.password)
        except AccountLockedError as exc:
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(exc)) from exc
        except AccessDeniedError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
        except AuthenticationError as exc:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=str(exc),
                headers={"WWW-Authenticate": "Basic"},
            ) from exc

    return _dependency


def create_app(
    *,
    database: Optional[Database] = None,
    settings: Optional[Settings] = None,
    auth: Optional[AuthService] = None,
) -> FastAPI:
    """Create the JSON API application."""

    if settings is None:
        settings = load_settings(resolve_settings_path(os.getenv("ENERVISIO_SETTINGS")))
    if database is None:
        db_path = resolve_database_path(os.getenv("ENERVISIO_DB_PATH"))
        database = Database(db_path, timezone_name=settings.default_timezone)
        database.initialize()
    if auth is None:
        auth = AuthService(database, settings)

    app = FastAPI(title=f"{settings.product_name} API")
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=trusted_proxy_hosts())
    app.state.database = database

    require_admin = require_admin_credentials(auth)
    router = APIRouter(prefix="/v1", dependencies=[Depends(require_admin)])

    @router.get("/rates/current", response_model=RateResponse)
    async def current_rate() -> RateResponse:
        rate = database.get_current_rate()
        if rate is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No rates recorded")
        return _rate_to_response(rate)

    @router.get("/rates", response_model=RatePageResponse)
    async def list_rates(
        archived: Optional[bool] = None,
        limit: int = Query(10, ge=1, le=100),
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> RatePageResponse:
        try:
            page = database.list_rates(archived=archived, limit=limit, after=after, before=before)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return RatePageResponse(
            items=[_rate_to_response(rate) for rate in page.items],
            has_more=page.has_more,
            next_cursor=page.next_cursor,
            prev_cursor=page.prev_cursor,
        )

    @router.get("/audit", response_model=AuditPageResponse)
    async def list_audit(
        start: Optional[date] = None,
        end: Optional[date] = None,
        action: Optional[str] = None,
        uid: Optional[int] = None,
        details: Optional[str] = None,
        order: str = Query("desc", pattern="^(asc|desc)$"),
        limit: int = Query(20, ge=1, le=100),
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> AuditPageResponse:
        filters = AuditFilters(
            start=start,
            end=end,
            action=action or None,
            uid=uid,
            details_contains=details or None,
        )
        try:
            page = database.query_audit(
                filters,
                descending=order == "desc",
                limit=limit,
                after=after,
                before=before,
            )
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return AuditPageResponse(
            items=[_audit_to_response(record) for record in page.items],
            has_more=page.has_more,
            next_cursor=page.next_cursor,
            prev_cursor=page.prev_cursor,
            total=page.total or 0,
        )

    app.include_router(router)
    return app


__all__ = ["create_app", "require_admin_credentials"]
