"""Browser-based administration interface for rates, audit trail and reports."""
from __future__ import annotations

import json
import logging
import os
import sqlite3
from dataclasses import asdict
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .auth import AuthService, ResetNotifier
from .config import Settings, env_flag, load_settings, resolve_settings_path, trusted_proxy_hosts
from .constants import (
    DATE_FORMATS,
    DEFAULT_AUDIT_PAGE_SIZE,
    EXPORT_FORMATS,
    HISTORY_RANGES,
    LANGUAGES,
    PAGE_SIZES,
    RATE_ENTITY,
    RATE_PAGE_SIZE,
    THEMES,
    TIME_RANGES,
    TIMEZONES,
    ActionType,
)
from .dashboard import QUICK_LINKS, build_dashboard
from .database import Database, resolve_database_path
from .errors import (
    DashboardError,
    ExportError,
    FormValidationError,
    ImportValidationError,
    RateNotFoundError,
    ResetTokenError,
)
from .exports import ExportFile, build_audit_export
from .formatters import format_currency, format_date, format_number, format_relative_time
from .models import AuditFilters, NotificationPreferences, SystemPreferences, User
from .rates import RateService, history_stats, impact_analysis, rate_history, search_rates, today_in
from .reports import REPORT_TABS, ReportService, build_report_export, get_tab, report_tables
from .spreadsheets import ImportRow, build_import_template, build_rate_export, parse_rate_import
from .validation import PASSWORD_REQUIREMENTS, RateForm

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

RATE_TABS = ("current", "archived", "history", "analysis", "import")
SETTINGS_TABS = ("account", "password", "notifications", "system")
AUDIT_FILTER_KEYS = ("start", "end", "action", "uid", "details", "order")
DEFAULT_REPORT_RANGE = "6months"

logger = logging.getLogger("enervisio.web")


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _download(export: ExportFile) -> Response:
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


def create_app(
    *,
    database: Optional[Database] = None,
    settings: Optional[Settings] = None,
    session_secret: Optional[str] = None,
    initialize_database: bool = False,
    notifier: Optional[ResetNotifier] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """Create the administration web application."""

    if settings is None:
        settings = load_settings(resolve_settings_path(os.getenv("ENERVISIO_SETTINGS")))

    if database is None:
        db_path = resolve_database_path(os.getenv("ENERVISIO_DB_PATH"))
        database = Database(db_path, timezone_name=settings.default_timezone)
        database.initialize()
    elif initialize_database:
        database.initialize()

    if session_secret is None:
        session_secret = os.getenv("ENERVISIO_SESSION_SECRET")
    if not session_secret:
        raise RuntimeError("ENERVISIO_SESSION_SECRET must be configured to use the web interface")

    now_fn = clock or (lambda: datetime.now(timezone.utc))

    auth = AuthService(database, settings, notifier=notifier)
    rate_service = RateService(database, settings)
    report_service = ReportService(database, settings)

    app = FastAPI(
        title=f"{settings.product_name} Administration",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=trusted_proxy_hosts())
    app.state.database = database
    app.state.settings = settings
    app.state.auth = auth

    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        session_cookie="enervisio_session",
        https_only=env_flag(os.getenv("ENERVISIO_SESSION_SECURE"), False),
        same_site="lax",
        max_age=60 * 60 * 24,
    )

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    templates.env.filters["datefmt"] = format_date
    templates.env.filters["currency"] = format_currency
    templates.env.filters["number"] = format_number
    templates.env.filters["relative_time"] = format_relative_time
    templates.env.globals.update(
        branding=settings.branding,
        company_name=settings.company_name,
        product_name=settings.product_name,
        date_formats=DATE_FORMATS,
        export_formats=EXPORT_FORMATS,
        page_sizes=PAGE_SIZES,
        time_ranges=TIME_RANGES,
        history_ranges=HISTORY_RANGES,
        timezones=TIMEZONES,
        languages=LANGUAGES,
        themes=THEMES,
        now=now_fn,
    )

    def _flash(request: Request, message: str, *, category: str = "info") -> None:
        messages = request.session.get("flash_messages")
        if not isinstance(messages, list):
            messages = []
        messages.append({"message": message, "category": category})
        request.session["flash_messages"] = messages

    def _consume_flash(request: Request) -> List[Dict[str, str]]:
        messages = request.session.pop("flash_messages", [])
        if isinstance(messages, list):
            return messages
        return []

    def _fetch_user(user_id: object) -> Optional[User]:
        try:
            numeric_id = int(user_id)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None
        return database.get_user(numeric_id)

    def _get_current_user(request: Request) -> Optional[User]:
        user_id = request.session.get("user_id")
        if not user_id:
            return None
        user = _fetch_user(user_id)
        if user is None or not user.is_admin:
            request.session.clear()
            return None

        now = now_fn().timestamp()
        last_seen = request.session.get("last_seen")
        if isinstance(last_seen, (int, float)) and now - last_seen > settings.session_timeout.total_seconds():
            database.log_action(
                ActionType.LOGOUT,
                user.id,
                {"email": user.email, "reason": "SESSION_TIMEOUT"},
            )
            logger.info("Session for %s expired after inactivity", user.email)
            request.session.clear()
            _flash(
                request,
                "Your session has expired due to inactivity. Please sign in again.",
                category="error",
            )
            return None
        request.session["last_seen"] = now
        return user

    def _redirect(url: object) -> RedirectResponse:
        return RedirectResponse(str(url), status_code=status.HTTP_303_SEE_OTHER)

    def _redirect_to_login(request: Request) -> RedirectResponse:
        return _redirect(request.url_for("show_login"))

    def _render(
        request: Request,
        template: str,
        user: Optional[User],
        *,
        status_code: int = status.HTTP_200_OK,
        **context: object,
    ) -> HTMLResponse:
        prefs = user.system if user is not None else SystemPreferences(timezone=settings.default_timezone)
        payload: Dict[str, object] = {
            "user": user,
            "prefs": prefs,
            "messages": _consume_flash(request),
        }
        payload.update(context)
        return templates.TemplateResponse(request, template, payload, status_code=status_code)

    def _record_export(user: User, details: Mapping[str, object]) -> None:
        try:
            database.log_action(ActionType.EXPORT, user.id, details)
        except sqlite3.Error:
            logger.exception("Failed to record audit entry for export")

    def _today() -> date:
        return today_in(settings.default_timezone, now_fn())

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    @app.get("/", response_class=HTMLResponse)
    async def root(request: Request):
        if _get_current_user(request) is None:
            return _redirect_to_login(request)
        return _redirect(request.url_for("dashboard"))

    @app.get("/login", response_class=HTMLResponse, name="show_login")
    async def login_form(request: Request):
        if _get_current_user(request) is not None:
            return _redirect(request.url_for("dashboard"))
        email = request.session.pop("login_email", "")
        return _render(request, "login.html", None, email=email)

    @app.post("/login", name="process_login")
    async def process_login(request: Request, email: str = Form(""), password: str = Form("")):
        try:
            user = auth.login(email, password)
        except DashboardError as exc:
            _flash(request, str(exc), category="error")
            request.session["login_email"] = email.strip()
            return _redirect_to_login(request)

        request.session.clear()
        request.session["user_id"] = user.id
        request.session["last_seen"] = now_fn().timestamp()
        return _redirect(request.url_for("dashboard"))

    @app.get("/logout", name="logout")
    async def logout(request: Request):
        user = _get_current_user(request)
        if user is not None:
            auth.logout(user)
        request.session.clear()
        _flash(request, "You have been signed out.", category="success")
        return _redirect_to_login(request)

    @app.get("/forgot-password", response_class=HTMLResponse, name="forgot_password")
    async def forgot_password_form(request: Request):
        return _render(request, "forgot_password.html", None)

    @app.post("/forgot-password", name="process_forgot_password")
    async def process_forgot_password(request: Request, email: str = Form("")):
        def _reset_link(token: str) -> str:
            return str(request.url_for("reset_password_form").include_query_params(token=token))

        try:
            auth.request_password_reset(email, _reset_link)
        except DashboardError as exc:
            _flash(request, str(exc), category="error")
        else:
            _flash(
                request,
                "Password reset email sent. Check your inbox for further instructions.",
                category="success",
            )
        return _redirect(request.url_for("forgot_password"))

    @app.get("/reset-password", response_class=HTMLResponse, name="reset_password_form")
    async def reset_password_form(request: Request, token: str = ""):
        valid = False
        try:
            auth.check_reset_token(token)
            valid = True
        except ResetTokenError as exc:
            _flash(request, f"{exc} Please request a new one.", category="error")
        return _render(
            request,
            "reset_password.html",
            None,
            token=token,
            valid=valid,
            requirements=PASSWORD_REQUIREMENTS,
        )

    @app.post("/reset-password", name="process_reset_password")
    async def process_reset_password(
        request: Request,
        token: str = Form(""),
        new_password: str = Form(""),
        confirm_password: str = Form(""),
    ):
        try:
            auth.reset_password(token, new_password, confirm_password)
        except DashboardError as exc:
            _flash(request, str(exc), category="error")
            return _redirect(request.url_for("reset_password_form").include_query_params(token=token))
        _flash(
            request,
            "Password has been reset successfully. You can now sign in with your new password.",
            category="success",
        )
        return _redirect_to_login(request)

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------
    @app.get("/dashboard", response_class=HTMLResponse, name="dashboard")
    async def dashboard(request: Request):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        summary = build_dashboard(database, settings, now_fn())
        return _render(request, "dashboard.html", user, summary=summary, quick_links=QUICK_LINKS)

    # ------------------------------------------------------------------
    # Rates
    # ------------------------------------------------------------------
    @app.get("/rates", response_class=HTMLResponse, name="rates_page")
    async def rates_page(request: Request):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)

        params = request.query_params
        tab = params.get("tab", "current")
        if tab not in RATE_TABS:
            tab = "current"
        context: Dict[str, object] = {
            "tab": tab,
            "current_rate": database.get_current_rate(),
            "brackets": settings.brackets,
        }

        if tab in ("current", "archived"):
            start = _parse_date(params.get("start"))
            end = _parse_date(params.get("end"))
            term = params.get("q", "")
            try:
                page = database.list_rates(
                    archived=tab == "archived",
                    start=start,
                    end=end,
                    limit=RATE_PAGE_SIZE,
                    after=params.get("after") or None,
                    before=params.get("before") or None,
                )
            except ValueError as exc:
                _flash(request, str(exc), category="error")
                return _redirect(request.url_for("rates_page").include_query_params(tab=tab))
            base_url = request.url.remove_query_params(["after", "before"])
            context.update(
                page=page,
                rates=search_rates(page.items, term),
                search=term,
                start=start,
                end=end,
                next_url=str(base_url.include_query_params(after=page.next_cursor)) if page.next_cursor else None,
                prev_url=str(base_url.include_query_params(before=page.prev_cursor)) if page.prev_cursor else None,
            )
        elif tab == "history":
            history_range = params.get("range", "1year")
            points = rate_history(database.list_all_rates(ascending=True), history_range, _today())
            context.update(
                history_range=history_range,
                points=points,
                stats=history_stats(points),
                max_rate=max((point.rate3 for point in points), default=0.0),
            )
        elif tab == "analysis":
            current = context["current_rate"]
            summary = None
            simulated: Optional[float] = None
            if current is not None:
                simulated = current.kwh_rate  # type: ignore[attr-defined]
                raw = params.get("simulated")
                if raw:
                    try:
                        simulated = float(raw)
                    except ValueError:
                        _flash(request, "Simulated rate must be a valid number.", category="error")
                try:
                    summary = impact_analysis(
                        current.kwh_rate,  # type: ignore[attr-defined]
                        float(simulated),
                        settings.consumption_profile,
                    )
                except ValueError as exc:
                    _flash(request, str(exc), category="error")
            context.update(simulated=simulated, impact=summary)

        return _render(request, "rates.html", user, **context)

    def _render_rate_form(
        request: Request,
        user: User,
        *,
        rate_id: Optional[int],
        values: Mapping[str, object],
        errors: Optional[Mapping[str, str]] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        return _render(
            request,
            "rate_form.html",
            user,
            status_code=status_code,
            rate_id=rate_id,
            values=values,
            errors=errors or {},
            brackets=settings.brackets,
        )

    @app.get("/rates/new", response_class=HTMLResponse, name="rates_new")
    async def rates_new(request: Request):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        values = {"kwh_rate": "", "effective_from": _today().isoformat(), "notes": ""}
        return _render_rate_form(request, user, rate_id=None, values=values)

    @app.post("/rates/new", name="rates_create")
    async def rates_create(
        request: Request,
        kwh_rate: str = Form(""),
        effective_from: str = Form(""),
        notes: str = Form(""),
    ):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        values = {"kwh_rate": kwh_rate, "effective_from": effective_from, "notes": notes}
        try:
            form = RateForm.from_form(values)
        except FormValidationError as exc:
            return _render_rate_form(
                request,
                user,
                rate_id=None,
                values=values,
                errors=exc.errors,
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        rate_service.add_rate(user, form)
        _flash(request, "Rate added successfully.", category="success")
        return _redirect(request.url_for("rates_page"))

    @app.get("/rates/{rate_id}/edit", response_class=HTMLResponse, name="rates_edit")
    async def rates_edit(request: Request, rate_id: int):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        rate = database.get_rate(rate_id)
        if rate is None:
            _flash(request, "Rate not found.", category="error")
            return _redirect(request.url_for("rates_page"))
        values = {
            "kwh_rate": rate.kwh_rate,
            "effective_from": rate.effective_from.isoformat(),
            "notes": rate.notes,
        }
        return _render_rate_form(request, user, rate_id=rate.id, values=values)

    @app.post("/rates/{rate_id}/edit", name="rates_update")
    async def rates_update(
        request: Request,
        rate_id: int,
        kwh_rate: str = Form(""),
        effective_from: str = Form(""),
        notes: str = Form(""),
    ):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        values = {"kwh_rate": kwh_rate, "effective_from": effective_from, "notes": notes}
        try:
            form = RateForm.from_form(values)
            rate_service.edit_rate(user, rate_id, form)
        except FormValidationError as exc:
            return _render_rate_form(
                request,
                user,
                rate_id=rate_id,
                values=values,
                errors=exc.errors,
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        except RateNotFoundError:
            _flash(request, "Rate not found.", category="error")
            return _redirect(request.url_for("rates_page"))
        _flash(request, "Rate updated successfully.", category="success")
        return _redirect(request.url_for("rates_page"))

    @app.get("/rates/export", name="rates_export")
    async def rates_export(request: Request):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        rates = database.list_all_rates()
        try:
            export = build_rate_export(rates, _today())
        except ExportError as exc:
            _flash(request, str(exc), category="error")
            return _redirect(request.url_for("rates_page").include_query_params(tab="import"))
        _record_export(
            user,
            {"entity": RATE_ENTITY, "format": "xlsx", "count": len(rates), "file_name": export.filename},
        )
        return _download(export)

    @app.get("/rates/template", name="rates_template")
    async def rates_template(request: Request):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        return _download(build_import_template(_today(), settings.brackets))

    @app.post("/rates/import/preview", response_class=HTMLResponse, name="rates_import_preview")
    async def rates_import_preview(request: Request, file: UploadFile = File(...)):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        payload = await file.read()
        try:
            rows = parse_rate_import(payload)
        except DashboardError as exc:
            _flash(request, str(exc), category="error")
            return _redirect(request.url_for("rates_page").include_query_params(tab="import"))
        return _render(
            request,
            "rate_import_preview.html",
            user,
            rows=rows,
            filename=file.filename or "",
            payload=json.dumps([row.to_payload() for row in rows]),
        )

    @app.post("/rates/import", name="rates_import")
    async def rates_import(request: Request, payload: str = Form(""), filename: str = Form("")):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        try:
            items = json.loads(payload)
        except ValueError:
            items = []
        if not isinstance(items, list):
            items = []
        try:
            rows = [ImportRow.from_payload(item, number) for number, item in enumerate(items, start=1)]
        except ImportValidationError as exc:
            _flash(request, str(exc), category="error")
            return _redirect(request.url_for("rates_page").include_query_params(tab="import"))
        if not rows:
            _flash(request, "No valid data to import.", category="error")
            return _redirect(request.url_for("rates_page").include_query_params(tab="import"))
        imported = rate_service.import_rates(
            user,
            [asdict(row) for row in rows],
            filename=filename or None,
        )
        _flash(request, f"Successfully imported {len(imported)} rates.", category="success")
        return _redirect(request.url_for("rates_page"))

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------
    def _audit_filters(request: Request, params: Mapping[str, str]) -> AuditFilters:
        start = _parse_date(params.get("start"))
        end = _parse_date(params.get("end"))
        if start and end and start > end:
            _flash(request, "Start date must be on or before the end date.", category="error")
            start = end = None
        return AuditFilters(
            start=start,
            end=end,
            action=params.get("action") or None,
            uid=_parse_int(params.get("uid")),
            details_contains=(params.get("details") or "").strip() or None,
        )

    @app.get("/audit", response_class=HTMLResponse, name="audit_page")
    async def audit_page(request: Request):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)

        params = request.query_params
        filters = _audit_filters(request, params)
        order = "asc" if params.get("order") == "asc" else "desc"
        page_size = _parse_int(params.get("page_size")) or DEFAULT_AUDIT_PAGE_SIZE
        if page_size not in PAGE_SIZES:
            page_size = DEFAULT_AUDIT_PAGE_SIZE

        try:
            page = database.query_audit(
                filters,
                descending=order == "desc",
                limit=page_size,
                after=params.get("after") or None,
                before=params.get("before") or None,
            )
        except ValueError as exc:
            _flash(request, str(exc), category="error")
            return _redirect(request.url_for("audit_page"))

        base_url = request.url.remove_query_params(["after", "before"])
        filter_params = {
            key: value
            for key, value in params.items()
            if key in AUDIT_FILTER_KEYS and value
        }
        return _render(
            request,
            "audit.html",
            user,
            page=page,
            filters=filters,
            filter_params=filter_params,
            order=order,
            page_size=page_size,
            actions=sorted(set(ActionType.all()) | set(database.distinct_audit_actions())),
            users=database.list_users(),
            next_url=str(base_url.include_query_params(after=page.next_cursor)) if page.next_cursor else None,
            prev_url=str(base_url.include_query_params(before=page.prev_cursor)) if page.prev_cursor else None,
        )

    @app.get("/audit/export", name="audit_export")
    async def audit_export(request: Request):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)

        params = request.query_params
        scope_filtered = params.get("scope", "filtered") == "filtered"
        filters = _audit_filters(request, params) if scope_filtered else AuditFilters()
        descending = params.get("order") != "asc"
        fmt = params.get("format", "xlsx")
        include_headers = params.get("include_headers", "1") not in {"0", "false", "off", ""}

        records = database.iter_audit(filters, descending=descending)
        try:
            export = build_audit_export(
                records,
                fmt=fmt,
                scope_filtered=scope_filtered,
                descending=descending,
                include_headers=include_headers,
                branding=settings.branding,
                now=now_fn(),
                timezone_name=user.system.timezone,
            )
        except ExportError as exc:
            _flash(request, str(exc), category="error")
            back = request.url_for("audit_page").include_query_params(
                **{key: value for key, value in params.items() if key in AUDIT_FILTER_KEYS}
            )
            return _redirect(back)

        _record_export(
            user,
            {
                "entity": "audittrail",
                "format": fmt,
                "scope": "filtered" if scope_filtered else "all",
                "count": len(records),
                "file_name": export.filename,
            },
        )
        return _download(export)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------
    @app.get("/reports", response_class=HTMLResponse, name="reports_page")
    async def reports_page(request: Request):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        params = request.query_params
        tab = get_tab(params.get("tab"))
        time_range = params.get("range", DEFAULT_REPORT_RANGE)
        if time_range not in dict(TIME_RANGES):
            time_range = DEFAULT_REPORT_RANGE
        data = report_service.build(time_range, now_fn())
        tables = report_tables(data)
        return _render(
            request,
            "reports.html",
            user,
            tab=tab,
            tabs=REPORT_TABS,
            time_range=time_range,
            data=data,
            table=tables[tab.key],
            show_export=params.get("action") == "export",
            max_activity=max((row.total for row in data.user_activity), default=0),
            max_usage=max((row.total for row in data.usage_patterns), default=0),
            max_rate=max((point.rate for point in data.rates), default=0.0),
        )

    @app.get("/reports/export", name="reports_export")
    async def reports_export(request: Request):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        params = request.query_params
        tab = get_tab(params.get("tab"))
        time_range = params.get("range", DEFAULT_REPORT_RANGE)
        fmt = params.get("format", "xlsx")
        include_all = params.get("include_all") in {"1", "true", "on"}

        data = report_service.build(time_range, now_fn())
        try:
            export = build_report_export(
                data,
                tab_key=tab.key,
                fmt=fmt,
                include_all=include_all,
                branding=settings.branding,
                now=now_fn(),
                timezone_name=settings.default_timezone,
            )
        except ExportError as exc:
            _flash(request, str(exc), category="error")
            return _redirect(
                request.url_for("reports_page").include_query_params(tab=tab.key, range=time_range)
            )
        _record_export(
            user,
            {
                "entity": "report",
                "report_type": "full_report" if include_all else tab.file_key,
                "time_range": time_range,
                "format": fmt,
                "file_name": export.filename,
            },
        )
        return _download(export)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def _settings_redirect(request: Request, tab: str) -> RedirectResponse:
        return _redirect(request.url_for("settings_page").include_query_params(tab=tab))

    @app.get("/settings", response_class=HTMLResponse, name="settings_page")
    async def settings_page(request: Request):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        tab = request.query_params.get("tab", "account")
        if tab not in SETTINGS_TABS:
            tab = "account"
        return _render(
            request,
            "settings.html",
            user,
            tab=tab,
            requirements=PASSWORD_REQUIREMENTS,
            history_size=settings.password_history_size,
        )

    @app.post("/settings/account", name="update_account")
    async def update_account(request: Request, display_name: str = Form("")):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        try:
            database.update_display_name(user.id, display_name)
        except ValueError as exc:
            _flash(request, str(exc), category="error")
        else:
            _flash(request, "Profile updated successfully.", category="success")
        return _settings_redirect(request, "account")

    @app.post("/settings/password", name="update_password")
    async def update_password(
        request: Request,
        current_password: str = Form(""),
        new_password: str = Form(""),
        confirm_password: str = Form(""),
    ):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        try:
            auth.change_password(user, current_password, new_password, confirm_password)
        except DashboardError as exc:
            _flash(request, str(exc), category="error")
        else:
            _flash(request, "Password updated successfully.", category="success")
        return _settings_redirect(request, "password")

    @app.post("/settings/notifications", name="update_notifications")
    async def update_notifications(request: Request):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        form = await request.form()
        preferences = NotificationPreferences(
            email_alerts="email_alerts" in form,
            system_notifications="system_notifications" in form,
            rate_change_alerts="rate_change_alerts" in form,
            security_alerts="security_alerts" in form,
        )
        database.update_notification_preferences(user.id, preferences)
        _flash(request, "Notification preferences saved.", category="success")
        return _settings_redirect(request, "notifications")

    @app.post("/settings/system", name="update_system")
    async def update_system(
        request: Request,
        timezone_name: str = Form("Asia/Manila", alias="timezone"),
        date_format: str = Form("MM/dd/yyyy"),
        language: str = Form("en"),
        theme: str = Form("light"),
    ):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        if (
            timezone_name not in dict(TIMEZONES)
            or date_format not in DATE_FORMATS.values()
            or language not in dict(LANGUAGES)
            or theme not in dict(THEMES)
        ):
            _flash(request, "Invalid system preference selected.", category="error")
            return _settings_redirect(request, "system")
        database.update_system_preferences(
            user.id,
            SystemPreferences(
                timezone=timezone_name,
                date_format=date_format,
                language=language,
                theme=theme,
            ),
        )
        _flash(request, "System preferences saved.", category="success")
        return _settings_redirect(request, "system")

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            user = _fetch_user(request.session.get("user_id")) if "session" in request.scope else None
            return _render(request, "not_found.html", user, status_code=status.HTTP_404_NOT_FOUND)
        return Response(content=str(exc.detail), status_code=exc.status_code)

    return app


__all__ = ["create_app"]
