import logging
import time
import uuid

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse, RedirectResponse

from .config import get_settings
from .db import init_db
from .deps import new_session_id
from .logging_config import configure_logging
from .metrics import metrics
from .routers import authorization, home
from .services.oauth_errors import (
    AuthorizationDeniedError,
    ExchangeError,
    ForgeryError,
    NoTenantsError,
    RefreshError,
    RemoteApiError,
    TokenValidationError,
    TransientNetworkError,
)


logger = logging.getLogger(__name__)


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ForgeryError)
    async def forgery_handler(request: Request, exc: ForgeryError) -> Response:
        return PlainTextResponse("Cross site forgery attack detected!", status_code=400)

    @app.exception_handler(TokenValidationError)
    async def token_validation_handler(
        request: Request, exc: TokenValidationError
    ) -> Response:
        label = "Access token" if exc.token_kind == "access" else "ID token"
        return PlainTextResponse(f"{label} is not valid", status_code=401)

    @app.exception_handler(AuthorizationDeniedError)
    async def denied_handler(
        request: Request, exc: AuthorizationDeniedError
    ) -> Response:
        return PlainTextResponse(
            f"Xero authorization was not granted: {exc.description or exc.error}",
            status_code=400,
        )

    @app.exception_handler(ExchangeError)
    async def exchange_handler(request: Request, exc: ExchangeError) -> Response:
        return PlainTextResponse(
            "Xero did not accept the authorization code. Please log in again.",
            status_code=400,
        )

    @app.exception_handler(RefreshError)
    async def refresh_handler(request: Request, exc: RefreshError) -> Response:
        return RedirectResponse(url="/login", status_code=302)

    @app.exception_handler(NoTenantsError)
    async def no_tenants_handler(request: Request, exc: NoTenantsError) -> Response:
        return RedirectResponse(url="/no-tenants", status_code=302)

    @app.exception_handler(RemoteApiError)
    async def remote_api_handler(request: Request, exc: RemoteApiError) -> Response:
        metrics.remote_api_errors += 1
        if exc.is_access_revoked:
            # The tenant disconnected this app; send the user back to authorize.
            logger.info("remote_access_revoked_reauthorize", extra={"url": exc.url})
            return RedirectResponse(url="/login", status_code=302)
        logger.warning(
            "remote_api_error",
            extra={"status": exc.status_code, "url": exc.url},
        )
        return PlainTextResponse(
            f"Xero request failed ({exc.status_code})", status_code=502
        )

    @app.exception_handler(TransientNetworkError)
    async def transient_handler(
        request: Request, exc: TransientNetworkError
    ) -> Response:
        return PlainTextResponse(
            "Xero could not be reached. Please try again.", status_code=503
        )


def create_app() -> FastAPI:
    configure_logging()
    try:
        init_db()
    except Exception:
        # Keep serving login/dashboard even if the user table is unavailable.
        logger.exception("init_db_failed_startup_continue")

    app = FastAPI(
        title="Xero Sign-In Sample",
        description="OAuth2 sign-up/sign-in against Xero with a small dashboard.",
        version="0.1.0",
    )

    settings = get_settings()
    cookie_name = settings.session.cookie_name
    cookie_secure = settings.session.cookie_secure
    cookie_max_age = settings.session.ttl_seconds
    logger.info(
        "app_config_summary_sanitized",
        extra={
            "client_configured": bool(settings.xero.client_id),
            "session_backend": settings.session.backend,
            "verify_signatures": settings.xero.verify_signatures,
        },
    )

    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        path = request.url.path
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = rid

        session_id = request.cookies.get(cookie_name)
        issued = not session_id
        request.state.session_id = session_id or new_session_id()

        metrics.total_requests += 1
        start = time.time()
        try:
            response = await call_next(request)
        except Exception:
            metrics.record_route(path, (time.time() - start) * 1000.0, error=True)
            logger.exception("unhandled_request_exception", extra={"path": path})
            raise
        metrics.record_route(
            path, (time.time() - start) * 1000.0, error=response.status_code >= 500
        )

        response.headers["X-Request-ID"] = rid
        if issued:
            response.set_cookie(
                cookie_name,
                request.state.session_id,
                max_age=cookie_max_age,
                httponly=True,
                secure=cookie_secure,
                samesite="lax",
            )
        return response

    _register_exception_handlers(app)
    app.include_router(authorization.router, tags=["authorization"])
    app.include_router(home.router, tags=["home"])

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> dict:
        return {"status": "ok"}

    @app.get("/metrics", include_in_schema=False)
    async def metrics_endpoint() -> dict:
        return metrics.snapshot()

    return app


app = create_app()
