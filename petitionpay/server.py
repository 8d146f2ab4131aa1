from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import (
    BackgroundTasks, Depends, FastAPI, Header, Request
)
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, ORJSONResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import Actor, issue_token, verify
from .config import Settings
from .confirmation import ConfirmationService
from .errors import InvalidCredentials, PetitionPayError, ValidationError
from .helpers import to_iso
from .infra.logs import configure_logging
from .infra.sql import Gated, make_async_engine
from .model.orm import Base, PETITIONER_FIELDS
from .model.petitioners import PetitionerStore
from .notifier import Mailer, Notifier, SmtpMailer


HERE = Path(__file__).parent
templates = Jinja2Templates(directory=str(HERE / "templates"))

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


# ----------------------------
# Process-wide dependencies
# ----------------------------
@dataclass(frozen=True)
class Services:
    """Everything built once at startup and shared by all requests."""
    settings: Settings
    engine: Optional[AsyncEngine] = None
    session_factory: Optional[async_sessionmaker] = None
    gated: Optional[Gated] = None
    notifier: Optional[Notifier] = None


def build_services(settings: Settings,
                   mailer: Optional[Mailer] = None) -> Services:
    engine = session_factory = gated = None
    if settings.database_url:
        engine, session_factory, gated = make_async_engine(
            settings.database_url, **settings.engine_options()
        )
    if mailer is None and not settings.missing("mail_user",
                                               "mail_app_password"):
        mailer = SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.mail_user,
            password=settings.mail_app_password,
            timeout=settings.mail_timeout,
        )
    notifier = None
    if mailer is not None:
        notifier = Notifier(
            mailer,
            form_url=settings.registration_form_url,
            timeout=settings.mail_timeout,
        )
    return Services(settings=settings, engine=engine,
                    session_factory=session_factory, gated=gated,
                    notifier=notifier)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_settings(services: Services = Depends(get_services)) -> Settings:
    return services.settings


async def petitioner_store(
    services: Services = Depends(get_services),
) -> AsyncIterator[PetitionerStore]:
    services.settings.require("database_url")
    async with services.session_factory() as session:
        yield PetitionerStore(db=session, gated=services.gated,
                              timeout=services.settings.store_timeout)


def get_notifier(services: Services = Depends(get_services)) -> Notifier:
    if services.notifier is None:
        services.settings.require("mail_user", "mail_app_password")
    return services.notifier


def current_actor(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> Actor:
    settings.require("jwt_secret")
    return verify(authorization, settings.jwt_secret)


def public_petitioner(rec: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: rec.get(k) for k in PETITIONER_FIELDS}
    out["confirmed_at"] = to_iso(out["confirmed_at"])
    return out


# ----------------------------
# App
# ----------------------------
def create_app(settings: Optional[Settings] = None,
               mailer: Optional[Mailer] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="PetitionPay",
        default_response_class=ORJSONResponse,
    )
    app.state.services = build_services(settings, mailer=mailer)
    app.mount("/static", StaticFiles(directory=str(HERE / "static")),
              name="static")

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _say_hello():
        logger.info("PetitionPay is starting up...")
        missing = settings.missing()
        if missing:
            logger.error(
                f"Missing environment variables: {', '.join(missing)}; "
                "dependent endpoints will answer 503"
            )
        else:
            logger.info("All required environment variables present")

    @app.on_event("startup")
    async def _db_init():
        engine = app.state.services.engine
        if engine is None:
            return
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @app.on_event("shutdown")
    async def _db_stop():
        engine = app.state.services.engine
        if engine is not None:
            await engine.dispose()

    # ---
    # CORS: every response, and a bare 200 for any preflight
    # ---
    @app.middleware("http")
    async def _cors(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    # ---
    # error rendering
    # ---
    @app.exception_handler(PetitionPayError)
    async def _petitionpay_error(request: Request, exc: PetitionPayError):
        return ORJSONResponse(
            {"message": exc.message, "reason": exc.reason},
            status_code=exc.status_code,
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError):
        return ORJSONResponse(
            {"message": "Malformed request.", "reason": "validation_error"},
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        message = exc.detail
        if exc.status_code == 404 and request.url.path.startswith("/api"):
            message = "API endpoint not found."
        return ORJSONResponse({"message": message}, status_code=exc.status_code,
                              headers=getattr(exc, "headers", None))

    # ----------------------------
    # Dashboard
    # ----------------------------
    @app.get("/", response_class=HTMLResponse)
    async def dashboard(request: Request):
        return templates.TemplateResponse(
            request, "dashboard.html", {"site_name": "PetitionPay"}
        )

    @app.get("/api/health")
    async def health():
        # names of missing variables go to the startup log only
        return {"status": "ok", "configured": not settings.missing()}

    # ----------------------------
    # API: login / verify
    # ----------------------------
    @app.post("/api/login")
    async def login(
        payload: Dict[str, Any],
        store: PetitionerStore = Depends(petitioner_store),
    ):
        settings.require("jwt_secret")
        code = payload.get("adminCode")
        code = code.strip() if isinstance(code, str) else ""
        if not code:
            raise ValidationError("Admin code is required.")

        admin = await store.get_admin(code)
        if not admin:
            logger.warning("login rejected: invalid admin code")
            raise InvalidCredentials("Invalid admin code.")

        token = issue_token(admin["name"], admin["admin_code"],
                            settings.jwt_secret, settings.token_ttl_hours)
        logger.info(f"admin {admin['name']} logged in")
        return {"token": token, "adminName": admin["name"]}

    @app.api_route("/api/verify", methods=["GET", "POST"])
    async def verify_token(actor: Actor = Depends(current_actor)):
        return {"valid": True, "user": actor.claims}

    # ----------------------------
    # API: search / confirm
    # ----------------------------
    @app.get("/api/search")
    async def search(
        q: Optional[str] = None,
        actor: Actor = Depends(current_actor),
        store: PetitionerStore = Depends(petitioner_store),
    ):
        q = (q or "").strip()
        if not q:
            raise ValidationError("Search query (q) is required.")
        rows = await store.search(q)
        return [public_petitioner(r) for r in rows]

    @app.post("/api/confirm")
    async def confirm(
        payload: Dict[str, Any],
        background: BackgroundTasks,
        actor: Actor = Depends(current_actor),
        notifier: Notifier = Depends(get_notifier),
        store: PetitionerStore = Depends(petitioner_store),
    ):
        service = ConfirmationService(store, timeout=settings.store_timeout)
        confirmation = await service.confirm(payload.get("petitionerId"),
                                             actor)
        # runs after the response has been sent
        background.add_task(notifier.deliver, confirmation)
        return {
            "message": (
                "Payment confirmed. Receipt email queued for delivery. "
                f"Amount: {confirmation.display.amount}."
            ),
            "petitioner": public_petitioner(confirmation.petitioner),
        }

    return app
