import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from notifyhub.application.use_cases import Scheduler
from notifyhub.application.use_cases.monitoring import seed_default_rules
from notifyhub.config import get_settings
from notifyhub.infrastructure.database import SessionLocal, engine, initialize_database
from notifyhub.infrastructure.notifications import notification_publisher
from notifyhub.interfaces.api.dependencies import get_dispatch_engine, reset_services
from notifyhub.interfaces.api.routes import register_routes
from notifyhub.utils import configure_logging


def _seed_rules() -> None:
    session = SessionLocal()
    try:
        seed_default_rules(session, get_settings())
    finally:
        session.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Prepare the database and services on startup and release them on shutdown."""

    settings = get_settings()
    configure_logging(settings.log_level)
    initialize_database()
    _seed_rules()
    notification_publisher.bind_loop(asyncio.get_running_loop())

    stop_scheduler = None
    if settings.run_embedded_scheduler:
        scheduler = Scheduler(
            SessionLocal,
            get_dispatch_engine(),
            clock=get_dispatch_engine().clock,
            settings=settings,
        )
        stop_scheduler = scheduler.run_forever()
    yield
    if stop_scheduler is not None:
        stop_scheduler.set()
    notification_publisher.bind_loop(None)
    reset_services()
    engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(title="notifyhub", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_settings().cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)
    return app


app = create_app()
