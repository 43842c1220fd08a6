import logging
import time

from fastapi import FastAPI, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import centers_store, metrics, operators_store, reports_store
from .config import settings
from .database import SessionLocal, engine, session_scope
from .errors import (
    AppError,
    app_error_handler,
    http_exception_handler,
    store_error_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from .logging_config import configure_logging
from .mailer import get_mailer
from .middleware_request_id import RequestIDMiddleware
from .models import Base
from .notifications import StaleCenterNotifier
from .reports import ReportPublisher
from .routers import centers as centers_router
from .routers import operators as operators_router
from .routers import statistics as statistics_router
from .scheduler import IntervalScheduler

logger = logging.getLogger("centers.main")


def build_schedulers() -> list[IntervalScheduler]:
    schedulers: list[IntervalScheduler] = []
    if not settings.SCHEDULERS_ENABLED:
        return schedulers
    if settings.REPORTS_INTERVAL_MINUTES > 0:
        publisher = ReportPublisher(SessionLocal, get_mailer())
        schedulers.append(IntervalScheduler(
            "reports", publisher.publish_cycle, settings.REPORTS_INTERVAL_MINUTES * 60, run_immediately=True,
        ))
    if settings.NOTIFICATION_INTERVAL_HOURS > 0:
        notifier = StaleCenterNotifier(
            SessionLocal,
            get_mailer(),
            settings.NOTIFICATION_AGE_WEEKS,
            settings.NOTIFICATION_RENOTIFY_WEEKS,
        )
        schedulers.append(IntervalScheduler(
            "notifications", notifier.run_cycle, settings.NOTIFICATION_INTERVAL_HOURS * 3600,
        ))
    return schedulers


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Center Map API", version="0.1.0")

    allowed_origins = settings.ALLOWED_ORIGINS or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request ID + JSON logs
    app.add_middleware(RequestIDMiddleware)

    if settings.AUTO_CREATE_SCHEMA:
        Base.metadata.create_all(bind=engine)

    @app.get("/health")
    def health():
        with engine.connect() as conn:
            conn.execute(text("select 1"))
        return {"status": "ok", "env": settings.ENV}

    @app.middleware("http")
    async def _metrics_mw(request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start
        route = getattr(request.scope.get("route"), "path", None) or request.url.path
        metrics.HTTP_REQUESTS.labels(request.method, route, str(response.status_code)).inc()
        metrics.HTTP_DURATION.labels(request.method, route).observe(duration)
        return response

    @app.get("/metrics")
    def prometheus_metrics():
        with session_scope() as db:
            metrics.record_statistics(
                centers_store.find_statistics(db),
                operators_store.count(db),
                reports_store.count_pending(db),
            )
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(centers_router.router)
    app.include_router(operators_router.router)
    app.include_router(statistics_router.router)

    # Error handlers
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(OperationalError, store_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    schedulers = build_schedulers()
    app.state.schedulers = schedulers

    @app.on_event("startup")
    def _start_background_jobs():
        if settings.REPORTS_LEASE_RECOVERY_MINUTES > 0:
            ReportPublisher(SessionLocal, get_mailer()).release_stale_leases(settings.REPORTS_LEASE_RECOVERY_MINUTES)
        for scheduler in schedulers:
            scheduler.start()

    @app.on_event("shutdown")
    def _stop_background_jobs():
        for scheduler in schedulers:
            scheduler.stop()

    return app


app = create_app()
