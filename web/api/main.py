"""
Employee Portal Web API

FastAPI application hosting the portal's route dispatcher. FastAPI provides
the server lifecycle; every request, preflights included, is handed to the
Dispatcher and answered with fixed CORS headers.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from portal.config import load_config
from portal.database import seed_users_from_config
from portal.errors import FatalStartupError
from portal.logging_config import setup_logging
from portal.migrations import MigrationError
from web.api.deps import build_services, open_database, run_migrations
from web.api.dispatcher import ApiRequest, Dispatcher
from web.api.routers import admin, auth, profile, public

logger = logging.getLogger(__name__)

DISPATCHED_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"]
# Sent on every response, preflights included; OPTIONS is answered by the dispatcher
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type, X-Session-Token, Authorization",
    "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
}


def create_dispatcher(services) -> Dispatcher:
    """Build the route table. Order matters: the first matching route wins."""
    dispatcher = Dispatcher(
        services.sessions,
        expose_errors=bool(services.config.get("server", {}).get("expose_errors")),
    )
    dispatcher.include(public.router)
    dispatcher.include(profile.router)
    dispatcher.include(auth.router)
    dispatcher.include(admin.router)
    return dispatcher


def boot(app: FastAPI, config: dict):
    """
    Open the store, apply migrations, seed defaults and wire the services.

    Raises:
        FatalStartupError: A migration failed; the server must not start
    """
    db = open_database(config)
    try:
        applied = run_migrations(db, config)
    except MigrationError as e:
        db.close()
        logger.critical("Startup aborted: %s", e)
        raise FatalStartupError(str(e)) from e

    if applied:
        logger.info("Applied %d migration(s)", len(applied))

    for email in seed_users_from_config(db, config):
        logger.info("Seeded default user %s", email)

    services = build_services(config, db, mailer=getattr(app.state, "mailer", None))
    app.state.services = services
    app.state.dispatcher = create_dispatcher(services)


def create_app(config: dict = None, mailer=None) -> FastAPI:
    """
    Create the API application.

    Args:
        config: Configuration dict (None = load_config() at startup)
        mailer: Mail transport override (None = built from the smtp config)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        app_config = config if config is not None else load_config()
        if config is None:
            setup_logging(app_config.get("logging", {}).get("level", "INFO"))
        boot(app, app_config)
        yield
        app.state.services.db.close()

    app = FastAPI(
        title="Employee Portal API",
        description="Identity and access API for the employee portal",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.mailer = mailer

    @app.api_route("/{full_path:path}", methods=DISPATCHED_METHODS, include_in_schema=False)
    async def dispatch(request: Request, full_path: str):
        """Hand every request to the dispatcher; requests run one at a time."""
        raw_path = request.scope.get("raw_path")
        if raw_path:
            path = raw_path.decode("latin-1").split("?", 1)[0]
        else:
            path = request.url.path

        api_request = ApiRequest(
            method=request.method,
            path=path,
            headers=dict(request.headers),
            body=await request.body(),
            services=request.app.state.services,
        )
        response = request.app.state.dispatcher.dispatch(api_request)
        return JSONResponse(
            response.payload, status_code=response.status, headers=CORS_HEADERS
        )

    return app


app = create_app()
