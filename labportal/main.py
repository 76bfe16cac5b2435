import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError

from labportal.core import config
from labportal.core.errors import catch_unhandled_errors, install_error_handlers
from labportal.database import ensure_indexes
from labportal.routes import auth_routes, logbook_routes

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'DENY',
    'X-XSS-Protection': '1; mode=block',
}


def initialize_database() -> None:
    try:
        ensure_indexes()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL.')


@asynccontextmanager
async def lifespan(app: FastAPI):
    initialize_database()
    yield


def _add_cors(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ALLOW_ORIGINS,
        allow_credentials=False,
        allow_methods=['GET', 'POST', 'PUT', 'DELETE'],
        allow_headers=['*'],
    )


def create_auth_app() -> FastAPI:
    app = FastAPI(title='Lab Portal Auth Service', lifespan=lifespan)
    install_error_handlers(app)
    app.middleware('http')(catch_unhandled_errors)
    _add_cors(app)

    @app.get('/health')
    def health():
        return {'status': f'Auth Server running on port {config.AUTH_PORT}'}

    app.include_router(auth_routes.router, prefix='/api/auth')
    return app


def create_logbook_app(rate_limit: str | None = None, rate_limit_enabled: bool | None = None) -> FastAPI:
    limiter = Limiter(
        key_func=get_remote_address,
        storage_uri='memory://',
        strategy='fixed-window',
        enabled=config.RATE_LIMIT_ENABLED if rate_limit_enabled is None else rate_limit_enabled,
    )

    # One fixed window per client address, shared by every route. Runs as the
    # first dependency so requests are counted before the token is checked.
    @limiter.shared_limit(rate_limit or config.RATE_LIMIT, scope='global')
    def enforce_rate_limit(request: Request) -> None:
        return None

    app = FastAPI(
        title='Lab Portal Logbook Service',
        lifespan=lifespan,
        dependencies=[Depends(enforce_rate_limit)],
    )
    app.state.limiter = limiter
    install_error_handlers(app)
    app.middleware('http')(catch_unhandled_errors)

    @app.middleware('http')
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers[header] = value
        return response

    _add_cors(app)

    @app.get('/health')
    def health():
        return {'status': f'Log Book Server running on port {config.LOGBOOK_PORT}'}

    app.include_router(logbook_routes.router, prefix='/api/logbook')
    return app


auth_app = create_auth_app()
logbook_app = create_logbook_app()


def _configure_logging() -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )


def run_auth_service() -> None:
    _configure_logging()
    config.validate_runtime_config()
    uvicorn.run(auth_app, host=config.AUTH_HOST, port=config.AUTH_PORT)


def run_logbook_service() -> None:
    _configure_logging()
    config.validate_runtime_config()
    uvicorn.run(logbook_app, host=config.LOGBOOK_HOST, port=config.LOGBOOK_PORT)
