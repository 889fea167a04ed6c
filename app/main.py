from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1 import api_router
from app.core.errors import register_exception_handlers
from app.core.health import APP_VERSION
from app.core.logging import configure_logging
from app.core.response_envelope import register_response_envelope
from app.core.settings import settings
from app.events import lifespan
from app.middlewares.request_context import RequestContextMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Document Lifecycle Service",
        version=APP_VERSION,
        lifespan=lifespan,
        docs_url=None if settings.environment == "production" else "/docs",
    )
    register_exception_handlers(app)
    register_response_envelope(app)
    # Wraps the envelope, so enveloped and error responses carry x-request-id too.
    app.add_middleware(RequestContextMiddleware)
    if settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.include_router(api_router, prefix="/api/v1")
    return app


app = create_app()
