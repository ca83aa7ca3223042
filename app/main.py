import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import Settings, get_settings
from app.core.logging import configure_logging
from app.core.middleware import RequestContextMiddleware
from app.routers import get_api_router
from app.services.bootstrap import AuthComponents, build_components
from app.services.exceptions import BackendError, ServiceError


def create_app(settings: Settings | None = None, components: AuthComponents | None = None) -> FastAPI:
    settings = settings or (components.settings if components else get_settings())
    configure_logging(settings)

    logger = logging.getLogger("app.validation")
    error_logger = logging.getLogger("app.errors")

    app = FastAPI(title=settings.PROJECT_NAME)
    app.state.components = components or build_components(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestContextMiddleware)

    @app.exception_handler(ServiceError)
    async def service_exception_handler(request: Request, exc: ServiceError):
        if isinstance(exc, BackendError):
            error_logger.error("Backend failure on %s %s", request.method, request.url.path)
        content = {"detail": exc.message, "code": exc.error_code}
        extra = {key: value for key, value in exc.detail.items() if value is not None}
        if extra:
            content.update(extra)
        headers = None
        retry_at = getattr(exc, "retry_at", None)
        if retry_at is not None:
            headers = {"Retry-After": retry_at.strftime("%a, %d %b %Y %H:%M:%S GMT")}
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(
            "Validation error on %s %s detail=%s",
            request.method,
            request.url.path,
            exc.errors(),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": jsonable_errors(exc), "code": "validation_error"},
        )

    app.include_router(get_api_router(), prefix=settings.API_V1_PREFIX)

    @app.on_event("startup")
    def startup_event():
        if settings.AUTO_CREATE_SCHEMA:
            app.state.components.ensure_schema()

    @app.on_event("shutdown")
    def shutdown_event():
        app.state.components.dispose()

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


app = create_app()
