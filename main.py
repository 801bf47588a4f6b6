from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse
from typing import Optional
from config import settings
from database import Database
from routers import customers, dashboard, documents, goods_receipts
from middleware.security import SecurityMiddleware
from services.file_storage import LocalFileStorage
from services.image_pipeline import ImagePipeline
from services.table_capability import TableCapability
from models.receipt_document import ReceiptDocument
from models.receipt_photo import ReceiptPhoto
from utils.errors import PortalError, QueryTimeout
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PHOTO_URL_PREFIX = "/uploads/warenannahme"


def _error_body(exc: PortalError) -> dict:
    body = {"detail": exc.message}
    if exc.details is not None:
        body["errors"] = exc.details
    return body


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(QueryTimeout)
    async def query_timeout_handler(request: Request, exc: QueryTimeout):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc),
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )

    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc.__cause__ is not None)
            if settings.is_production:
                return JSONResponse(status_code=exc.status_code, content={"detail": PortalError.default_message})
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in error["loc"][1:]), "error": error["msg"]}
            for error in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"detail": "Invalid request data", "errors": errors})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Generic message in production, the actual error while developing"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        detail = PortalError.default_message if settings.is_production else f"{type(exc).__name__}: {exc}"
        return JSONResponse(status_code=500, content={"detail": detail})


def create_app(
    database: Optional[Database] = None,
    storage: Optional[LocalFileStorage] = None,
    document_storage: Optional[LocalFileStorage] = None,
) -> FastAPI:
    app = FastAPI(
        title="Fulfillment Portal API",
        description="Goods receipts, itemized billing and dashboards for fulfillment customers",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )

    storage = storage or LocalFileStorage(settings.upload_dir, url_prefix=PHOTO_URL_PREFIX)
    app.state.database = database or Database(settings.database_url)
    app.state.storage = storage
    app.state.image_pipeline = ImagePipeline(storage)
    app.state.photo_capability = TableCapability(ReceiptPhoto.__tablename__)
    app.state.document_storage = document_storage or LocalFileStorage(settings.document_dir)
    app.state.document_capability = TableCapability(ReceiptDocument.__tablename__)

    register_exception_handlers(app)

    app.add_middleware(SecurityMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    app.mount(storage.url_prefix, StaticFiles(directory=str(storage.root)), name="warenannahme")

    app.include_router(goods_receipts.router)
    app.include_router(documents.router)
    app.include_router(customers.router)
    app.include_router(dashboard.router)

    @app.on_event("startup")
    async def startup_event():
        try:
            app.state.database.init()
        except RuntimeError as e:
            logger.error(f"{e} - database features disabled")
            return
        if app.state.database.verify_connection():
            logger.info("Database connection verified")

    @app.on_event("shutdown")
    async def shutdown_event():
        app.state.database.shutdown()

    @app.get("/")
    def root():
        return {
            "message": "Fulfillment Portal API",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health"
        }

    @app.get("/health")
    def health_check():
        db_status = "connected" if app.state.database.verify_connection() else "not connected"
        return {
            "status": "healthy",
            "database": db_status,
            "environment": settings.environment,
        }

    return app


app = create_app()
