# tableorders/main.py
import logging
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from tableorders.api import orders_router, tables_router
from tableorders.catalog import ProductCatalog
from tableorders.domain import ErrorKind, Result
from tableorders.manager import OrderTableManager
from tableorders.storage import InMemoryStorage, SQLAlchemyStorage, Storage

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_storage() -> Storage:
    """
    Build the storage backend selected by STORAGE_BACKEND.

    - inmemory (default): dictionaries, state is lost on restart
    - sqlite / sqlalchemy: SQLAlchemyStorage on APP_DATABASE_URL
    """
    backend = os.getenv("STORAGE_BACKEND", "inmemory").lower()
    if backend == "inmemory":
        logger.info("Using in-memory storage")
        return InMemoryStorage()
    if backend in ("sqlite", "sqlalchemy"):
        db_url = os.getenv("APP_DATABASE_URL", "sqlite:///tableorders.db")
        logger.info("Using SQLAlchemy storage at %s", db_url)
        return SQLAlchemyStorage(db_url)
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")


def create_app(
    storage: Optional[Storage] = None,
    catalog: Optional[ProductCatalog] = None,
) -> FastAPI:
    """Build the FastAPI app around a storage backend (env-selected if not given)."""
    app = FastAPI(title="Table & Order Lifecycle Backend")

    origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.storage = storage if storage is not None else create_storage()
    app.state.manager = OrderTableManager(app.state.storage, catalog=catalog)

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
        result = Result.fail(ErrorKind.INFRA_ERROR, "Erro interno do servidor")
        return JSONResponse(status_code=503, content=result.model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0]["msg"] if errors else "requisição inválida"
        logger.warning("Invalid request on %s %s: %s", request.method, request.url.path, message)
        result = Result.fail(ErrorKind.VALIDATION_ERROR, f"dados inválidos: {message}")
        return JSONResponse(status_code=400, content=result.model_dump(mode="json"))

    @app.get("/health", summary="Liveness check")
    async def health():
        return {"status": "ok", "storage": type(app.state.storage).__name__}

    app.include_router(tables_router)
    app.include_router(orders_router)
    return app


app = create_app()
