from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from costing.config import load_costing_config
from costing.db import Base, engine
from costing.exceptions import CostingError
from costing.logging_config import configure_logging, get_logger
from costing.routers.documents import router as documents_router
from costing.routers.health import router as health_router
from costing.routers.inventory import router as inventory_router
from costing.routers.products import router as products_router

logger = get_logger(__name__)


def _run_startup_tasks() -> None:
    cfg = load_costing_config()
    configure_logging(level=cfg.logging.level, fmt=cfg.logging.format)
    Base.metadata.create_all(bind=engine)
    logger.info("startup_complete", extra={"dialect": engine.dialect.name})


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    _run_startup_tasks()
    yield


app = FastAPI(title="FIFO Costing", lifespan=lifespan)


@app.exception_handler(CostingError)
async def costing_error_handler(request: Request, exc: CostingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", extra={"path": request.url.path, "code": exc.code}, exc_info=exc)
    else:
        logger.info("request_rejected", extra={"path": request.url.path, "code": exc.code})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(health_router)
app.include_router(products_router)
app.include_router(documents_router)
app.include_router(inventory_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "costing.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "1") == "1",
    )
