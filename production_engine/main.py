# production_engine/main.py

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .database import create_db_and_tables
from .errors import (
    CyclicBOMError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ProductionEngineError,
    ValidationError,
)
from .seed_data import seed_demo_data

from .api import bom as bom_api
from .api import mrp as mrp_api
from .api import work_orders as work_orders_api

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Production Planning & Execution Engine")

# Include API routers
app.include_router(bom_api.router)
app.include_router(mrp_api.router)
app.include_router(work_orders_api.router)


# Domain errors -> {"success": false, "error": ...}
ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    CyclicBOMError: 422,
    InvalidTransitionError: 409,
    InsufficientStockError: 409,
}


@app.exception_handler(ProductionEngineError)
async def production_error_handler(request: Request, exc: ProductionEngineError):
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
        400,
    )
    if status_code >= 409:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"success": False, "error": str(exc)}, status_code=status_code)


@app.on_event("startup")
async def startup_event():
    create_db_and_tables()
    if settings.seed_demo_data:
        seed_demo_data()


@app.get("/api/health")
def health():
    return {"status": "ok"}
