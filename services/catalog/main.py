"""Catalog service API built with FastAPI.

Exposes product reads and the stock operations used by the order backend:
a guarded decrement that never takes a bucket below zero, an increment used
for compensation and cancellations, and a bucket upsert for catalog admin.
Persistence is delegated to ``repo.CatalogRepo``.
"""

import logging
import time
import uuid
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import CatalogRepo, engine, init_db

app = FastAPI(title="Catalog Service")

logger = logging.getLogger("catalog")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # wait briefly until the database accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


def get_repo() -> CatalogRepo:
    return CatalogRepo()


class StockChange(BaseModel):
    """One bucket change. Blank size and color address the base stock."""

    product_id: str = Field(min_length=1, max_length=64)
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int = Field(gt=0)


class StockLevel(BaseModel):
    applied: bool
    quantity: int


class BucketIn(BaseModel):
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int = Field(ge=0)


class ProductUpsert(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    price_cents: int = Field(ge=0)
    sale_price_cents: Optional[int] = Field(default=None, ge=0)
    image: Optional[str] = None
    is_active: bool = True
    variant_layout: Literal["none", "combination", "axis"] = "none"
    buckets: List[BucketIn] = Field(default_factory=lambda: [BucketIn(quantity=0)])


def _not_found(product_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"detail": "PRODUCT_NOT_FOUND", "product_id": product_id})


@app.get("/health")
def health():
    try:
        with engine.connect() as conn:
            conn.execute(text("select 1"))
    except Exception:
        logger.warning("health check failed", exc_info=True)
        return JSONResponse({"ok": False}, status_code=503)
    return {"ok": True}


@app.get("/products/{product_id}")
def get_product(product_id: str, repo: CatalogRepo = Depends(get_repo)):
    product = repo.get_product(product_id)
    if product is None:
        raise _not_found(product_id)
    return product


@app.post("/stock/decrement", response_model=StockLevel)
def decrement(req: StockChange, repo: CatalogRepo = Depends(get_repo)):
    """Guarded decrement of one bucket.

    Returns:
        StockLevel: 200 with ``applied=True`` and the remaining quantity, or
        409 with ``applied=False`` and the quantity currently available.

    Raises:
        HTTPException: 404 when the bucket does not exist.
    """
    try:
        applied, level = repo.decrement(req.product_id, req.size, req.color, req.quantity)
    except LookupError:
        raise _not_found(req.product_id)
    if not applied:
        logger.info("decrement rejected", extra={"product_id": req.product_id, "requested": req.quantity,
                                                  "available": level})
        return JSONResponse({"applied": False, "quantity": level}, status_code=409)
    return StockLevel(applied=True, quantity=level)


@app.post("/stock/increment", response_model=StockLevel)
def increment(req: StockChange, repo: CatalogRepo = Depends(get_repo)):
    try:
        level = repo.increment(req.product_id, req.size, req.color, req.quantity)
    except LookupError:
        raise _not_found(req.product_id)
    return StockLevel(applied=True, quantity=level)


@app.put("/products/{product_id}/buckets")
def upsert_product(product_id: str, body: ProductUpsert, repo: CatalogRepo = Depends(get_repo)):
    return repo.upsert_product(product_id, body.model_dump())


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
