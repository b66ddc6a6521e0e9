"""Product endpoints — CRUD on the record store plus the name lookups."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Response
from fastapi.responses import JSONResponse

from catalogsync.api.deps import get_engine
from catalogsync.api.errors import to_http_exception
from catalogsync.core.engine import CatalogSyncEngine
from catalogsync.errors import CatalogSyncError
from catalogsync.models.record import Record, RecordCreate, RecordUpdate
from catalogsync.models.response import SearchResponse

from .search import search_response

router = APIRouter(prefix="/products", tags=["products"])


@router.post(
    "",
    response_model=Record,
    status_code=201,
    summary="Add Product",
    responses={
        422: {"description": "Missing name or price, or negative price"},
        503: {"description": "Record store unavailable"},
    },
)
async def add_product(
    payload: RecordCreate,
    engine: CatalogSyncEngine = Depends(get_engine),
) -> Record:
    """Persist a product. It becomes searchable once synchronization catches up."""
    try:
        return await engine.add_record(payload)
    except CatalogSyncError as e:
        raise to_http_exception(e) from e


@router.get("", response_model=list[Record], summary="List Products")
async def list_products(engine: CatalogSyncEngine = Depends(get_engine)) -> list[Record]:
    """List every product from the primary store."""
    try:
        return await engine.list_all()
    except CatalogSyncError as e:
        raise to_http_exception(e) from e


@router.get("/like/{name}", response_model=SearchResponse, summary="Products Containing Name")
async def products_like(
    name: str = Path(min_length=1, max_length=512, description="Name terms"),
    engine: CatalogSyncEngine = Depends(get_engine),
) -> SearchResponse | JSONResponse:
    """Products whose name or description contains every term of ``name``."""
    try:
        return search_response(await engine.find_by_name_contains(name))
    except CatalogSyncError as e:
        raise to_http_exception(e) from e


@router.get("/name/{name}", response_model=SearchResponse, summary="Products By Name")
async def products_by_name(
    name: str = Path(min_length=1, max_length=512, description="Name terms"),
    engine: CatalogSyncEngine = Depends(get_engine),
) -> SearchResponse | JSONResponse:
    """Products whose name matches every term of ``name``."""
    try:
        return search_response(await engine.find_exact_by_name(name))
    except CatalogSyncError as e:
        raise to_http_exception(e) from e


@router.get("/{record_id}", response_model=Record, summary="Get Product")
async def get_product(
    record_id: str,
    engine: CatalogSyncEngine = Depends(get_engine),
) -> Record:
    try:
        return await engine.get_record(record_id)
    except CatalogSyncError as e:
        raise to_http_exception(e) from e


@router.patch("/{record_id}", response_model=Record, summary="Update Product")
async def update_product(
    record_id: str,
    payload: RecordUpdate,
    engine: CatalogSyncEngine = Depends(get_engine),
) -> Record:
    """Apply a partial update; only the fields present in the body change."""
    try:
        return await engine.update_record(record_id, payload)
    except CatalogSyncError as e:
        raise to_http_exception(e) from e


@router.delete("/{record_id}", status_code=204, summary="Delete Product")
async def delete_product(
    record_id: str,
    engine: CatalogSyncEngine = Depends(get_engine),
) -> Response:
    try:
        await engine.delete_record(record_id)
    except CatalogSyncError as e:
        raise to_http_exception(e) from e
    return Response(status_code=204)
