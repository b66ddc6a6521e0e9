"""Search endpoints — structured intents and type-ahead suggestions."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from catalogsync.api.deps import get_engine
from catalogsync.api.errors import to_http_exception
from catalogsync.core.engine import CatalogSyncEngine
from catalogsync.errors import CatalogSyncError
from catalogsync.models.query import SearchRequest
from catalogsync.models.response import SearchResponse

router = APIRouter()

_DEGRADED = {503: {"model": SearchResponse, "description": "Index unavailable, empty degraded response"}}


def search_response(response: SearchResponse) -> SearchResponse | JSONResponse:
    """Pass through a search response, or wrap a degraded one in a 503."""
    if response.index_available:
        return response
    return JSONResponse(status_code=503, content=response.model_dump(mode="json"))


@router.post(
    "/search",
    response_model=SearchResponse,
    summary="Structured Search",
    description=(
        "Run one search intent against the index.\n\n"
        "Intents are selected by `kind`: `exact_name`, `name_or_description_contains`, "
        "`fuzzy_match`, `price_range`, `prefix_suggest`, `multi_field_prefix`, "
        "`any_field_prefix`. Results are ordered by relevance, ties by record id."
    ),
    responses={
        **_DEGRADED,
        422: {"description": "Invalid intent (unknown kind, inverted price range, bad paging)"},
        500: {"description": "Intent translated to a query the index rejected"},
    },
)
async def search(
    request: SearchRequest,
    engine: CatalogSyncEngine = Depends(get_engine),
) -> SearchResponse | JSONResponse:
    try:
        response = await engine.search(request.intent, request.paging)
    except CatalogSyncError as e:
        raise to_http_exception(e) from e
    return search_response(response)


@router.get(
    "/search/suggest",
    response_model=SearchResponse,
    summary="Name Suggestions",
    responses=_DEGRADED,
)
async def suggest(
    q: str = Query(min_length=1, max_length=256, description="Name prefix"),
    engine: CatalogSyncEngine = Depends(get_engine),
) -> SearchResponse | JSONResponse:
    """Up to five products whose name starts with ``q``, case-insensitive."""
    try:
        response = await engine.suggest(q)
    except CatalogSyncError as e:
        raise to_http_exception(e) from e
    return search_response(response)
