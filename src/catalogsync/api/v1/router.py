"""API v1 Router — Product, search, sync, and health endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from catalogsync.api.v1.endpoints.health import router as health_router
from catalogsync.api.v1.endpoints.products import router as products_router
from catalogsync.api.v1.endpoints.search import router as search_router
from catalogsync.api.v1.endpoints.sync import router as sync_router

router = APIRouter(tags=["v1"])
router.include_router(products_router)
router.include_router(search_router)
router.include_router(sync_router)
router.include_router(health_router)
