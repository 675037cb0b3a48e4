"""
FastAPI endpoints for the Market Data Gateway.
Thin handlers over the aggregation facade held on app.state.
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional
from fastapi import APIRouter, HTTPException, Query, Request

from ..api.schemas import AssetPage, AssetView, HealthResponse, RefreshResponse, SearchResult
from ..core.logging_config import create_logger
from ..gateway import Gateway
from ..models import AssetCategory

logger = create_logger(__name__)

# Create API router
router = APIRouter()


def get_gateway(request: Request) -> Gateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(status_code=503, detail="Gateway is not running")
    return gateway


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint.
    Reports background task liveness and per-provider health.
    """
    gateway = get_gateway(request)
    try:
        snapshot = gateway.tracker.snapshot()
        provider_health = {name: report.get("health", "unknown") for name, report in snapshot.items()}
        demo_mode = [name for name, adapter in gateway.providers.items() if adapter.demo_mode]
        tasks_running = gateway.are_background_tasks_running()

        if not tasks_running:
            status = "unhealthy"
        elif demo_mode or any(health != "healthy" for health in provider_health.values()):
            status = "degraded"
        else:
            status = "healthy"

        started_at = getattr(request.app.state, "started_at", datetime.utcnow())
        return HealthResponse(
            status=status,
            version=gateway.settings.app_version,
            uptime_seconds=(datetime.utcnow() - started_at).total_seconds(),
            background_tasks_running=tasks_running,
            providers=provider_health,
            demo_mode_providers=demo_mode
        )

    except Exception as e:
        logger.error("Health check failed", extra={"error": str(e)})
        raise HTTPException(status_code=500, detail="Health check failed")


@router.get("/v1/assets/{category}", response_model=AssetPage)
async def get_assets(
    request: Request,
    category: AssetCategory,
    page: int = Query(1, ge=1, description="Page number"),
    limit: Optional[int] = Query(None, ge=1, description="Page size, capped by the server"),
    search: Optional[str] = Query(None, description="Case-insensitive filter on symbol and name"),
    sector: Optional[str] = Query(None, description="Exact sector filter"),
    sort_by: str = Query("symbol", description="symbol, name, sector, price, change_24h, volume_24h or market_cap"),
    sort_order: Literal["asc", "desc"] = Query("asc")
):
    """Paginated assets for a category."""
    gateway = get_gateway(request)
    return await gateway.facade.get_page(
        category,
        page=page,
        limit=limit,
        search=search,
        sector=sector,
        sort_by=sort_by,
        sort_order=sort_order
    )


@router.get("/v1/assets/{category}/{symbol}", response_model=AssetView)
async def get_asset(request: Request, category: AssetCategory, symbol: str):
    """One asset within a known category."""
    gateway = get_gateway(request)
    return await gateway.facade.get_single(symbol, category)


@router.get("/v1/quote/{symbol}", response_model=AssetView)
async def get_quote(request: Request, symbol: str):
    """One asset; the category is inferred from what the gateway already knows."""
    gateway = get_gateway(request)
    return await gateway.facade.get_single(symbol)


@router.get("/v1/search", response_model=SearchResult)
async def search_assets(
    request: Request,
    q: str = Query(..., min_length=1, description="Search query"),
    category: Optional[AssetCategory] = Query(None)
):
    """Ranked search over discovered and cached assets."""
    gateway = get_gateway(request)
    return await gateway.facade.search(q, category)


@router.get("/v1/diagnostics")
async def get_diagnostics(request: Request) -> Dict[str, Any]:
    """Rate-limit, queue, cache and prefetch state."""
    gateway = get_gateway(request)
    return gateway.facade.get_diagnostics()


@router.post("/v1/refresh", response_model=RefreshResponse)
async def refresh(request: Request, category: Optional[AssetCategory] = Query(None)):
    """Run a prefetch immediately."""
    gateway = get_gateway(request)
    logger.info("Manual refresh requested", extra={"category": category.value if category else "all"})
    return await gateway.facade.refresh(category)
