"""Monitor status routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from stockwatch.api.deps import get_runtime
from stockwatch.config import ConfigurationError
from stockwatch.worker.runtime import MonitorRuntime

router = APIRouter(prefix="/api", tags=["status"])


@router.get("/targets")
async def list_targets(runtime: MonitorRuntime = Depends(get_runtime)):
    """List monitored targets with their timing policy."""
    targets = []
    for target in runtime.catalog.targets:
        config = target.config
        pool = runtime.scheduler.proxy_pool(target.name)
        targets.append({
            "name": target.name,
            "adapter": target.adapter,
            "links": len(target.links),
            "min_delay": config.min_delay,
            "max_delay": config.max_delay,
            "min_backoff": config.min_backoff,
            "max_backoff": config.max_backoff,
            "timeout": config.timeout,
            "concurrency_limit": config.concurrency_limit,
            "proxies": pool.stats() if pool else {"total": 0, "in_cooldown": 0},
        })
    return {"targets": targets}


@router.get("/links")
async def list_links(
    target: Optional[str] = None,
    runtime: MonitorRuntime = Depends(get_runtime),
):
    """Per-link rate and stock state."""
    links = runtime.scheduler.snapshot()
    if target:
        links = [link for link in links if link["target"] == target]
    return {"links": links, "count": len(links)}


@router.post("/reload")
async def reload_config(runtime: MonitorRuntime = Depends(get_runtime)):
    """Reload settings and the catalog file."""
    try:
        result = await runtime.reload()
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"status": "reloaded", **result}
