"""FastAPI dependencies."""

from fastapi import HTTPException, Request, status

from stockwatch.worker.runtime import MonitorRuntime


async def get_runtime(request: Request) -> MonitorRuntime:
    """
    Dependency for the running monitor.

    Raises:
        HTTPException: 503 if the monitor has not been started
    """
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Monitor not running",
        )
    return runtime
