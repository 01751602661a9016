from fxpipe.api.routes.health import router as health_router
from fxpipe.api.routes.jobs import router as jobs_router
from fxpipe.api.routes.stats import router as stats_router
from fxpipe.api.routes.ticks import router as ticks_router

__all__ = ["health_router", "jobs_router", "stats_router", "ticks_router"]
