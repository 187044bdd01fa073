"""Route handlers for the Web API."""

from learnrun.web.routes.health import router as health_router
from learnrun.web.routes.learning import router as learning_router
from learnrun.web.routes.runs import router as runs_router

__all__ = [
    "health_router",
    "learning_router",
    "runs_router",
]
