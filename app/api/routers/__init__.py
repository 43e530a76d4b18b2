"""
app/api/routers package marker.
"""

from app.api.routers.pipeline import router as pipeline_router

__all__ = [
    "pipeline_router",
]
