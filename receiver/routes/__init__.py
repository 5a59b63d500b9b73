"""API routes package."""

from receiver.routes.transfer_routes import router as transfer_router
from receiver.routes.file_routes import router as file_router
from receiver.routes.realtime_routes import router as realtime_router

__all__ = ["transfer_router", "file_router", "realtime_router"]
