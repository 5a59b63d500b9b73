"""FastAPI dependencies resolving the registry bound to the running app."""

from fastapi import Request

from receiver.registry import TransferRegistry


def get_registry(request: Request) -> TransferRegistry:
    """Registry instance created by the app factory."""
    return request.app.state.registry
