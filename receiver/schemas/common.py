"""Common schemas used across multiple endpoints."""

from typing import Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Response model for errors."""
    detail: str
    code: str
    file_id: Optional[str] = None
    chunk_index: Optional[int] = None
    received_chunks: Optional[int] = None
    total_chunks: Optional[int] = None


class HealthResponse(BaseModel):
    """Response model for the health endpoint."""
    status: str
    active_transfers: int
    reconstructed_files: int
    connected_clients: int
    published_events: int
    supported_methods: list[str]


class ResetResponse(BaseModel):
    """Response model for registry reset."""
    success: bool
