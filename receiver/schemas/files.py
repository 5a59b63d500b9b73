"""Pydantic schemas for reassembled file endpoints."""

from typing import List
from pydantic import BaseModel

from receiver.schemas.transfers import MethodSwitchEntry


class FileSummaryResponse(BaseModel):
    """Response model for a reassembled file without its data."""
    file_id: str
    file_name: str
    file_size: int
    mime_type: str
    file_hash: str
    reconstructed_at: str
    transfer_time_ms: int
    total_chunks: int
    transfer_method: str
    method_switches: List[MethodSwitchEntry]


class FileResponse(FileSummaryResponse):
    """Response model for a reassembled file; data is base64."""
    data: str
