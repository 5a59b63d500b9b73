"""Pydantic schemas for transfer endpoints."""

from typing import List, Optional
from pydantic import BaseModel, Field

from receiver.config import MAX_CHUNK_SIZE

# base64 length of the largest accepted chunk
MAX_CHUNK_DATA_LENGTH = 4 * ((MAX_CHUNK_SIZE + 2) // 3)


class InitTransferRequest(BaseModel):
    """Request model for starting a transfer."""
    file_id: str = Field(..., min_length=1)
    file_name: str = Field(..., min_length=1)
    file_size: int = Field(0, ge=0)
    total_chunks: int
    mime_type: Optional[str] = None
    transfer_method: Optional[str] = None


class InitTransferResponse(BaseModel):
    """Response model for a started transfer."""
    success: bool
    file_id: str
    transfer_method: str


class ChunkRequest(BaseModel):
    """Request model for a chunk; chunk_data is base64."""
    file_id: str = Field(..., min_length=1)
    chunk_index: int
    chunk_data: str = Field(..., max_length=MAX_CHUNK_DATA_LENGTH)
    chunk_hash: str = Field(..., min_length=1)
    transfer_method: Optional[str] = None


class ChunkResponse(BaseModel):
    """Response model for an accepted chunk."""
    success: bool
    file_id: str
    chunk_index: int
    received_chunks: int
    total_chunks: int
    duplicate: bool
    status: str
    file_hash: Optional[str] = None


class SwitchMethodRequest(BaseModel):
    """Request model for changing the transfer method."""
    file_id: str = Field(..., min_length=1)
    new_method: str


class SwitchMethodResponse(BaseModel):
    """Response model for a method switch."""
    success: bool
    current_method: str


class MethodSwitchEntry(BaseModel):
    """One recorded method switch."""
    model_config = {"populate_by_name": True}

    from_method: str = Field(..., alias="from")
    to: str
    timestamp: str
    chunk_count: int


class TransferSummaryResponse(BaseModel):
    """Response model for an active transfer (no chunk bytes)."""
    file_id: str
    file_name: str
    file_size: int
    mime_type: str
    total_chunks: int
    received_chunks: int
    chunks_received: List[int]
    status: str
    started_at: str
    failure_reason: Optional[str] = None
    rejected_chunks: int
    transfer_method: str
    method_switches: List[MethodSwitchEntry]
