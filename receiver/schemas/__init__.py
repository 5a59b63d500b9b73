"""Pydantic schemas for API requests and responses."""

from receiver.schemas.transfers import (
    InitTransferRequest,
    InitTransferResponse,
    ChunkRequest,
    ChunkResponse,
    SwitchMethodRequest,
    SwitchMethodResponse,
    MethodSwitchEntry,
    TransferSummaryResponse
)
from receiver.schemas.files import FileSummaryResponse, FileResponse
from receiver.schemas.common import ErrorResponse, HealthResponse, ResetResponse

__all__ = [
    "InitTransferRequest",
    "InitTransferResponse",
    "ChunkRequest",
    "ChunkResponse",
    "SwitchMethodRequest",
    "SwitchMethodResponse",
    "MethodSwitchEntry",
    "TransferSummaryResponse",
    "FileSummaryResponse",
    "FileResponse",
    "ErrorResponse",
    "HealthResponse",
    "ResetResponse"
]
