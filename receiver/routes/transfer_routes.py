"""Transfer operation API routes."""

import base64
import binascii

from fastapi import APIRouter, Depends, status

from receiver.dependencies import get_registry
from receiver.exceptions import InvalidArgumentError
from receiver.registry import TransferRegistry
from receiver.schemas.common import ResetResponse
from receiver.schemas.transfers import (
    InitTransferRequest,
    InitTransferResponse,
    ChunkRequest,
    ChunkResponse,
    SwitchMethodRequest,
    SwitchMethodResponse,
    TransferSummaryResponse
)

router = APIRouter(prefix="/api", tags=["Transfers"])


@router.post("/transfer/init", response_model=InitTransferResponse, status_code=status.HTTP_201_CREATED)
async def init_transfer(
    request: InitTransferRequest,
    registry: TransferRegistry = Depends(get_registry)
):
    """
    Start a chunked transfer.

    Raises:
        - 400: Invalid parameters (INVALID_ARGUMENT)
        - 409: A transfer with this id is still active (ALREADY_EXISTS)
    """
    summary = await registry.init(
        session_id=request.file_id,
        file_name=request.file_name,
        file_size=request.file_size,
        total_chunks=request.total_chunks,
        mime_type=request.mime_type,
        transfer_method=request.transfer_method,
    )

    return InitTransferResponse(
        success=True,
        file_id=summary["file_id"],
        transfer_method=summary["transfer_method"],
    )


@router.post("/transfer/chunk", response_model=ChunkResponse)
async def submit_chunk(
    request: ChunkRequest,
    registry: TransferRegistry = Depends(get_registry)
):
    """
    Submit one base64-encoded chunk with its SHA-256 hash.

    Every rejection reports current progress so the sender can resend.

    Raises:
        - 400: Bad base64, index out of range or hash mismatch
        - 404: Unknown transfer
        - 409: Transfer no longer receiving
    """
    try:
        data = base64.b64decode(request.chunk_data, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidArgumentError(
            f"Chunk {request.chunk_index} data is not valid base64",
            session_id=request.file_id
        )

    receipt = await registry.submit_chunk(
        session_id=request.file_id,
        chunk_index=request.chunk_index,
        data=data,
        chunk_hash=request.chunk_hash,
        transfer_method=request.transfer_method,
    )

    return ChunkResponse(
        success=True,
        file_id=receipt.session_id,
        chunk_index=receipt.chunk_index,
        received_chunks=receipt.received_chunks,
        total_chunks=receipt.total_chunks,
        duplicate=receipt.duplicate,
        status=receipt.status.value,
        file_hash=receipt.content_hash,
    )


@router.post("/transfer/switch-method", response_model=SwitchMethodResponse)
async def switch_method(
    request: SwitchMethodRequest,
    registry: TransferRegistry = Depends(get_registry)
):
    """
    Record a change of transfer method for an active transfer.
    """
    summary = await registry.switch_method(request.file_id, request.new_method)

    return SwitchMethodResponse(success=True, current_method=summary["transfer_method"])


@router.get("/transfers", response_model=list[TransferSummaryResponse])
async def list_transfers(registry: TransferRegistry = Depends(get_registry)):
    """
    List active transfers with the indices received so far.
    """
    return await registry.list_active_sessions()


@router.post("/reset", response_model=ResetResponse)
async def reset(registry: TransferRegistry = Depends(get_registry)):
    """
    Drop every active transfer and retained file.
    """
    await registry.reset()
    return ResetResponse(success=True)
