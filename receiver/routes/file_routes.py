"""Reassembled file API routes."""

import base64
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from receiver.dependencies import get_registry
from receiver.registry import TransferRegistry
from receiver.schemas.files import FileSummaryResponse, FileResponse

router = APIRouter(prefix="/api/files", tags=["Files"])


@router.get("", response_model=list[FileSummaryResponse])
async def list_files(registry: TransferRegistry = Depends(get_registry)):
    """
    List retained reassembled files, most recent first, without data.
    """
    return await registry.list_artifacts()


@router.get("/{file_id}", response_model=FileResponse)
async def get_file(file_id: str, registry: TransferRegistry = Depends(get_registry)):
    """
    Get a reassembled file with base64 data.

    Raises:
        - 404: File not retained (NOT_FOUND)
    """
    artifact = await registry.get_artifact(file_id)
    return {
        **artifact.summary(),
        "data": base64.b64encode(artifact.payload).decode("ascii"),
    }


@router.get("/{file_id}/download")
async def download_file(file_id: str, registry: TransferRegistry = Depends(get_registry)):
    """
    Download the raw bytes of a reassembled file.
    """
    artifact = await registry.get_artifact(file_id)

    # header values are latin-1; non-ASCII names go through RFC 5987 encoding
    quoted_name = quote(artifact.file_name)
    if quoted_name != artifact.file_name:
        content_disposition = f"attachment; filename*=utf-8''{quoted_name}"
    else:
        content_disposition = f'attachment; filename="{artifact.file_name}"'

    return Response(
        content=artifact.payload,
        media_type=artifact.mime_type,
        headers={
            "Content-Disposition": content_disposition,
            "X-Content-SHA256": artifact.content_hash,
        }
    )
