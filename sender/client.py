"""HTTP client for sending chunked files to the receiver service."""

import base64
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import httpx

from common.logging_config import get_logger
from sender.chunker import OutgoingChunk, build_manifest, iter_chunks
from sender.config import Config
from sender.utils import format_file_size

logger = get_logger(__name__)


class SenderError(Exception):
    """
    Raised when the receiver refuses a request or cannot be reached.
    """

    def __init__(self, message: str, code: str = "UNKNOWN", status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


@dataclass
class SendResult:
    """
    Outcome of a full file send.
    """
    file_id: str
    file_name: str
    file_size: int
    total_chunks: int
    file_hash: str
    status: str
    server_hash: Optional[str] = None
    resent_chunks: int = 0

    @property
    def verified(self) -> bool:
        return self.server_hash is not None and self.server_hash == self.file_hash


class ReceiverClient:
    """HTTP client for the receiver API with retry logic and error handling."""

    def __init__(self, config: Config):
        """
        Initialize receiver client.

        Args:
            config: Configuration instance
        """
        self.config = config
        self.session = httpx.Client(
            base_url=config.get_base_url(),
            timeout=config.get_timeout()
        )
        self.request_id = None
        logger.info(f"Initialized ReceiverClient [base_url={config.get_base_url()}]")

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> 'ReceiverClient':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        max_retries: Optional[int] = None,
        **kwargs
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic on 5xx errors and network failures.

        Args:
            method: HTTP method (GET, POST, DELETE, etc.)
            endpoint: API endpoint path
            max_retries: Max retry attempts (uses config default if None)
            **kwargs: Additional arguments to pass to httpx request

        Returns:
            HTTP response object

        Raises:
            SenderError: If max retries exceeded or connection fails
        """
        retry_config = self.config.get_retry_config()
        max_retries = max_retries if max_retries is not None else retry_config['max_retries']
        backoff = retry_config['retry_backoff_multiplier']

        last_exception = None

        self.request_id = str(uuid.uuid4())
        headers = dict(kwargs.pop('headers', {}) or {})
        headers['X-Request-ID'] = self.request_id

        logger.debug(f"Making request: {method} {endpoint} [request_id={self.request_id}]")

        for attempt in range(max_retries + 1):
            try:
                response = self.session.request(method, endpoint, headers=headers, **kwargs)

                logger.debug(
                    f"Response received: {method} {endpoint} status={response.status_code} [request_id={self.request_id}]"
                )

                if 400 <= response.status_code < 500:
                    logger.warning(
                        f"Client error: {method} {endpoint} status={response.status_code} [request_id={self.request_id}]"
                    )
                    return response

                if response.status_code >= 500 and attempt < max_retries:
                    delay = backoff ** attempt
                    logger.warning(
                        f"Server error (attempt {attempt + 1}/{max_retries + 1}): "
                        f"{method} {endpoint} status={response.status_code}, retrying in {delay}s [request_id={self.request_id}]"
                    )
                    time.sleep(delay)
                    continue

                return response

            except (httpx.ConnectError, httpx.TimeoutException) as e:
                last_exception = e
                if attempt < max_retries:
                    delay = backoff ** attempt
                    logger.warning(
                        f"Network error (attempt {attempt + 1}/{max_retries + 1}): "
                        f"{method} {endpoint} error={type(e).__name__}, retrying in {delay}s [request_id={self.request_id}]"
                    )
                    time.sleep(delay)
                    continue
                logger.error(
                    f"Network error (max retries exceeded): {method} {endpoint} error={e} [request_id={self.request_id}]"
                )

        if isinstance(last_exception, httpx.ConnectError):
            raise SenderError("Cannot connect to receiver. Is it running?", code="CONNECTION_FAILED")
        if isinstance(last_exception, httpx.TimeoutException):
            raise SenderError("Request timed out. Receiver may be overloaded.", code="TIMEOUT")
        raise SenderError("Max retries exceeded", code="MAX_RETRIES")

    def _format_error(self, response: httpx.Response) -> SenderError:
        """
        Map an error response to a SenderError with a user-friendly message.
        """
        try:
            error_data = response.json()
            detail = error_data.get('detail', 'Unknown error')
            code = error_data.get('code', 'UNKNOWN')
        except ValueError:
            detail = response.text if response.text else 'Unknown error'
            code = 'UNKNOWN'

        error_messages = {
            'INVALID_ARGUMENT': 'Receiver rejected the request parameters',
            'ALREADY_EXISTS': 'A transfer with this id is already in progress',
            'NOT_FOUND': 'Transfer or file not found on receiver',
            'OUT_OF_RANGE': 'Chunk index outside the declared chunk count',
            'HASH_MISMATCH': 'Chunk integrity check failed',
            'INVALID_STATE': 'Transfer is no longer accepting chunks',
            'MISSING_CHUNK': 'Receiver could not reassemble the file',
        }

        message = error_messages.get(code, detail)
        if code in error_messages and detail:
            message = f"{message}: {detail}"
        return SenderError(message, code=code, status_code=response.status_code)

    def health(self) -> dict:
        response = self._request_with_retry('GET', '/api/health')
        if response.status_code != 200:
            raise self._format_error(response)
        return response.json()

    def init_transfer(
        self,
        file_id: str,
        file_name: str,
        file_size: int,
        total_chunks: int,
        mime_type: str,
        transfer_method: Optional[str] = None,
    ) -> dict:
        """
        Announce a transfer to the receiver.

        Returns:
            Init response body
        """
        response = self._request_with_retry('POST', '/api/transfer/init', json={
            'file_id': file_id,
            'file_name': file_name,
            'file_size': file_size,
            'total_chunks': total_chunks,
            'mime_type': mime_type,
            'transfer_method': transfer_method or self.config.get_transfer_method(),
        })
        if response.status_code != 201:
            raise self._format_error(response)
        return response.json()

    def send_chunk(
        self,
        file_id: str,
        chunk: OutgoingChunk,
        transfer_method: Optional[str] = None,
    ) -> tuple[dict, int]:
        """
        Submit one chunk, resending it while the receiver reports a hash mismatch.

        Returns:
            Tuple of (chunk response body, number of resends)

        Raises:
            SenderError: on any other rejection or when resends are exhausted
        """
        max_resends = self.config.get_retry_config()['max_retries']
        body = {
            'file_id': file_id,
            'chunk_index': chunk.index,
            'chunk_data': chunk.encoded(),
            'chunk_hash': chunk.checksum,
        }
        if transfer_method:
            body['transfer_method'] = transfer_method

        for resend in range(max_resends + 1):
            response = self._request_with_retry('POST', '/api/transfer/chunk', json=body)
            if response.status_code == 200:
                return response.json(), resend

            error = self._format_error(response)
            if error.code != 'HASH_MISMATCH' or resend == max_resends:
                raise error
            logger.warning(
                f"Chunk {chunk.index} of {file_id} failed verification, resending "
                f"({resend + 1}/{max_resends})"
            )

        raise SenderError(f"Chunk {chunk.index} could not be delivered", code="HASH_MISMATCH")

    def send_file(
        self,
        path: Path,
        chunk_size: Optional[int] = None,
        file_id: Optional[str] = None,
        transfer_method: Optional[str] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> SendResult:
        """
        Chunk, hash and submit a local file.

        Args:
            path: File to send
            chunk_size: Bytes per chunk (config default if None)
            file_id: Transfer id (random UUID if None)
            transfer_method: Link label announced to the receiver
            progress_callback: Called with (received_chunks, total_chunks) after each chunk

        Returns:
            SendResult; ``verified`` compares the receiver's whole-file hash
        """
        path = Path(path)
        chunk_size = chunk_size or self.config.get_chunk_size()
        manifest = build_manifest(path, chunk_size=chunk_size, file_id=file_id)

        logger.info(
            f"Sending {manifest.file_name} ({format_file_size(manifest.file_size)}, "
            f"{manifest.total_chunks} chunks) as {manifest.file_id}"
        )

        init_body = self.init_transfer(
            file_id=manifest.file_id,
            file_name=manifest.file_name,
            file_size=manifest.file_size,
            total_chunks=manifest.total_chunks,
            mime_type=manifest.mime_type,
            transfer_method=transfer_method,
        )

        result = SendResult(
            file_id=manifest.file_id,
            file_name=manifest.file_name,
            file_size=manifest.file_size,
            total_chunks=manifest.total_chunks,
            file_hash=manifest.file_hash,
            status='receiving',
        )

        for chunk in iter_chunks(path, chunk_size=chunk_size):
            body, resends = self.send_chunk(
                manifest.file_id,
                chunk,
                transfer_method=init_body.get('transfer_method'),
            )
            result.resent_chunks += resends
            result.status = body.get('status', result.status)
            if body.get('file_hash'):
                result.server_hash = body['file_hash']
            if progress_callback:
                progress_callback(body['received_chunks'], body['total_chunks'])

        if result.server_hash and not result.verified:
            logger.error(
                f"Receiver hash {result.server_hash[:16]}... does not match local hash "
                f"{result.file_hash[:16]}... for {manifest.file_id}"
            )
        else:
            logger.info(f"Sent {manifest.file_name}: status={result.status}")

        return result

    def list_files(self) -> list:
        response = self._request_with_retry('GET', '/api/files')
        if response.status_code != 200:
            raise self._format_error(response)
        return response.json()

    def list_transfers(self) -> list:
        response = self._request_with_retry('GET', '/api/transfers')
        if response.status_code != 200:
            raise self._format_error(response)
        return response.json()

    def download_file(self, file_id: str) -> tuple[dict, bytes]:
        """
        Fetch a reassembled file.

        Returns:
            Tuple of (metadata, raw bytes)
        """
        response = self._request_with_retry('GET', f'/api/files/{file_id}')
        if response.status_code != 200:
            raise self._format_error(response)
        body = response.json()
        data = base64.b64decode(body.pop('data'))
        return body, data

    def reset(self) -> None:
        response = self._request_with_retry('POST', '/api/reset')
        if response.status_code != 200:
            raise self._format_error(response)
