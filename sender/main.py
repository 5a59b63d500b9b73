"""Command line entry point for the chunk-relay sender."""

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

from common.constants import SUPPORTED_TRANSFER_METHODS
from common.logging_config import setup_logging
from sender.client import ReceiverClient, SenderError
from sender.config import Config, DEFAULT_CONFIG_PATH
from sender.utils import format_file_size, format_progress


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='chunk-relay-send', description='Send files to a chunk-relay receiver')
    parser.add_argument('--config', type=Path, default=DEFAULT_CONFIG_PATH, help='Path to config JSON')
    parser.add_argument('--host', help='Receiver host (overrides config)')
    parser.add_argument('--port', type=int, help='Receiver port (overrides config)')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    send = subparsers.add_parser('send', help='Chunk and send a file')
    send.add_argument('path', type=Path)
    send.add_argument('--chunk-size', type=int, help='Bytes per chunk')
    send.add_argument('--file-id', help='Transfer id (random UUID by default)')
    send.add_argument('--method', choices=SUPPORTED_TRANSFER_METHODS, help='Transfer method label')

    subparsers.add_parser('list', help='List reassembled files')
    subparsers.add_parser('transfers', help='List active transfers')
    subparsers.add_parser('health', help='Show receiver health')
    subparsers.add_parser('reset', help='Clear all transfers and files on the receiver')

    get = subparsers.add_parser('get', help='Download a reassembled file')
    get.add_argument('file_id')
    get.add_argument('-o', '--output', type=Path, help='Output path (defaults to original file name)')

    return parser


def run(args: argparse.Namespace, client: ReceiverClient) -> int:
    """Execute one parsed command. Returns a process exit code."""
    if args.command == 'send':
        if not args.path.is_file():
            print(f"Error: File not found: {args.path}", file=sys.stderr)
            return 1

        def show_progress(received: int, total: int) -> None:
            sys.stdout.write(f"\rSending {args.path.name}: {format_progress(received, total)}")
            sys.stdout.flush()

        result = client.send_file(
            args.path,
            chunk_size=args.chunk_size,
            file_id=args.file_id,
            transfer_method=args.method,
            progress_callback=show_progress,
        )
        sys.stdout.write('\n')
        print(f"File ID: {result.file_id}")
        print(f"Status: {result.status}")
        if result.resent_chunks:
            print(f"Resent chunks: {result.resent_chunks}")
        if result.server_hash:
            print(f"Hash: {result.server_hash} ({'verified' if result.verified else 'MISMATCH'})")
            return 0 if result.verified else 2
        return 0

    if args.command == 'list':
        files = client.list_files()
        if not files:
            print("No files reassembled yet")
        for f in files:
            print(f"{f['file_id']}  {f['file_name']}  {format_file_size(f['file_size'])}  {f['file_hash'][:16]}...")
        return 0

    if args.command == 'transfers':
        transfers = client.list_transfers()
        if not transfers:
            print("No active transfers")
        for t in transfers:
            progress = format_progress(t['received_chunks'], t['total_chunks'])
            print(f"{t['file_id']}  {t['file_name']}  {t['status']}  {progress}  [{t['transfer_method']}]")
        return 0

    if args.command == 'get':
        metadata, data = client.download_file(args.file_id)
        output = args.output or Path(metadata['file_name'])
        output.write_bytes(data)
        print(f"Saved {metadata['file_name']} ({format_file_size(len(data))}) to {output}")
        return 0

    if args.command == 'health':
        health = client.health()
        for key, value in health.items():
            print(f"{key}: {value}")
        return 0

    if args.command == 'reset':
        client.reset()
        print("Receiver reset")
        return 0

    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the sender CLI."""
    args = build_parser().parse_args(argv)

    log_level = 'DEBUG' if args.debug else os.getenv('LOG_LEVEL', 'WARNING')
    logger = setup_logging('sender', log_level=log_level)

    config = Config(args.config)
    if args.host:
        config.data['receiver_host'] = args.host
    if args.port:
        config.data['receiver_port'] = args.port

    try:
        with ReceiverClient(config) as client:
            return run(args, client)
    except SenderError as e:
        logger.debug(f"Command {args.command} failed: {e.code}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
