"""CLI entry point."""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from cli.config import DEFAULT_CONFIG_PATH, Config
from cli.upload_client import ChunkUploadClient, UploadClientError
from common.logging_config import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='chunkmerge-upload',
        description='Upload a file to a chunkmerge server in parallel chunks.',
    )
    parser.add_argument('file', type=Path, help='File to upload')
    parser.add_argument('--name', help='Name to store the file under')
    parser.add_argument('--chunk-size', type=int, help='Chunk size in bytes')
    parser.add_argument('--workers', type=int, help='Parallel chunk uploads')
    parser.add_argument('--host', help='Server host')
    parser.add_argument('--port', type=int, help='Server port')
    parser.add_argument('--config', type=Path, default=DEFAULT_CONFIG_PATH, help='Config file')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for CLI."""
    args = build_parser().parse_args(argv)

    logger = setup_logging('cli', log_level='DEBUG' if args.debug else None)

    config = Config(args.config)
    if args.host:
        config.set('server_host', args.host)
    if args.port:
        config.set('server_port', args.port)

    if not args.file.is_file():
        logger.error(f"Not a file: {args.file}")
        return 2

    client = ChunkUploadClient(config)
    try:
        result = client.upload_file(
            args.file,
            filename=args.name,
            chunk_size=args.chunk_size,
            max_workers=args.workers,
        )
    except (UploadClientError, ConnectionError) as e:
        logger.error(f"Upload failed: {e}")
        return 1
    finally:
        client.close()

    print(f"Uploaded {result['filename']} ({result['size']} bytes, {result['chunks']} chunks)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
