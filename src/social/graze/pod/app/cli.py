import argparse
import asyncio
import json
import logging
import mimetypes
import os
import sys
from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp
import sentry_sdk

from social.graze.pod.app.config import Settings
from social.graze.pod.app.metrics import create_metrics_client
from social.graze.pod.auth.credentials import JsonFileRefreshDelegate
from social.graze.pod.request import ResourceRequestClient
from social.graze.pod.resources import DownloadStatus, LookupStatus, ResourceOperations

logger = logging.getLogger(__name__)


def configure_logging():
    logging_config_file = os.getenv("LOGGING_CONFIG_FILE", "")

    if len(logging_config_file) > 0:
        with open(logging_config_file) as fl:
            dictConfig(json.load(fl))
        return

    logging.basicConfig()
    logging.getLogger().setLevel(logging.DEBUG)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pod", description="Work with files on a Solid Pod")
    parser.add_argument(
        "--credentials-file",
        default=None,
        help="JSON file holding the access and refresh tokens. Refreshed tokens are written back to it.",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    lookup_dir = commands.add_parser("lookup-dir", help="Check that a directory exists.")
    lookup_dir.add_argument("name", nargs="?", default=None, help="Directory name, the storage root if omitted.")

    lookup_file = commands.add_parser("lookup-file", help="Check that a file exists.")
    lookup_file.add_argument("name")
    lookup_file.add_argument("--directory", default=None)

    upload = commands.add_parser("upload", help="Upload a local file.")
    upload.add_argument("name")
    upload.add_argument("file", help="Path of the local file to upload.")
    upload.add_argument("--directory", default=None)
    upload.add_argument("--mime-type", default=None, help="Guessed from the file name if omitted.")

    download = commands.add_parser("download", help="Download a file.")
    download.add_argument("name")
    download.add_argument("--directory", default=None)
    download.add_argument("--output", default=None, help="Write to this path instead of stdout.")

    delete = commands.add_parser("delete", help="Delete a file or an empty directory.")
    delete.add_argument("name")
    delete.add_argument("--directory", default=None)

    commands.add_parser("refresh", help="Refresh the access token.")

    return parser


async def run_command(
    args: Dict[str, Any], operations: ResourceOperations, request_client: ResourceRequestClient
) -> int:
    command = args["command"]

    if command == "lookup-dir":
        result = await operations.lookup_directory(args.get("name"))
        print(f"{result.status.value}")
        return 0 if result.status == LookupStatus.found else 1

    if command == "lookup-file":
        result = await operations.lookup_file(args["name"], args.get("directory"))
        print(f"{result.status.value}")
        return 0 if result.status == LookupStatus.found else 1

    if command == "upload":
        local_file = Path(args["file"])
        mime_type: Optional[str] = args.get("mime_type")
        if mime_type is None:
            mime_type = mimetypes.guess_type(local_file.name)[0] or "application/octet-stream"
        error = await operations.upload_file(
            args["name"], args.get("directory"), local_file.read_bytes(), mime_type
        )
        if error is not None:
            logger.error("Upload failed: %r", error)
            return 1
        return 0

    if command == "download":
        download = await operations.download_file(args["name"], args.get("directory"))
        if download.status != DownloadStatus.success or download.data is None:
            logger.error("Download failed: %s %r", download.status.value, download.error)
            return 1
        output = args.get("output")
        if output:
            Path(output).write_bytes(download.data)
        else:
            sys.stdout.buffer.write(download.data)
        return 0

    if command == "delete":
        error = await operations.delete_resource(args["name"], args.get("directory"))
        if error is not None:
            logger.error("Delete failed: %r", error)
            return 1
        return 0

    if command == "refresh":
        error = await request_client.refresh_service.refresh()
        if error is not None:
            logger.error("Refresh failed: %r", error)
            return 1
        return 0

    raise ValueError(f"Unknown command {command}")


async def realMain() -> int:
    args = vars(build_parser().parse_args())

    settings = Settings()

    if settings.sentry_dsn:
        sentry_sdk.init(dsn=settings.sentry_dsn)

    refresh_delegate: Optional[JsonFileRefreshDelegate] = None
    if args.get("credentials_file"):
        refresh_delegate = JsonFileRefreshDelegate(args["credentials_file"])

    try:
        credentials = settings.resource_credentials(refresh_delegate)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    if refresh_delegate is not None and not refresh_delegate.load(credentials):
        logger.info("No stored credentials at %s, using the environment", args["credentials_file"])

    metrics_client = create_metrics_client(
        settings.metrics_backend,
        host=settings.statsd_host,
        port=settings.statsd_port,
        debug=settings.debug,
    )
    await metrics_client.connect()

    try:
        timeout = aiohttp.ClientTimeout(total=settings.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            request_client = ResourceRequestClient(
                credentials,
                session,
                metrics_client=metrics_client,
                debug=settings.debug,
            )
            operations = ResourceOperations(request_client)
            return await run_command(args, operations, request_client)
    finally:
        await metrics_client.close()


def main() -> None:
    configure_logging()
    sys.exit(asyncio.run(realMain()))


if __name__ == "__main__":
    main()
