"""
Resource operations on a Solid Pod.

Directories are LDP containers and files are LDP resources, both addressed
by path below the storage root. The kind of a resource is advertised in the
`Link` response header, which is what the lookups inspect.

See https://www.w3.org/TR/ldp-primer/ and https://solidproject.org/TR/protocol
"""

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Any, Dict, Optional

from multidict import CIMultiDict

from social.graze.pod.errors import NameIsZeroLengthError, NoDataInDownloadError
from social.graze.pod.request import (
    DebugOptions,
    Failure,
    Header,
    HttpMethod,
    RequestHeaders,
    ResourceRequestClient,
    Success,
)

logger = logging.getLogger(__name__)

BASIC_CONTAINER = '<http://www.w3.org/ns/ldp#BasicContainer>; rel="type"'
RESOURCE = '<http://www.w3.org/ns/ldp#Resource>; rel="type"'
NON_RDF_SOURCE = '<http://www.w3.org/ns/ldp#NonRDFSource>; rel="type"'


class LookupStatus(str, Enum):
    found = "found"
    not_found = "not_found"
    error = "error"


@dataclass(frozen=True)
class LookupResult:
    status: LookupStatus
    error: Optional[Exception] = None

    @staticmethod
    def found() -> "LookupResult":
        return LookupResult(LookupStatus.found)

    @staticmethod
    def not_found() -> "LookupResult":
        return LookupResult(LookupStatus.not_found)

    @staticmethod
    def failed(error: Exception) -> "LookupResult":
        return LookupResult(LookupStatus.error, error)


class DownloadStatus(str, Enum):
    success = "success"
    # The file is definitely not there; the user may have renamed or deleted it.
    file_not_found = "file_not_found"
    failure = "failure"


@dataclass(frozen=True)
class DownloadResult:
    status: DownloadStatus
    data: Optional[bytes] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    error: Optional[Exception] = None

    @staticmethod
    def success(data: bytes, attributes: Optional[Dict[str, Any]] = None) -> "DownloadResult":
        return DownloadResult(DownloadStatus.success, data=data, attributes=attributes or {})

    @staticmethod
    def file_not_found() -> "DownloadResult":
        return DownloadResult(DownloadStatus.file_not_found)

    @staticmethod
    def failure(error: Exception) -> "DownloadResult":
        return DownloadResult(DownloadStatus.failure, error=error)


def file_path(name: str, directory: Optional[str] = None) -> str:
    if directory is not None:
        return f"{directory}/{name}"
    return name


def link_contains(result: Success, marker: str) -> bool:
    links = CIMultiDict(result.headers).getall(Header.link.value, [])
    return any(marker in link for link in links)


class ResourceOperations:
    def __init__(self, request_client: ResourceRequestClient) -> None:
        self._request_client = request_client

    async def _lookup(
        self, path: Optional[str], marker: str, headers: RequestHeaders
    ) -> LookupResult:
        # HEAD retrieves only the metadata: https://www.w3.org/TR/ldp-primer/#filelookup
        result = await self._request_client.execute(
            path=path, method=HttpMethod.HEAD, headers=headers
        )

        if isinstance(result, Failure):
            logger.debug(
                "Failure Response: %s; error: %s",
                result.describe(DebugOptions.ALL),
                result.error,
            )
            if result.status == 404:
                return LookupResult.not_found()
            return LookupResult.failed(result.error)

        logger.debug("Success Response: %s", result.describe(DebugOptions.ALL))

        # e.g. Link: <.acl>; rel="acl", <http://www.w3.org/ns/ldp#BasicContainer>; rel="type"
        if link_contains(result, marker):
            return LookupResult.found()

        logger.warning("Found resource %r but it didn't have the expected Link header", path)
        return LookupResult.not_found()

    async def lookup_directory(self, name: Optional[str] = None) -> LookupResult:
        """Look up a directory (container). None looks up the storage root."""
        logger.debug("Looking up directory %r", name)

        if name is not None and len(name) == 0:
            return LookupResult.failed(NameIsZeroLengthError())

        headers = RequestHeaders(known={Header.accept: "text/turtle"})
        return await self._lookup(name, BASIC_CONTAINER, headers)

    async def lookup_file(self, name: str, directory: Optional[str] = None) -> LookupResult:
        if len(name) == 0:
            return LookupResult.failed(NameIsZeroLengthError())

        return await self._lookup(file_path(name, directory), RESOURCE, RequestHeaders())

    async def upload_file(
        self,
        name: str,
        directory: Optional[str],
        data: bytes,
        mime_type: str,
    ) -> Optional[Exception]:
        """
        Upload a file, creating the directory on the server if needed.

        The resource is written with PUT so the URI is exactly the request path;
        with POST the server would pick the name. Existing files are overwritten:
        If-None-Match is not supported by all servers (e.g. NSS 5.6.8), so callers
        wanting create-only semantics should lookup_file first.

        Args:
            name: File name, must not be empty
            directory: Optional directory below the storage root
            data: File contents
            mime_type: Content type of `data`, e.g. "text/plain"

        Returns:
            Optional[Exception]: None on success
        """
        if len(name) == 0:
            return NameIsZeroLengthError()

        headers = RequestHeaders(
            known={
                Header.content_type: mime_type,
                Header.link: NON_RDF_SOURCE,
            }
        )

        result = await self._request_client.execute(
            path=file_path(name, directory),
            method=HttpMethod.PUT,
            body=data,
            headers=headers,
        )

        if isinstance(result, Failure):
            logger.debug(
                "Failure Response: %s; error: %s",
                result.describe(DebugOptions.ALL),
                result.error,
            )
            return result.error

        logger.debug("Success Response: %s", result.describe(DebugOptions.ALL))
        return None

    async def download_file(
        self, name: str, directory: Optional[str] = None
    ) -> DownloadResult:
        if len(name) == 0:
            return DownloadResult.failure(NameIsZeroLengthError())

        result = await self._request_client.execute(
            path=file_path(name, directory), method=HttpMethod.GET
        )

        if isinstance(result, Failure):
            logger.debug(
                "Failure Response: %s; error: %s",
                result.describe(DebugOptions.HEADERS | DebugOptions.STATUS),
                result.error,
            )
            if result.status == 404:
                return DownloadResult.file_not_found()
            return DownloadResult.failure(result.error)

        logger.debug(
            "Success Response: %s",
            result.describe(DebugOptions.HEADERS | DebugOptions.STATUS),
        )

        if not result.data:
            return DownloadResult.failure(NoDataInDownloadError())

        # The protocol offers no checksum for stored resources.
        return DownloadResult.success(result.data)

    async def delete_resource(
        self, name: str, directory: Optional[str] = None
    ) -> Optional[Exception]:
        """Delete a file or a directory. Directories must be empty."""
        if len(name) == 0:
            return NameIsZeroLengthError()

        result = await self._request_client.execute(
            path=file_path(name, directory), method=HttpMethod.DELETE
        )

        if isinstance(result, Failure):
            logger.debug(
                "Failure Response: %s; error: %s",
                result.describe(DebugOptions.ALL),
                result.error,
            )
            return result.error

        logger.debug("Success Response: %s", result.describe(DebugOptions.ALL))
        return None
