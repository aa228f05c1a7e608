"""
Authenticated request execution against a Solid Pod.

`ResourceRequestClient.execute` sends one request relative to the storage
root of a principal. Every attempt is authenticated with
`Authorization: DPoP <access token>` and a fresh DPoP proof bound to the
method and URL. If the server answers 401, the access token is refreshed once
and the request is retried once with refresh disabled, so a second 401 is a
final failure.

Requests are sent through a middleware chain:

    StatsdMiddleware -> DebugMiddleware -> RefreshOn401Middleware
        -> DpopAuthorizationMiddleware -> network

Failures never raise out of `execute`; they come back as a `Failure` whose
`error` is a `PodError` or the aiohttp transport exception.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum, Flag, auto
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from aiohttp import ClientError, ClientSession
import sentry_sdk
from yarl import URL

from social.graze.pod.app.metrics import MetricsClient
from social.graze.pod.auth.credentials import ResourceCredentials
from social.graze.pod.auth.dpop import ConfiguredProofGenerator, ProofGenerator
from social.graze.pod.auth.refresh import RefreshService
from social.graze.pod.auth.token import AiohttpTokenExchanger
from social.graze.pod.errors import (
    BadStatusCodeError,
    HostUnresolvableError,
    NoAccessTokenError,
    NoConfigurationError,
    PodError,
    ProofGenerationError,
    RefreshFailedError,
    ReservedHeaderError,
)
from social.graze.pod.http.chain import (
    ChainMiddlewareClient,
    ChainRequest,
    DebugMiddleware,
    NextChainCallbackType,
    NextChainResponseCallbackType,
    RequestMiddlewareBase,
    StatsdMiddleware,
)

logger = logging.getLogger(__name__)


class HttpMethod(str, Enum):
    POST = "POST"
    GET = "GET"
    DELETE = "DELETE"
    HEAD = "HEAD"
    PUT = "PUT"


class Header(str, Enum):
    content_type = "Content-Type"
    authorization = "Authorization"
    dpop = "DPoP"
    link = "Link"
    host = "Host"
    accept = "Accept"


RESERVED_HEADERS = frozenset({Header.authorization, Header.dpop, Header.host})


class RequestHeaders:
    """
    Caller supplied request headers.

    Known headers are keyed by `Header`; anything else goes in `extra`. The
    headers the engine sets itself (authorization, dpop, host) are rejected
    here, so a constructed `RequestHeaders` can never collide with them.

    Raises:
        ReservedHeaderError: If a reserved header is given, under any casing
    """

    def __init__(
        self,
        known: Optional[Mapping[Header, str]] = None,
        extra: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.known: Dict[Header, str] = dict(known or {})
        self.extra: Dict[str, str] = dict(extra or {})

        for header in self.known:
            if header in RESERVED_HEADERS:
                raise ReservedHeaderError(header.value)

        reserved_names = {header.value.lower(): header for header in RESERVED_HEADERS}
        for name in self.extra:
            if name.lower() in reserved_names:
                raise ReservedHeaderError(reserved_names[name.lower()].value)

    @staticmethod
    def from_mapping(headers: Mapping[Union[Header, str], str]) -> "RequestHeaders":
        known: Dict[Header, str] = {}
        extra: Dict[str, str] = {}
        by_name = {header.value.lower(): header for header in Header}
        for key, value in headers.items():
            if isinstance(key, Header):
                known[key] = value
            elif key.lower() in by_name:
                known[by_name[key.lower()]] = value
            else:
                extra[key] = value
        return RequestHeaders(known=known, extra=extra)

    def as_dict(self) -> Dict[str, str]:
        headers = {header.value: value for header, value in self.known.items()}
        headers.update(self.extra)
        return headers


class DebugOptions(Flag):
    DATA = auto()
    HEADERS = auto()
    STATUS = auto()
    ALL = DATA | HEADERS | STATUS


class _DebugResponse:
    data: Optional[bytes]
    headers: Mapping[str, str]
    status: Optional[int]

    def describe(
        self, options: DebugOptions = DebugOptions.DATA, heading: Optional[str] = None
    ) -> str:
        """Render the response for logs. The body is included only if it is UTF-8."""
        lines: List[str] = []

        if DebugOptions.DATA in options and self.data:
            try:
                lines.append(f"Data: {self.data.decode('utf-8')}")
            except UnicodeDecodeError:
                pass

        if DebugOptions.HEADERS in options:
            lines.append(f"Headers: {dict(self.headers)}")

        if DebugOptions.STATUS in options and self.status is not None:
            lines.append(f"Status Code: {self.status}")

        result = "\n".join(lines)
        if heading is not None and len(result) > 0:
            result = f"{heading}:\n{result}"

        return result


@dataclass
class Success(_DebugResponse):
    data: Optional[bytes]
    headers: Mapping[str, str]
    status: Optional[int]


@dataclass
class Failure(_DebugResponse):
    error: Exception
    data: Optional[bytes] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    status: Optional[int] = None


RequestResult = Union[Success, Failure]


def resource_url(storage_root: str, path: Optional[str] = None) -> URL:
    """Append `path` to the storage root. An empty or missing path is the root itself."""
    url = URL(storage_root)
    if path:
        url = url / path.lstrip("/")
    return url


def host_header(url: URL) -> str:
    if not url.host:
        raise HostUnresolvableError(str(url))
    host = url.raw_host or url.host
    # IPv6 literals keep their brackets in Host.
    if ":" in host:
        host = f"[{host}]"
    if url.port is None or url.is_default_port():
        return host
    return f"{host}:{url.port}"


class DpopAuthorizationMiddleware(RequestMiddlewareBase):
    """
    Sets Authorization, DPoP and Host on every attempt.

    The access token is read from the credentials when the attempt is made, not
    when the logical call starts, so a retry presents the refreshed token.
    """

    def __init__(
        self, credentials: ResourceCredentials, proof_generator: ProofGenerator
    ) -> None:
        super().__init__()
        self._credentials = credentials
        self._proof_generator = proof_generator

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        if self._credentials.configuration is None:
            raise NoConfigurationError()

        access_token = self._credentials.access_token
        if not access_token:
            raise NoAccessTokenError()

        url = URL(request.url) if isinstance(request.url, str) else request.url
        host = host_header(url)
        htu = str(url.with_query(None).with_fragment(None))

        try:
            proof = self._proof_generator.sign(htu, request.method, access_token=access_token)
        except PodError:
            raise
        except Exception as e:
            raise ProofGenerationError(e) from e

        request.headers[Header.authorization.value] = f"DPoP {access_token}"
        request.headers[Header.dpop.value] = proof.token
        request.headers[Header.host.value] = host

        return await next(request)


class RefreshOn401Middleware(RequestMiddlewareBase):
    """On a 401, refreshes the access token once and asks for one retry without refresh."""

    def __init__(self, refresh_service: RefreshService) -> None:
        super().__init__()
        self._refresh_service = refresh_service

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        response = await next(request)
        client_response = response[0]
        chain_response = response[1]

        if chain_response.status != 401 or not request.allow_refresh:
            return client_response, chain_response

        presented = request.headers.get(Header.authorization.value, "")
        stale_access_token = presented.removeprefix("DPoP ") or None

        logger.debug("Got 401 for %s %s, refreshing access token", request.method, request.url)
        error = await self._refresh_service.refresh(stale_access_token)
        if error is not None:
            raise RefreshFailedError(
                error,
                status=chain_response.status,
                headers=chain_response.headers,
                data=chain_response.body,
            )

        retry_request = ChainRequest.from_chain_request(request)
        retry_request.allow_refresh = False
        return client_response, chain_response, retry_request


class ResourceRequestClient:
    """
    Sends authenticated requests to the Pod of one principal.

    Args:
        credentials: Tokens and configuration, borrowed for every call
        http_session: aiohttp session used for resource and token requests
        proof_generator: DPoP signer (defaults to the configuration's proof key)
        refresh_service: Refresh implementation (defaults to a refresh_token
            grant at the configured token endpoint)
        metrics_client: Optional metrics sink for request counts and timings
        debug: Log every request and response
    """

    def __init__(
        self,
        credentials: ResourceCredentials,
        http_session: ClientSession,
        proof_generator: Optional[ProofGenerator] = None,
        refresh_service: Optional[RefreshService] = None,
        metrics_client: Optional[MetricsClient] = None,
        debug: bool = False,
    ) -> None:
        self.credentials = credentials
        self._http_session = http_session
        self._proof_generator = proof_generator or ConfiguredProofGenerator(credentials)
        self.refresh_service = refresh_service or RefreshService(
            credentials,
            AiohttpTokenExchanger(http_session, self._proof_generator),
            metrics_client=metrics_client,
        )

        middleware: List[RequestMiddlewareBase] = []
        if metrics_client is not None:
            middleware.append(StatsdMiddleware(metrics_client))
        if debug:
            middleware.append(DebugMiddleware())
        middleware.append(RefreshOn401Middleware(self.refresh_service))
        middleware.append(DpopAuthorizationMiddleware(credentials, self._proof_generator))

        # One send plus at most one retry after a refresh.
        self._chain_client = ChainMiddlewareClient(
            client_session=http_session, middleware=middleware, attempt_max=2
        )

    async def execute(
        self,
        path: Optional[str] = None,
        method: HttpMethod = HttpMethod.GET,
        body: Optional[bytes] = None,
        headers: Optional[Union[RequestHeaders, Mapping[Union[Header, str], str]]] = None,
        allow_refresh: bool = True,
    ) -> RequestResult:
        """
        Execute one request relative to the storage root.

        Args:
            path: Appended to the storage root; None or "" means the root itself
            method: HTTP method
            body: Request body, typically for PUT or POST
            headers: Caller headers; must not contain authorization, dpop or host
            allow_refresh: Refresh the access token and retry once on a 401

        Returns:
            RequestResult: `Success` for 2xx, otherwise `Failure`
        """
        configuration = self.credentials.configuration
        if configuration is None:
            return Failure(NoConfigurationError())

        # A RequestHeaders may have been changed since it was constructed.
        try:
            if isinstance(headers, RequestHeaders):
                request_headers = RequestHeaders(known=headers.known, extra=headers.extra)
            else:
                request_headers = RequestHeaders.from_mapping(headers or {})
        except ReservedHeaderError as e:
            return Failure(e)

        url = resource_url(configuration.storage_root, path)

        rargs: Dict[str, Any] = {}
        if body is not None:
            rargs["data"] = body

        logger.debug("Request: %s %s", method.value, url)

        try:
            async with self._chain_client.request(
                method.value,
                url,
                headers=request_headers.as_dict(),
                allow_refresh=allow_refresh,
                **rargs,
            ) as (
                client_response,
                chain_response,
            ):
                pass
        except RefreshFailedError as e:
            return Failure(e, data=e.data, headers=e.headers or {}, status=e.status)
        except PodError as e:
            return Failure(e)
        except (ClientError, asyncio.TimeoutError) as e:
            sentry_sdk.capture_exception(e)
            logger.debug("Transport failure for %s %s: %r", method.value, url, e)
            return Failure(e)

        if not 200 <= chain_response.status < 300:
            return Failure(
                BadStatusCodeError(chain_response.status),
                data=chain_response.body,
                headers=chain_response.headers,
                status=chain_response.status,
            )

        return Success(
            data=chain_response.body,
            headers=chain_response.headers,
            status=chain_response.status,
        )
