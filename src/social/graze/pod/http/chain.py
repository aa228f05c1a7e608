from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import json
import logging
from time import time
from types import TracebackType
from typing import (
    Any,
    Awaitable,
    Callable,
    Generator,
    Optional,
    Sequence,
    Tuple,
)
from aiohttp import ClientResponse, ClientSession, hdrs
from aiohttp.typedefs import StrOrURL
from multidict import CIMultiDictProxy

from social.graze.pod.app.metrics import MetricsClient

RequestFunc = Callable[..., Awaitable[ClientResponse]]

logger = logging.getLogger(__name__)


@dataclass
class ChainRequest:
    method: str
    url: StrOrURL
    headers: dict[str, str] = field(default_factory=dict)
    kwargs: dict[str, Any] = field(default_factory=dict)
    # Cleared on the request that retries after a refresh, so a second 401 is final.
    allow_refresh: bool = True

    @staticmethod
    def from_chain_request(request: "ChainRequest") -> "ChainRequest":
        return ChainRequest(
            method=request.method,
            url=request.url,
            headers=dict(request.headers),
            kwargs=dict(request.kwargs),
            allow_refresh=request.allow_refresh,
        )


@dataclass
class ChainResponse:
    status: int
    headers: CIMultiDictProxy[str]
    body: bytes = b""

    @staticmethod
    async def from_aiohttp_response(response: ClientResponse) -> "ChainResponse":
        return ChainResponse(
            status=response.status,
            headers=response.headers,
            body=await response.read(),
        )

    def json(self) -> Optional[Any]:
        """Decode the body as JSON, or None when it is empty or not JSON."""
        if not self.body:
            return None
        try:
            return json.loads(self.body)
        except ValueError:
            return None

    def body_matches_kv(self, key: str, value: Any) -> bool:
        body = self.json()
        return isinstance(body, dict) and key in body and body[key] == value


NextChainResponseCallbackType = (
    Tuple[ClientResponse, ChainResponse]
    | Tuple[ClientResponse, ChainResponse, ChainRequest]
)

NextChainCallbackType = Callable[
    [ChainRequest], Awaitable[NextChainResponseCallbackType]
]


class RequestMiddlewareBase(ABC):
    @abstractmethod
    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        pass

    def handle_gen(self, next: NextChainCallbackType) -> NextChainCallbackType:
        async def next_invoke(request: ChainRequest) -> NextChainResponseCallbackType:
            return await self.handle(next, request)

        return next_invoke


class StatsdMiddleware(RequestMiddlewareBase):
    """Records request count and duration per HTTP method and status."""

    def __init__(self, metrics_client: MetricsClient, prefix: str = "pod") -> None:
        super().__init__()
        self._metrics_client = metrics_client
        self._prefix = prefix

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        start_time = time()
        status = "error"
        try:
            response = await next(request)
            status = str(response[1].status)
            return response
        finally:
            tags = {"method": request.method.lower(), "status": status}
            self._metrics_client.increment(f"{self._prefix}.request.count", 1, tag_dict=tags)
            self._metrics_client.timer(
                f"{self._prefix}.request.time", time() - start_time, tag_dict=tags
            )


class DebugMiddleware(RequestMiddlewareBase):
    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        logger.debug(
            "Request: %s %s headers=%s", request.method, request.url, request.headers
        )
        response = await next(request)
        chain_response = response[1]
        logger.debug(
            "Response: status=%s headers=%s body=%r",
            chain_response.status,
            dict(chain_response.headers),
            chain_response.body[:1024],
        )
        return response


class EndOfLineChainMiddleware:
    def __init__(self, request_func: RequestFunc) -> None:
        super().__init__()
        self._request_func = request_func

    async def handle(self, request: ChainRequest) -> NextChainResponseCallbackType:
        logger.debug("Making request: %s %s", request.method, request.url)

        response: ClientResponse = await self._request_func(
            request.method,
            request.url,
            headers=request.headers,
            **request.kwargs,
        )

        try:
            chain_response = await ChainResponse.from_aiohttp_response(response)
        finally:
            response.release()

        return response, chain_response


class ChainMiddlewareContext:
    def __init__(
        self,
        chain_callback: NextChainCallbackType,
        chain_request: ChainRequest,
        attempt_max: int = 2,
    ) -> None:
        self._chain_callback = chain_callback
        self._chain_request = chain_request
        self._attempt_max = attempt_max

        self.chain_response: ChainResponse | None = None
        self.client_response: ClientResponse | None = None
        self.attempts = 0

    async def _do_request(self) -> Tuple[ClientResponse, ChainResponse]:
        chain_request = self._chain_request

        while True:
            self.attempts += 1
            logger.debug("Attempt %d out of %d", self.attempts, self._attempt_max)

            response = await self._chain_callback(chain_request)
            client_response = response[0]
            chain_response = response[1]
            new_request = None
            if len(response) == 3:
                new_request = response[2]

            self.chain_response = chain_response
            self.client_response = client_response

            # The last permitted attempt is final even if a middleware asked for another.
            if new_request is None or self.attempts >= self._attempt_max:
                return client_response, chain_response

            chain_request = new_request

    def __await__(self) -> Generator[Any, None, Tuple[ClientResponse, ChainResponse]]:
        return self.__aenter__().__await__()

    async def __aenter__(self) -> Tuple[ClientResponse, ChainResponse]:
        return await self._do_request()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.client_response is not None and not self.client_response.closed:
            self.client_response.close()


class ChainMiddlewareClient:
    def __init__(
        self,
        client_session: ClientSession,
        middleware: Sequence[RequestMiddlewareBase] | None = None,
        attempt_max: int = 2,
    ) -> None:
        self._client = client_session
        self._middleware = middleware
        self._attempt_max = attempt_max

    def request(
        self,
        method: str,
        url: StrOrURL,
        headers: dict[str, str] | None = None,
        allow_refresh: bool = True,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        chain_request = ChainRequest(
            method=method,
            url=url,
            headers=dict(headers or {}),
            kwargs=kwargs,
            allow_refresh=allow_refresh,
        )

        end_of_line_middleware = EndOfLineChainMiddleware(
            request_func=self._client.request,
        )

        chain_callback: NextChainCallbackType = end_of_line_middleware.handle

        for mw in reversed(self._middleware or []):
            chain_callback = mw.handle_gen(chain_callback)

        return ChainMiddlewareContext(
            chain_callback=chain_callback,
            chain_request=chain_request,
            attempt_max=self._attempt_max,
        )

    def post(
        self,
        url: StrOrURL,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        return self.request(hdrs.METH_POST, url, headers=headers, **kwargs)
