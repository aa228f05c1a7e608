"""
Shared test configuration and fixtures for Pod client tests.

Provides signing keys, refresh delegates, and an in-process fake Solid Pod
with an OAuth token endpoint, served with aiohttp's TestServer.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
import pytest_asyncio
from aiohttp import ClientSession, web
from aiohttp.test_utils import TestServer
from jwcrypto import jwk

from social.graze.pod.auth.dpop import access_token_hash

from tests.test_helpers import RecordingRefreshDelegate, create_test_jwk, decode_proof

BASIC_CONTAINER_LINK = '<http://www.w3.org/ns/ldp#BasicContainer>; rel="type"'
RESOURCE_LINKS = [
    '<http://www.w3.org/ns/ldp#Resource>; rel="type"',
    '<http://www.w3.org/ns/ldp#NonRDFSource>; rel="type"',
]


@pytest.fixture
def proof_key() -> jwk.JWK:
    return create_test_jwk()


@pytest.fixture
def refresh_delegate() -> RecordingRefreshDelegate:
    return RecordingRefreshDelegate()


@dataclass
class RecordedRequest:
    method: str
    path: str
    headers: Dict[str, str]
    body: bytes
    proof_claims: Optional[Dict[str, Any]] = None


@dataclass
class FakePod:
    """State of the fake Pod and token endpoint.

    Access tokens in `valid_access_tokens` are accepted by the Pod. The token
    endpoint exchanges refresh tokens in `valid_refresh_tokens` for
    `next_access_token`, and also issues `next_refresh_token` when set.
    """

    valid_access_tokens: Set[str] = field(default_factory=set)
    valid_refresh_tokens: Set[str] = field(default_factory=set)
    next_access_token: str = "access-2"
    next_refresh_token: Optional[str] = None
    token_status: int = 200
    require_nonce: Optional[str] = None
    # When False, issued access tokens are never accepted by the Pod.
    accept_issued_tokens: bool = True
    containers: Set[str] = field(default_factory=lambda: {"/"})
    files: Dict[str, Tuple[bytes, str]] = field(default_factory=dict)
    requests: List[RecordedRequest] = field(default_factory=list)
    token_requests: List[RecordedRequest] = field(default_factory=list)
    base_url: str = ""

    @property
    def storage_root(self) -> str:
        return f"{self.base_url}/"

    @property
    def token_endpoint(self) -> str:
        return f"{self.base_url}/token"

    async def token_handler(self, request: web.Request) -> web.Response:
        body = await request.read()
        form = await request.post()
        proof = request.headers.get("DPoP")
        claims = decode_proof(proof)[1] if proof else None
        self.token_requests.append(
            RecordedRequest(request.method, request.path, dict(request.headers), body, claims)
        )

        if claims is None:
            return web.json_response({"error": "invalid_dpop_proof"}, status=400)

        if self.require_nonce is not None and claims.get("nonce") != self.require_nonce:
            return web.json_response(
                {"error": "use_dpop_nonce"},
                status=400,
                headers={"DPoP-Nonce": self.require_nonce},
            )

        if self.token_status != 200:
            return web.json_response({"error": "server_error"}, status=self.token_status)

        if form.get("grant_type") != "refresh_token":
            return web.json_response({"error": "unsupported_grant_type"}, status=400)

        if form.get("refresh_token") not in self.valid_refresh_tokens:
            return web.json_response({"error": "invalid_grant"}, status=400)

        if self.accept_issued_tokens:
            self.valid_access_tokens = {self.next_access_token}
        response: Dict[str, Any] = {
            "access_token": self.next_access_token,
            "token_type": "DPoP",
            "expires_in": 300,
        }
        if self.next_refresh_token is not None:
            response["refresh_token"] = self.next_refresh_token
            self.valid_refresh_tokens = {self.next_refresh_token}
        return web.json_response(response)

    async def resource_handler(self, request: web.Request) -> web.StreamResponse:
        body = await request.read()
        proof = request.headers.get("DPoP")
        claims = decode_proof(proof)[1] if proof else None
        self.requests.append(
            RecordedRequest(request.method, request.path, dict(request.headers), body, claims)
        )

        authorization = request.headers.get("Authorization", "")
        access_token = authorization.removeprefix("DPoP ")
        if (
            not authorization.startswith("DPoP ")
            or access_token not in self.valid_access_tokens
            or claims is None
            or claims.get("ath") != access_token_hash(access_token)
        ):
            return web.Response(status=401)

        path = request.path

        if request.method == "PUT":
            self.files[path] = (body, request.headers.get("Content-Type", ""))
            parent = path.rsplit("/", 1)[0] + "/"
            self.containers.add(parent)
            return web.Response(status=201)

        if request.method == "DELETE":
            if path in self.files:
                del self.files[path]
                return web.Response(status=204)
            if path in self.containers and path != "/":
                self.containers.discard(path)
                return web.Response(status=204)
            return web.Response(status=404)

        if path in self.containers or f"{path}/" in self.containers:
            return web.Response(
                status=200,
                headers={"Link": BASIC_CONTAINER_LINK, "Content-Type": "text/turtle"},
            )

        if path in self.files:
            data, content_type = self.files[path]
            response = web.Response(status=200, body=data, headers={"Content-Type": content_type})
            for link in RESOURCE_LINKS:
                response.headers.add("Link", link)
            return response

        return web.Response(status=404)


@pytest_asyncio.fixture
async def fake_pod():
    """Run a fake Pod with a token endpoint on a local port."""
    pod = FakePod()

    app = web.Application()
    app.router.add_post("/token", pod.token_handler)
    app.router.add_route("*", "/{tail:.*}", pod.resource_handler)

    server = TestServer(app)
    await server.start_server()
    pod.base_url = str(server.make_url("")).rstrip("/")

    try:
        yield pod
    finally:
        await server.close()


@pytest_asyncio.fixture
async def http_session():
    async with ClientSession() as session:
        yield session
