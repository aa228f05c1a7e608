"""
Refresh token exchange against an OAuth 2.0 token endpoint.

Implements the `refresh_token` grant (RFC 6749 section 6) for DPoP bound
tokens: every token request carries a DPoP proof for `POST <token_endpoint>`.
Authorization servers may demand a server issued nonce, answering with
`use_dpop_nonce` and a `DPoP-Nonce` header; the request is then signed again
with that nonce and retried once.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from aiohttp import BasicAuth, ClientSession

from social.graze.pod.auth.credentials import AuthenticationMethod
from social.graze.pod.auth.dpop import ProofGenerator
from social.graze.pod.errors import TokenEndpointError
from social.graze.pod.http.chain import (
    ChainMiddlewareClient,
    ChainRequest,
    NextChainCallbackType,
    NextChainResponseCallbackType,
    RequestMiddlewareBase,
)

logger = logging.getLogger(__name__)

DPOP_NONCE_ERRORS = ("use_dpop_nonce", "invalid_dpop_proof")


@dataclass(frozen=True)
class TokenResponse:
    access_token: Optional[str]
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


class TokenExchanger(Protocol):
    async def exchange_refresh_token(
        self,
        refresh_token: str,
        client_id: str,
        client_secret: str,
        token_endpoint: str,
        authentication_method: AuthenticationMethod,
    ) -> TokenResponse: ...


class TokenEndpointDpopMiddleware(RequestMiddlewareBase):
    """Attaches a DPoP proof and adopts the server nonce when asked to."""

    def __init__(self, proof_generator: ProofGenerator) -> None:
        super().__init__()
        self._proof_generator = proof_generator
        self._nonce: Optional[str] = None

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        proof = self._proof_generator.sign(
            str(request.url), request.method, nonce=self._nonce
        )
        request.headers["DPoP"] = proof.token

        response = await next(request)
        client_response = response[0]
        chain_response = response[1]

        if chain_response.status in (400, 401) and any(
            chain_response.body_matches_kv("error", error) for error in DPOP_NONCE_ERRORS
        ):
            self._nonce = chain_response.headers.get("DPoP-Nonce", "")
            logger.debug("Token endpoint requested a DPoP nonce, retrying")
            return client_response, chain_response, ChainRequest.from_chain_request(request)

        return client_response, chain_response


class AiohttpTokenExchanger:
    def __init__(self, http_session: ClientSession, proof_generator: ProofGenerator) -> None:
        self._http_session = http_session
        self._proof_generator = proof_generator

    async def exchange_refresh_token(
        self,
        refresh_token: str,
        client_id: str,
        client_secret: str,
        token_endpoint: str,
        authentication_method: AuthenticationMethod,
    ) -> TokenResponse:
        fields = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }

        rargs: Dict[str, Any] = {}
        if authentication_method == AuthenticationMethod.client_secret_post:
            fields["client_id"] = client_id
            fields["client_secret"] = client_secret
        else:
            rargs["auth"] = BasicAuth(client_id, client_secret)

        chain_client = ChainMiddlewareClient(
            client_session=self._http_session,
            middleware=[TokenEndpointDpopMiddleware(self._proof_generator)],
        )

        async with chain_client.post(
            token_endpoint,
            headers={"Accept": "application/json"},
            data=fields,
            **rargs,
        ) as (
            client_response,
            chain_response,
        ):
            token_response = chain_response.json()
            if chain_response.status != 200:
                raise TokenEndpointError(chain_response.status, token_response)

        if not isinstance(token_response, dict):
            raise TokenEndpointError(chain_response.status, chain_response.body)

        return TokenResponse(
            access_token=token_response.get("access_token", None),
            refresh_token=token_response.get("refresh_token", None),
            expires_in=token_response.get("expires_in", None),
        )
