"""
DPoP proof generation for Pod requests.

A DPoP proof is a short lived JWT that binds a request to the HTTP method and
URL it is sent to and, for resource requests, to the access token presented in
the `Authorization` header (the `ath` claim). Servers reject proofs that were
minted for a different endpoint, which prevents replaying an access token
somewhere else.

The request engine only depends on the `ProofGenerator` protocol. The
`JwkProofGenerator` here signs proofs with a jwcrypto key held in the
resource configuration.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from jwcrypto import jwk, jwt

from social.graze.pod.auth.credentials import ResourceCredentials
from social.graze.pod.errors import NoConfigurationError


@dataclass(frozen=True)
class DpopProof:
    token: str
    jti: str


class ProofGenerator(Protocol):
    def sign(
        self,
        url: str,
        method: str,
        access_token: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> DpopProof: ...


def access_token_hash(access_token: str) -> str:
    """Compute the `ath` claim: base64url encoded SHA-256 of the access token, unpadded."""
    hashed = hashlib.sha256(access_token.encode("ascii")).digest()
    encoded = base64.urlsafe_b64encode(hashed)
    return encoded.decode("ascii").rstrip("=")


def signing_algorithm(key: jwk.JWK) -> str:
    public_key = key.export_public(as_dict=True)
    alg = public_key.get("alg")
    if alg:
        return alg
    if public_key.get("kty") == "RSA":
        return "RS256"
    return "ES256"


def create_dpop_header(key: jwk.JWK) -> Dict[str, Any]:
    return {
        "typ": "dpop+jwt",
        "alg": signing_algorithm(key),
        "jwk": key.export_public(as_dict=True),
    }


def create_dpop_claims(
    http_method: str,
    http_uri: str,
    access_token: Optional[str] = None,
    nonce: Optional[str] = None,
    issued_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Create DPoP claims binding a proof to one request.

    Args:
        http_method: HTTP method of the request (upper-cased into `htm`)
        http_uri: Absolute request URI (`htu`), exactly as sent on the wire
        access_token: When given, its hash is bound into the `ath` claim
        nonce: Server supplied `DPoP-Nonce` value, if any
        issued_at: Issue time (defaults to now, UTC)

    Returns:
        Dict[str, Any]: claims without `jti`, which is added at signing time
    """
    if issued_at is None:
        issued_at = datetime.now(timezone.utc)

    claims: Dict[str, Any] = {
        "htm": http_method.upper(),
        "htu": http_uri,
        "iat": int(issued_at.timestamp()),
    }

    if access_token is not None:
        claims["ath"] = access_token_hash(access_token)

    if nonce is not None:
        claims["nonce"] = nonce

    return claims


class JwkProofGenerator:
    """Signs DPoP proofs with a single private JWK."""

    def __init__(self, key: jwk.JWK) -> None:
        if not key.has_private:
            raise ValueError("DPoP signing key must include private key material")
        self._key = key
        self._header = create_dpop_header(key)

    def sign(
        self,
        url: str,
        method: str,
        access_token: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> DpopProof:
        claims = create_dpop_claims(method, url, access_token=access_token, nonce=nonce)

        jti = secrets.token_urlsafe(32)
        claims["jti"] = jti

        proof = jwt.JWT(header=self._header, claims=claims)
        proof.make_signed_token(self._key)

        return DpopProof(token=proof.serialize(), jti=jti)


class ConfiguredProofGenerator:
    """Signs with the proof key of the configuration the credentials currently hold."""

    def __init__(self, credentials: ResourceCredentials) -> None:
        self._credentials = credentials
        self._signer: Optional[JwkProofGenerator] = None
        self._signer_key: Optional[jwk.JWK] = None

    def sign(
        self,
        url: str,
        method: str,
        access_token: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> DpopProof:
        configuration = self._credentials.configuration
        if configuration is None:
            raise NoConfigurationError()

        if self._signer is None or self._signer_key is not configuration.proof_key:
            self._signer = JwkProofGenerator(configuration.proof_key)
            self._signer_key = configuration.proof_key

        return self._signer.sign(url, method, access_token=access_token, nonce=nonce)
