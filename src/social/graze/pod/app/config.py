"""
Configuration for the Pod client.

Settings are loaded from environment variables with pydantic-settings. The
resource configuration handed to the request engine is built from them with
`Settings.resource_configuration()`, and is immutable from then on.
"""

from typing import Annotated, Optional
import logging
from jwcrypto import jwk
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from social.graze.pod.auth.credentials import (
    AuthenticationMethod,
    RefreshDelegate,
    ResourceConfiguration,
    ResourceCredentials,
)


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Pod client settings.

    Environment variables map to fields by name, e.g. STORAGE_ROOT sets
    `storage_root` and PROOF_KEY points at the JWK file used to sign DPoP proofs.
    """

    model_config = SettingsConfigDict(
        arbitrary_types_allowed=True, populate_by_name=True
    )

    debug: bool = False
    """
    Log every request and response.
    Set with DEBUG=true environment variable.
    """

    storage_root: str = "https://localhost:8443/"
    """
    Base URL of the principal's Pod; all resource paths are resolved against it.
    Set with STORAGE_ROOT environment variable.
    """

    token_endpoint: str = "https://localhost:8443/token"
    """
    OAuth token endpoint used to refresh the access token.
    Set with TOKEN_ENDPOINT environment variable.
    """

    client_id: str = ""
    """Set with CLIENT_ID environment variable."""

    client_secret: str = ""
    """Set with CLIENT_SECRET environment variable."""

    authentication_method: AuthenticationMethod = AuthenticationMethod.client_secret_basic
    """
    Token endpoint client authentication, client_secret_basic or client_secret_post.
    Set with AUTHENTICATION_METHOD environment variable.
    """

    proof_key: Annotated[Optional[jwk.JWK], NoDecode] = None
    """
    Private JWK used to sign DPoP proofs. Can be set to a JWK object or a path
    to a JSON file containing the key.
    Set with PROOF_KEY environment variable.
    """

    access_token: Optional[str] = None
    """Set with ACCESS_TOKEN environment variable."""

    refresh_token: Optional[str] = None
    """Set with REFRESH_TOKEN environment variable."""

    request_timeout: float = 30.0
    """
    Total timeout in seconds for one HTTP request. A request that hangs is
    bounded only by this value.
    Set with REQUEST_TIMEOUT environment variable.
    """

    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    metrics_backend: str = "none"
    """
    Metrics backend, 'telegraf' or 'none'.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """Set with TELEGRAF_HOST environment variable."""

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """Set with TELEGRAF_PORT environment variable."""

    @field_validator("proof_key", mode="before")
    @classmethod
    def decode_proof_key(cls, v) -> Optional[jwk.JWK]:
        """
        Accept an existing JWK object, a path to a JSON file containing a JWK,
        or None.

        Raises:
            ValueError: If the input is neither a JWK nor a valid file path
        """
        if v is None or isinstance(v, jwk.JWK):
            return v
        elif isinstance(v, str):
            with open(v) as fd:
                return jwk.JWK.from_json(fd.read())
        raise ValueError("proof_key must be a JWK object or a valid JSON file path")

    def resource_configuration(
        self, refresh_delegate: Optional[RefreshDelegate] = None
    ) -> ResourceConfiguration:
        if self.proof_key is None:
            raise ValueError("PROOF_KEY is not configured")

        return ResourceConfiguration(
            proof_key=self.proof_key,
            client_id=self.client_id,
            client_secret=self.client_secret,
            storage_root=self.storage_root,
            token_endpoint=self.token_endpoint,
            authentication_method=self.authentication_method,
            refresh_delegate=refresh_delegate,
        )

    def resource_credentials(
        self, refresh_delegate: Optional[RefreshDelegate] = None
    ) -> ResourceCredentials:
        return ResourceCredentials(
            configuration=self.resource_configuration(refresh_delegate),
            access_token=self.access_token,
            refresh_token=self.refresh_token,
        )
