"""
Credentials and configuration for one Pod principal.

`ResourceConfiguration` is the read-only half: signing key, client
registration, storage root and token endpoint. `ResourceCredentials` is the
mutable half: the current access and refresh tokens, updated in place when a
refresh succeeds. Credentials are owned by the caller's session and outlive
individual requests.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Optional, Protocol, Union

from jwcrypto import jwk

logger = logging.getLogger(__name__)


class AuthenticationMethod(str, Enum):
    """How the client authenticates itself at the token endpoint."""

    client_secret_basic = "client_secret_basic"
    client_secret_post = "client_secret_post"


class RefreshDelegate(Protocol):
    """Persistence hook notified after a successful access token refresh.

    Return False only when handling failed (e.g. saving the credentials to a
    database failed). A False result turns the refresh into a failure.
    """

    def access_token_refreshed(
        self, credentials: "ResourceCredentials"
    ) -> Union[bool, Awaitable[bool]]: ...


@dataclass(frozen=True)
class ResourceConfiguration:
    # Private key used to sign DPoP proofs. Its public half is embedded in every proof.
    proof_key: jwk.JWK
    client_id: str
    client_secret: str
    # Base URL of the principal's Pod. Resource paths are resolved against it.
    storage_root: str
    token_endpoint: str
    authentication_method: AuthenticationMethod = AuthenticationMethod.client_secret_basic
    refresh_delegate: Optional[RefreshDelegate] = None


class ResourceCredentials:
    def __init__(
        self,
        configuration: Optional[ResourceConfiguration] = None,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> None:
        self.configuration = configuration
        self.access_token = access_token
        self.refresh_token = refresh_token

    def update_tokens(self, access_token: str, refresh_token: Optional[str]) -> None:
        """Replace the access token, and the refresh token only if a new one was issued."""
        self.access_token = access_token
        if refresh_token is not None:
            self.refresh_token = refresh_token

    def __repr__(self) -> str:
        return (
            f"ResourceCredentials(configured={self.configuration is not None}, "
            f"access_token={'set' if self.access_token else 'unset'}, "
            f"refresh_token={'set' if self.refresh_token else 'unset'})"
        )


class JsonFileRefreshDelegate:
    """Writes refreshed tokens to a JSON file so the next run can reload them."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)

    def access_token_refreshed(self, credentials: ResourceCredentials) -> bool:
        try:
            self._path.write_text(
                json.dumps(
                    {
                        "access_token": credentials.access_token,
                        "refresh_token": credentials.refresh_token,
                    }
                )
            )
        except OSError:
            logger.exception("Could not persist refreshed credentials to %s", self._path)
            return False
        return True

    def load(self, credentials: ResourceCredentials) -> bool:
        """Populate `credentials` from the file. Returns False when there is nothing to load."""
        if not self._path.exists():
            return False

        data = json.loads(self._path.read_text())
        if data.get("access_token"):
            credentials.access_token = data["access_token"]
        if data.get("refresh_token"):
            credentials.refresh_token = data["refresh_token"]
        return True
