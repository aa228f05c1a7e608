"""
Access token refresh for one set of resource credentials.

`RefreshService.refresh` exchanges the stored refresh token for a new access
token, updates the credentials in place and notifies the configured refresh
delegate so the new tokens can be persisted. It returns the failure instead of
raising it, so the request engine can fold it into its result.

Refreshes of the same credentials are serialized. A caller that got a 401
passes the access token it presented; if the stored token already differs
once the lock is held, a concurrent request has refreshed in the meantime and
no second exchange is made.
"""

import asyncio
import inspect
import logging
from typing import Optional

import sentry_sdk

from social.graze.pod.app.metrics import MetricsClient, NoOpMetricsClient
from social.graze.pod.auth.credentials import ResourceCredentials
from social.graze.pod.auth.token import TokenExchanger
from social.graze.pod.errors import (
    NoAccessTokenError,
    NoConfigurationError,
    NoRefreshTokenError,
    RefreshDelegateFailureError,
)

logger = logging.getLogger(__name__)


class RefreshService:
    def __init__(
        self,
        credentials: ResourceCredentials,
        token_exchanger: TokenExchanger,
        metrics_client: Optional[MetricsClient] = None,
    ) -> None:
        self._credentials = credentials
        self._token_exchanger = token_exchanger
        self._metrics_client = metrics_client or NoOpMetricsClient()
        self._lock = asyncio.Lock()

    async def refresh(
        self, stale_access_token: Optional[str] = None
    ) -> Optional[Exception]:
        """
        Refresh the access token.

        Args:
            stale_access_token: The access token a failed request presented. When
                the stored token no longer matches it, the refresh is skipped.

        Returns:
            Optional[Exception]: None on success, otherwise the failure. Exchange
            failures are returned as raised by the token exchanger.
        """
        error = await self._refresh(stale_access_token)
        self._metrics_client.increment(
            "pod.refresh.count",
            1,
            tag_dict={"outcome": "ok" if error is None else type(error).__name__},
        )
        return error

    async def _refresh(self, stale_access_token: Optional[str]) -> Optional[Exception]:
        configuration = self._credentials.configuration
        if configuration is None:
            return NoConfigurationError()

        if not self._credentials.refresh_token:
            return NoRefreshTokenError()

        async with self._lock:
            if (
                stale_access_token is not None
                and self._credentials.access_token != stale_access_token
            ):
                logger.debug("Access token was already refreshed by a concurrent request")
                return None

            try:
                token_response = await self._token_exchanger.exchange_refresh_token(
                    refresh_token=self._credentials.refresh_token,
                    client_id=configuration.client_id,
                    client_secret=configuration.client_secret,
                    token_endpoint=configuration.token_endpoint,
                    authentication_method=configuration.authentication_method,
                )
            except Exception as e:
                sentry_sdk.capture_exception(e)
                logger.warning("Refresh token exchange failed: %s", e)
                return e

            if not token_response.access_token:
                return NoAccessTokenError()

            self._credentials.update_tokens(
                token_response.access_token, token_response.refresh_token
            )
            logger.debug("Access token refreshed, expires_in=%s", token_response.expires_in)

            refresh_delegate = configuration.refresh_delegate
            if refresh_delegate is None:
                logger.warning("No refresh delegate, refreshed tokens are not persisted")
                return None

            try:
                success = refresh_delegate.access_token_refreshed(self._credentials)
                if inspect.isawaitable(success):
                    success = await success
            except Exception as e:
                sentry_sdk.capture_exception(e)
                logger.warning("Refresh delegate raised: %s", e)
                error = RefreshDelegateFailureError()
                error.__cause__ = e
                return error

            if not success:
                return RefreshDelegateFailureError()

            return None
