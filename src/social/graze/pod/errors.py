"""
Error taxonomy for Pod requests.

Every failure produced by the request engine, the refresh service, or the
resource operations is one of these exceptions (or an aiohttp transport
exception). They are delivered as values inside results rather than raised
to the caller.
"""

from typing import Any, Mapping, Optional


class PodError(Exception):
    """Base class for all Pod client errors."""


class NoConfigurationError(PodError):
    def __init__(self) -> None:
        super().__init__("no configuration")


class NoAccessTokenError(PodError):
    def __init__(self) -> None:
        super().__init__("no access token")


class NoRefreshTokenError(PodError):
    def __init__(self) -> None:
        super().__init__("no refresh token")


class ReservedHeaderError(PodError):
    """Caller supplied a header the engine owns (authorization, dpop or host)."""

    def __init__(self, header: str) -> None:
        super().__init__(f"reserved header: {header}")
        self.header = header


class HostUnresolvableError(PodError):
    def __init__(self, url: str) -> None:
        super().__init__(f"could not resolve host: {url}")
        self.url = url


class BadStatusCodeError(PodError):
    def __init__(self, status: int) -> None:
        super().__init__(f"bad status code: {status}")
        self.status = status


class RefreshFailedError(PodError):
    """Access token refresh failed after a 401.

    Keeps the refresh error as `cause` along with the status, headers and body
    of the 401 response that triggered the refresh.
    """

    def __init__(
        self,
        cause: BaseException,
        status: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
        data: Optional[bytes] = None,
    ) -> None:
        super().__init__(f"refresh failed: {cause}")
        self.cause = cause
        self.status = status
        self.headers = headers
        self.data = data


class ProofGenerationError(PodError):
    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"could not generate DPoP proof: {cause}")
        self.cause = cause


class RefreshDelegateFailureError(PodError):
    def __init__(self) -> None:
        super().__init__("refresh delegate failure")


class TokenEndpointError(PodError):
    def __init__(self, status: int, body: Optional[Any] = None) -> None:
        super().__init__(f"token endpoint returned {status}")
        self.status = status
        self.body = body


class NameIsZeroLengthError(PodError):
    def __init__(self) -> None:
        super().__init__("name is zero length")


class NoDataInDownloadError(PodError):
    def __init__(self) -> None:
        super().__init__("no data in download")
