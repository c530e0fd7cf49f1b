"""Error types surfaced by the faucet API.

Each error carries the HTTP status the request boundary renders it with.
"""


class FaucetError(Exception):
    """Base class for errors that map to an HTTP response."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigMissing(FaucetError):
    """A required setting is not configured."""
    status_code = 500


class InvalidAddress(FaucetError):
    status_code = 400


class Unauthorized(FaucetError):
    """Supplied private key does not match the stored wallet."""
    status_code = 400


class InvalidAmount(FaucetError):
    status_code = 400


class InsufficientFunds(FaucetError):
    status_code = 400


class Ineligible(FaucetError):
    """The source IP may not draw from the faucet right now."""
    status_code = 400

    def __init__(self, message: str, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamUnavailable(FaucetError):
    """The node RPC or the store failed or returned nothing usable."""
    status_code = 500


class CaptchaRejected(FaucetError):
    status_code = 403


class StaleRecord(Exception):
    """A conditional store update found a different value than expected."""
    pass
