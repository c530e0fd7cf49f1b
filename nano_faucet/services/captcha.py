"""reCAPTCHA token verification."""
import logging
from dataclasses import dataclass, field

import httpx

from nano_faucet.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptchaResult:
    success: bool
    errors: list[str] = field(default_factory=list)


class RecaptchaValidator:
    """Verifies tokens against the reCAPTCHA siteverify endpoint."""

    def __init__(
        self,
        secret: str,
        verify_url: str = "https://www.google.com/recaptcha/api/siteverify",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._secret = secret
        self._verify_url = verify_url
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "RecaptchaValidator":
        return cls(
            secret=settings.captcha_secret,
            verify_url=settings.recaptcha_verify_url,
            timeout=settings.http_timeout,
        )

    async def verify(self, token: str) -> CaptchaResult:
        """Verify a captcha token.

        An unreachable verification service counts as a failed verification.
        """
        if not token:
            return CaptchaResult(success=False, errors=["missing-input-response"])

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self._verify_url,
                    data={
                        "secret": self._secret,
                        "response": token
                    },
                    timeout=self._timeout
                )
                result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Captcha verification request failed: %s", e)
            return CaptchaResult(success=False, errors=["verification-unavailable"])

        return CaptchaResult(
            success=bool(result.get("success", False)),
            errors=list(result.get("error-codes", [])),
        )
