"""Per-IP faucet eligibility policy."""
import ipaddress
import math

from nano_faucet.config import Settings
from nano_faucet.models.records import Decision, IpUsageRecord

REASON_TOO_RECENT = "used too recently"
REASON_LIMIT_REACHED = "limit reached, retry after reset window"

MS_PER_SECOND = 1000
SECONDS_PER_HOUR = 3600


def normalize_ip(ip: str) -> str:
    """Normalize IP address for eligibility tracking.

    IPv4: use as-is
    IPv6: truncate to /48 prefix (users typically have /48 or /64 blocks)
    """
    try:
        addr = ipaddress.ip_address(ip)
        if isinstance(addr, ipaddress.IPv6Address):
            network = ipaddress.IPv6Network((addr, 48), strict=False)
            return str(network.network_address)
        return ip
    except ValueError:
        # Invalid IP, return as-is
        return ip


class EligibilityPolicy:
    """Decides whether an IP may draw from the faucet.

    The policy is pure: it reads nothing but its arguments and returns the
    record the caller should persist.
    """

    def __init__(
        self,
        throttle_seconds: float = 600,
        invoke_limit: int = 10,
        reset_window_hours: float = 24,
        retention_hours: float = 48,
    ):
        """Initialize the policy.

        Args:
            throttle_seconds: Minimum seconds between two successful invocations
            invoke_limit: Maximum invocations inside the reset window
            reset_window_hours: Hours after which the invocation counter rolls over
            retention_hours: Hours after which a stale usage record may be purged
        """
        self.throttle_seconds = throttle_seconds
        self.invoke_limit = invoke_limit
        self.reset_window_hours = reset_window_hours
        self.retention_hours = retention_hours

    @classmethod
    def from_settings(cls, settings: Settings) -> "EligibilityPolicy":
        return cls(
            throttle_seconds=settings.throttle_seconds,
            invoke_limit=settings.invoke_limit,
            reset_window_hours=settings.reset_window_hours,
            retention_hours=settings.retention_hours,
        )

    def _retention_expiry(self, now: int) -> int:
        return now // MS_PER_SECOND + int(self.retention_hours * SECONDS_PER_HOUR)

    def evaluate(self, ip: str, now: int, history: IpUsageRecord | None) -> Decision:
        """Check whether ``ip`` may use the faucet at ``now``.

        Args:
            ip: The (normalized) client IP address
            now: Current time in epoch milliseconds
            history: The stored usage record for ``ip``, if any

        Returns:
            Decision carrying the record to persist on allow
        """
        if not ip:
            raise ValueError("IP must not be empty")

        if history is None:
            record = IpUsageRecord(
                ip=ip,
                count=1,
                last_used=now,
                expires_at=self._retention_expiry(now),
            )
            return Decision(allowed=True, record=record)

        elapsed = (now - history.last_used) / MS_PER_SECOND
        if elapsed < self.throttle_seconds:
            return Decision(
                allowed=False,
                record=history,
                reason=REASON_TOO_RECENT,
                retry_after=math.ceil(self.throttle_seconds - elapsed),
            )

        elapsed_hours = elapsed / SECONDS_PER_HOUR
        window_elapsed = elapsed_hours >= self.reset_window_hours
        if history.count + 1 > self.invoke_limit and not window_elapsed:
            reset_seconds = self.reset_window_hours * SECONDS_PER_HOUR
            return Decision(
                allowed=False,
                record=history,
                reason=REASON_LIMIT_REACHED,
                retry_after=math.ceil(reset_seconds - elapsed),
            )

        record = IpUsageRecord(
            ip=ip,
            count=1 if window_elapsed else history.count + 1,
            last_used=now,
            expires_at=self._retention_expiry(now),
        )
        return Decision(allowed=True, record=record)
