"""Stored records and eligibility decisions."""
from dataclasses import dataclass


@dataclass(frozen=True)
class NanoAccount:
    """Key material needed to act on behalf of an account."""
    address: str
    public_key: str
    private_key: str


@dataclass(frozen=True)
class WalletRecord:
    """A custodially held wallet."""
    address: str
    public_key: str
    private_key: str
    balance: int = 0     # raw
    expires_at: int = 0  # epoch seconds, sweep eligibility

    def __post_init__(self):
        if not self.address:
            raise ValueError("Wallet address must not be empty")
        if self.balance < 0:
            raise ValueError("Wallet balance must not be negative")

    @property
    def account(self) -> NanoAccount:
        return NanoAccount(self.address, self.public_key, self.private_key)


@dataclass(frozen=True)
class IpUsageRecord:
    """Faucet usage history for one source IP."""
    ip: str
    count: int
    last_used: int       # epoch milliseconds
    expires_at: int = 0  # epoch seconds, retention expiry

    def __post_init__(self):
        if not self.ip:
            raise ValueError("IP must not be empty")
        if self.count < 0:
            raise ValueError("Invocation count must not be negative")


@dataclass(frozen=True)
class Decision:
    """Outcome of an eligibility check.

    On allow, ``record`` is the updated usage record to persist. On reject it
    is the history exactly as it was passed in.
    """
    allowed: bool
    record: IpUsageRecord | None
    reason: str | None = None
    retry_after: int = 0
