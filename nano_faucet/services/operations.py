"""Wallet and faucet flows.

Each operation reads the wallet record, calls the node, and writes the
resulting balance back to the store.
"""
import logging
import time
from decimal import Decimal
from typing import Callable

from nano_faucet.config import Settings
from nano_faucet.errors import (
    Ineligible,
    InsufficientFunds,
    InvalidAddress,
    InvalidAmount,
    StaleRecord,
    Unauthorized,
    UpstreamUnavailable,
)
from nano_faucet.middleware.eligibility import REASON_TOO_RECENT, EligibilityPolicy, normalize_ip
from nano_faucet.models.records import NanoAccount, WalletRecord
from nano_faucet.models.schemas import (
    CreateWalletsResponse,
    FaucetResponse,
    ReceiveResponse,
    SendResponse,
    WalletInfo,
)
from nano_faucet.services.nano_client import NanoClient
from nano_faucet.services.store import IP_USAGE, WALLETS, AccountStore

logger = logging.getLogger(__name__)

WALLETS_PER_REQUEST = 2


def parse_amount(amount: str | None) -> int | None:
    """Parse a raw amount string. None means "send everything"."""
    if amount is None:
        return None
    try:
        value = int(amount.strip())
    except ValueError:
        raise InvalidAmount(f"{amount} is not a valid raw amount")
    if value <= 0:
        raise InvalidAmount("amount must be greater than zero")
    return value


def faucet_account(settings: Settings) -> NanoAccount:
    return NanoAccount(
        address=settings.faucet_address,
        public_key=settings.faucet_public_key,
        private_key=settings.faucet_private_key,
    )


async def persist_balance(store: AccountStore, nano: NanoClient, address: str,
                          stored_balance: int, new_balance: int) -> int:
    """Write ``new_balance`` if the stored balance is still ``stored_balance``.

    If another request changed the stored balance in the meantime, the live
    balance is read back from the node and written instead.

    Returns:
        The balance that was written
    """
    try:
        store.update(WALLETS, address, {"balance": new_balance}, expected={"balance": stored_balance})
        return new_balance
    except StaleRecord:
        logger.warning("Stored balance for %s changed concurrently, reconciling from node", address)

    live = await nano.get_account_info(address)
    try:
        store.update(WALLETS, address, {"balance": live.balance})
    except StaleRecord as e:
        raise UpstreamUnavailable(f"wallet {address} disappeared while updating its balance") from e
    return live.balance


class FaucetOperations:
    """Orchestrates wallet creation, sends, receives and faucet payouts."""

    def __init__(
        self,
        settings: Settings,
        store: AccountStore,
        nano: NanoClient,
        policy: EligibilityPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.store = store
        self.nano = nano
        self.policy = policy or EligibilityPolicy.from_settings(settings)
        self.clock = clock

    @property
    def faucet(self) -> NanoAccount:
        return faucet_account(self.settings)

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _load_wallet(self, address: str) -> WalletRecord:
        record = self.store.get(WALLETS, address) if address else None
        if record is None:
            raise InvalidAddress(f"{address} is an invalid wallet address")
        return record

    def _load_owned_wallet(self, address: str, private_key: str) -> WalletRecord:
        record = self._load_wallet(address)
        if record.private_key != private_key:
            raise Unauthorized(f"private key does not match {address}")
        return record

    async def create_wallets(self) -> CreateWalletsResponse:
        """Generate and store two new wallets."""
        expires_at = int(self.clock() + self.settings.wallet_expiration_hours * 3600)
        wallets = []
        for _ in range(WALLETS_PER_REQUEST):
            account = await self.nano.generate_wallet()
            self.store.put(WALLETS, WalletRecord(
                address=account.address,
                public_key=account.public_key,
                private_key=account.private_key,
                balance=0,
                expires_at=expires_at,
            ))
            logger.info("Created wallet %s", account.address)
            wallets.append(WalletInfo(address=account.address, privateKey=account.private_key, balance="0"))
        return CreateWalletsResponse(wallets=wallets)

    async def send(self, from_address: str, private_key: str, to_address: str,
                   amount: str | None = None) -> SendResponse:
        """Send ``amount`` raw (or the whole balance) from a custodial wallet."""
        value = parse_amount(amount)
        record = self._load_owned_wallet(from_address, private_key)

        info = await self.nano.get_account_info(from_address)
        if info.balance == 0:
            raise InsufficientFunds(f"{from_address} has a zero balance")
        if value is not None and value > info.balance:
            raise InsufficientFunds(f"{from_address} balance is lower than {value} raw")

        result = await self.nano.send(record.account, to_address, value)
        send_timestamp = self._now_ms()
        balance = await persist_balance(self.store, self.nano, from_address, record.balance, result.balance)
        return SendResponse(address=from_address, balance=str(balance), sendTimestamp=send_timestamp)

    async def receive(self, address: str) -> ReceiveResponse:
        """Receive all pending blocks for a custodial wallet."""
        record = self._load_wallet(address)
        result = await self.nano.receive_all(record.account)
        balance = await persist_balance(self.store, self.nano, address, record.balance, result.balance)
        return ReceiveResponse(address=address, balance=str(balance), resolvedCount=result.resolved_count)

    async def receive_pending_faucet_transactions(self) -> ReceiveResponse:
        """Receive all pending blocks for the faucet account."""
        result = await self.nano.receive_all(self.faucet)
        return ReceiveResponse(
            address=self.settings.faucet_address,
            balance=str(result.balance),
            resolvedCount=result.resolved_count,
        )

    def _record_usage(self, ip: str, now: int) -> None:
        """Check eligibility for ``ip`` and persist the updated usage record."""
        history = self.store.get(IP_USAGE, ip)
        decision = self.policy.evaluate(ip, now, history)
        if not decision.allowed:
            logger.warning("Faucet request from %s rejected: %s", ip, decision.reason)
            raise Ineligible(decision.reason, decision.retry_after)

        if history is None:
            self.store.put(IP_USAGE, decision.record)
            return
        try:
            self.store.update(
                IP_USAGE,
                ip,
                {
                    "count": decision.record.count,
                    "last_used": decision.record.last_used,
                    "expires_at": decision.record.expires_at,
                },
                expected={"count": history.count, "last_used": history.last_used},
            )
        except StaleRecord:
            # Another request from the same IP was just allowed
            logger.warning("Concurrent faucet request from %s rejected", ip)
            raise Ineligible(REASON_TOO_RECENT, int(self.policy.throttle_seconds))

    async def get_from_faucet(self, to_address: str, private_key: str, source_ip: str) -> FaucetResponse:
        """Pay a fraction of the faucet balance to a custodial wallet."""
        self._load_owned_wallet(to_address, private_key)
        self._record_usage(normalize_ip(source_ip), self._now_ms())

        faucet = self.faucet
        info = await self.nano.get_account_info(faucet.address)
        if info.balance == 0:
            raise InsufficientFunds("faucet balance is zero")

        payout = int(Decimal(info.balance) * Decimal(str(self.settings.faucet_percent)))
        if payout <= 0:
            raise InsufficientFunds("faucet balance is too low for a payout")

        result = await self.nano.send(faucet, to_address, payout)
        logger.info("Faucet paid %s raw to %s", payout, to_address)
        return FaucetResponse(address=faucet.address, balance=str(result.balance))
