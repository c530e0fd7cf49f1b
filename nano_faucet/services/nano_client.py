"""Client for a Nano node RPC endpoint.

Key generation, block signing and proof-of-work are all done by the node
(``key_create`` and ``block_create``); this client only sequences the calls.
"""
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from nano_faucet.config import Settings
from nano_faucet.errors import InsufficientFunds, UpstreamUnavailable
from nano_faucet.models.records import NanoAccount

logger = logging.getLogger(__name__)

# Previous block hash for an account's first (open) block
OPEN_PREVIOUS = "0" * 64
ACCOUNT_NOT_FOUND = "Account not found"
RECEIVABLE_BATCH = 100


@dataclass(frozen=True)
class AccountInfo:
    balance: int


@dataclass(frozen=True)
class SendResult:
    balance: int
    block_hash: str


@dataclass(frozen=True)
class ReceiveResult:
    balance: int
    resolved_count: int


class NanoClient:
    """Async client for the Nano node RPC."""

    def __init__(
        self,
        rpc_url: str,
        username: str = "",
        password: str = "",
        representative: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        auth = (username, password) if username else None
        self._client = httpx.AsyncClient(auth=auth, timeout=timeout, transport=transport)
        self._rpc_url = rpc_url
        self._representative = representative

    @classmethod
    def from_settings(cls, settings: Settings) -> "NanoClient":
        return cls(
            rpc_url=settings.nano_rpc_url,
            username=settings.nanobox_user,
            password=settings.nanobox_password,
            representative=settings.nano_representative,
            timeout=settings.http_timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call_raw(self, action: str, **params) -> dict[str, Any]:
        """Call an RPC action and return the decoded body, including RPC errors."""
        try:
            response = await self._client.post(self._rpc_url, json={"action": action, **params})
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Nano RPC %s failed: %s", action, e)
            raise UpstreamUnavailable(f"node RPC {action} failed") from e

    async def _call(self, action: str, **params) -> dict[str, Any]:
        """Call an RPC action, raising on an RPC error payload."""
        result = await self._call_raw(action, **params)
        if "error" in result:
            logger.warning("Nano RPC %s returned error: %s", action, result["error"])
            raise UpstreamUnavailable(f"node RPC {action} failed: {result['error']}")
        return result

    async def generate_wallet(self) -> NanoAccount:
        """Create a fresh keypair and its account address."""
        result = await self._call("key_create")
        return NanoAccount(
            address=result["account"],
            public_key=result["public"],
            private_key=result["private"],
        )

    async def get_account_info(self, address: str) -> AccountInfo:
        """Get the confirmed balance of an account (0 if never opened)."""
        result = await self._call("account_balance", account=address)
        return AccountInfo(balance=int(result["balance"]))

    async def _frontier(self, address: str) -> tuple[str, int, str]:
        """Get (previous hash, balance, representative) for the next block."""
        result = await self._call_raw("account_info", account=address, representative="true")
        if result.get("error") == ACCOUNT_NOT_FOUND:
            return OPEN_PREVIOUS, 0, self._representative or address
        if "error" in result:
            raise UpstreamUnavailable(f"node RPC account_info failed: {result['error']}")
        return result["frontier"], int(result["balance"]), result["representative"]

    async def _publish(self, account: NanoAccount, subtype: str, previous: str,
                       representative: str, balance: int, link: str) -> str:
        """Create, sign and broadcast a state block. Returns the block hash."""
        created = await self._call(
            "block_create",
            json_block="true",
            type="state",
            account=account.address,
            previous=previous,
            representative=representative,
            balance=str(balance),
            link=link,
            key=account.private_key,
        )
        processed = await self._call(
            "process",
            json_block="true",
            subtype=subtype,
            block=created["block"],
        )
        return processed.get("hash", created["hash"])

    async def send(self, account: NanoAccount, to_address: str, amount: int | None = None) -> SendResult:
        """Send ``amount`` raw to ``to_address``, or the whole balance if omitted."""
        previous, balance, representative = await self._frontier(account.address)
        if amount is None:
            amount = balance
        if amount <= 0 or amount > balance:
            raise InsufficientFunds(f"{account.address} cannot send {amount} raw with balance {balance}")

        new_balance = balance - amount
        block_hash = await self._publish(account, "send", previous, representative, new_balance, to_address)
        logger.info("Sent %s raw from %s to %s in %s", amount, account.address, to_address, block_hash)
        return SendResult(balance=new_balance, block_hash=block_hash)

    async def receive_all(self, account: NanoAccount) -> ReceiveResult:
        """Receive every pending inbound block for ``account``.

        Pending blocks are fetched in batches until the node reports none
        that have not been received yet.
        """
        previous, balance, representative = await self._frontier(account.address)
        received: set[str] = set()
        while True:
            result = await self._call(
                "receivable", account=account.address, count=str(RECEIVABLE_BATCH), source="true"
            )
            # Nodes return an empty string rather than an empty object when nothing is pending
            blocks = {h: info for h, info in (result.get("blocks") or {}).items() if h not in received}
            if not blocks:
                break

            for send_hash, info in blocks.items():
                balance += int(info["amount"])
                subtype = "open" if previous == OPEN_PREVIOUS else "receive"
                previous = await self._publish(account, subtype, previous, representative, balance, send_hash)
                received.add(send_hash)
        resolved = len(received)

        if resolved:
            logger.info("Received %d pending blocks for %s", resolved, account.address)
        return ReceiveResult(balance=balance, resolved_count=resolved)
