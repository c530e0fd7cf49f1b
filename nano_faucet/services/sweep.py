"""Return wallet balances to the faucet."""
import argparse
import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable

from nano_faucet.config import SWEEP_REQUIRED_SETTINGS, Settings
from nano_faucet.config import settings as app_settings
from nano_faucet.errors import FaucetError
from nano_faucet.models.records import WalletRecord
from nano_faucet.models.schemas import SweepReport
from nano_faucet.services.nano_client import NanoClient
from nano_faucet.services.operations import faucet_account, persist_balance
from nano_faucet.services.store import WALLETS, AccountStore, create_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletSweep:
    """Outcome of sweeping one wallet."""
    address: str
    ok: bool
    balance: int | None = None
    error: str | None = None


class SweepJob:
    """Sends every non-zero wallet balance back to the faucet, then receives it."""

    def __init__(
        self,
        settings: Settings,
        store: AccountStore,
        nano: NanoClient,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.store = store
        self.nano = nano
        self.clock = clock

    def eligible_wallets(self) -> list[WalletRecord]:
        """Wallets with a balance that are due for sweeping."""
        now = self.clock()
        expired_only = self.settings.sweep_expired_only

        def due(record: WalletRecord) -> bool:
            if record.balance <= 0:
                return False
            return not expired_only or record.expires_at <= now

        return self.store.scan(WALLETS, due)

    async def _sweep_wallet(self, record: WalletRecord, semaphore: asyncio.Semaphore) -> WalletSweep:
        async with semaphore:
            try:
                result = await self.nano.send(record.account, self.settings.faucet_address)
                balance = await persist_balance(
                    self.store, self.nano, record.address, record.balance, result.balance
                )
            except Exception as e:
                logger.warning("Unable to sweep %s: %s", record.address, e)
                return WalletSweep(address=record.address, ok=False, error=str(e))
        return WalletSweep(address=record.address, ok=True, balance=balance)

    async def sweep_wallets(self) -> list[WalletSweep]:
        """Sweep all eligible wallets concurrently and collect every outcome."""
        wallets = await asyncio.to_thread(self.eligible_wallets)
        logger.info("Sweeping %d wallets", len(wallets))
        semaphore = asyncio.Semaphore(max(1, self.settings.sweep_concurrency))
        return await asyncio.gather(*(self._sweep_wallet(w, semaphore) for w in wallets))

    async def run(self) -> SweepReport:
        faucet = faucet_account(self.settings)
        previous = await self.nano.get_account_info(faucet.address)

        outcomes = await self.sweep_wallets()
        failed = [o for o in outcomes if not o.ok]
        if failed:
            logger.warning("%d of %d wallets failed to sweep", len(failed), len(outcomes))

        received = await self.nano.receive_all(faucet)
        report = SweepReport(
            walletCount=len(outcomes),
            failedCount=len(failed),
            previousFaucetBalance=str(previous.balance),
            updatedFaucetBalance=str(received.balance),
            resolvedCount=received.resolved_count,
        )
        logger.info("Sweep finished: %s", report.model_dump())
        return report


async def _run(settings: Settings, dry_run: bool) -> dict:
    nano = NanoClient.from_settings(settings)
    try:
        job = SweepJob(settings, create_store(settings), nano)
        if dry_run:
            wallets = await asyncio.to_thread(job.eligible_wallets)
            return {
                "walletCount": len(wallets),
                "wallets": [{"address": w.address, "balance": str(w.balance)} for w in wallets],
            }
        report = await job.run()
        return report.model_dump()
    finally:
        await nano.aclose()


def main(argv: list[str] | None = None) -> int:
    """Command line entry point for scheduled sweeps."""
    parser = argparse.ArgumentParser(description="Return all wallet balances to the faucet.")
    parser.add_argument("--all", action="store_true",
                        help="Sweep wallets that have not expired yet")
    parser.add_argument("--dry-run", action="store_true",
                        help="List the wallets that would be swept without sending")
    args = parser.parse_args(argv)

    settings = app_settings
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if args.all:
        settings = settings.model_copy(update={"sweep_expired_only": False})

    try:
        settings.require_complete(SWEEP_REQUIRED_SETTINGS)
        result = asyncio.run(_run(settings, args.dry_run))
    except FaucetError as e:
        print(json.dumps({"error": e.message}))
        return 1

    print(json.dumps(result))
    return 0
