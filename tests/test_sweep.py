import json
import threading

import pytest

from conftest import FAUCET_ADDRESS, START
from nano_faucet.config import Settings
from nano_faucet.errors import UpstreamUnavailable
from nano_faucet.models.records import WalletRecord
from nano_faucet.services import sweep as sweep_module
from nano_faucet.services.store import WALLETS, MemoryStore
from nano_faucet.services.sweep import SweepJob


def add_wallet(store, nano, address, balance, expires_at):
    store.put(WALLETS, WalletRecord(address=address, public_key="pub", private_key="priv",
                                    balance=balance, expires_at=int(expires_at)))
    nano.balances[address] = balance


@pytest.fixture
def job(settings, store, nano, clock):
    return SweepJob(settings, store, nano, clock=clock)


@pytest.fixture
def wallets(store, nano):
    add_wallet(store, nano, "nano_expired", 500, START - 10)
    add_wallet(store, nano, "nano_fresh", 300, START + 3600)
    add_wallet(store, nano, "nano_empty", 0, START - 10)


def test_only_expired_funded_wallets_are_eligible(job, wallets):
    assert [w.address for w in job.eligible_wallets()] == ["nano_expired"]


def test_all_funded_wallets_when_expiry_ignored(settings, store, nano, clock, wallets):
    job = SweepJob(settings.model_copy(update={"sweep_expired_only": False}), store, nano, clock=clock)

    assert sorted(w.address for w in job.eligible_wallets()) == ["nano_expired", "nano_fresh"]


@pytest.mark.asyncio
async def test_run_returns_balances_to_faucet(job, store, nano, wallets):
    nano.balances[FAUCET_ADDRESS] = 1000

    report = await job.run()

    assert report.walletCount == 1
    assert report.failedCount == 0
    assert report.previousFaucetBalance == "1000"
    assert report.updatedFaucetBalance == "1500"
    assert report.resolvedCount == 1
    assert store.get(WALLETS, "nano_expired").balance == 0
    assert store.get(WALLETS, "nano_fresh").balance == 300


@pytest.mark.asyncio
async def test_wallet_scan_runs_off_the_event_loop(settings, nano, clock):
    class ThreadRecordingStore(MemoryStore):
        scan_threads = []

        def scan(self, table, predicate):
            self.scan_threads.append(threading.get_ident())
            return super().scan(table, predicate)

    store = ThreadRecordingStore()
    add_wallet(store, nano, "nano_expired", 500, START - 10)

    outcomes = await SweepJob(settings, store, nano, clock=clock).sweep_wallets()

    assert [o.address for o in outcomes] == ["nano_expired"]
    assert store.scan_threads and threading.get_ident() not in store.scan_threads


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_the_sweep(settings, store, nano, clock):
    for n in range(5):
        add_wallet(store, nano, f"nano_w{n}", 100, START - 1)
    nano.fail_sends.add("nano_w2")
    job = SweepJob(settings, store, nano, clock=clock)

    report = await job.run()

    assert report.walletCount == 5
    assert report.failedCount == 1
    assert report.updatedFaucetBalance == "400"
    assert report.resolvedCount == 4
    assert store.get(WALLETS, "nano_w2").balance == 100
    assert all(store.get(WALLETS, f"nano_w{n}").balance == 0 for n in (0, 1, 3, 4))


@pytest.mark.asyncio
async def test_sweep_outcomes_are_collected_per_wallet(job, nano, wallets):
    nano.fail_sends.add("nano_expired")

    outcomes = await job.sweep_wallets()

    assert len(outcomes) == 1
    assert not outcomes[0].ok
    assert "nano_expired" in outcomes[0].error


@pytest.mark.asyncio
async def test_run_with_no_wallets(job, nano):
    nano.balances[FAUCET_ADDRESS] = 7

    report = await job.run()

    assert report.walletCount == 0
    assert report.updatedFaucetBalance == "7"


@pytest.mark.asyncio
async def test_run_fails_when_faucet_unreachable(job, nano):
    async def unavailable(address):
        raise UpstreamUnavailable("node RPC account_balance failed")

    nano.get_account_info = unavailable

    with pytest.raises(UpstreamUnavailable):
        await job.run()
    assert "send" not in nano.calls


def test_main_reports_missing_configuration(monkeypatch, capsys):
    monkeypatch.setattr(sweep_module, "app_settings", Settings(_env_file=None))

    assert sweep_module.main([]) == 1
    assert "FAUCET_ADDRESS" in json.loads(capsys.readouterr().out)["error"]


def test_main_dry_run_lists_wallets(monkeypatch, capsys, settings):
    # The sweep does not need a captcha secret
    monkeypatch.setattr(sweep_module, "app_settings", settings.model_copy(update={"captcha_secret": ""}))

    assert sweep_module.main(["--dry-run", "--all"]) == 0
    assert json.loads(capsys.readouterr().out) == {"walletCount": 0, "wallets": []}
