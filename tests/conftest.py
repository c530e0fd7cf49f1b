from collections import defaultdict

import pytest
from fastapi.testclient import TestClient

from nano_faucet.config import Settings
from nano_faucet.errors import InsufficientFunds, UpstreamUnavailable
from nano_faucet.models.records import NanoAccount
from nano_faucet.services.captcha import CaptchaResult
from nano_faucet.services.nano_client import AccountInfo, ReceiveResult, SendResult
from nano_faucet.services.operations import FaucetOperations
from nano_faucet.services.store import MemoryStore

FAUCET_ADDRESS = "nano_faucet"
START = 1_700_000_000.0
VALID_TOKEN = "valid-token"


class FakeClock:
    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeNano:
    """In-memory stand-in for the node RPC client."""

    def __init__(self):
        self.balances: dict[str, int] = defaultdict(int)
        self.pending: dict[str, list[int]] = defaultdict(list)
        self.fail_sends: set[str] = set()
        self.calls: list[str] = []
        self._generated = 0

    async def generate_wallet(self) -> NanoAccount:
        self.calls.append("generate_wallet")
        self._generated += 1
        n = self._generated
        return NanoAccount(f"nano_wallet{n}", f"pub{n}", f"priv{n}")

    async def get_account_info(self, address: str) -> AccountInfo:
        self.calls.append("get_account_info")
        return AccountInfo(balance=self.balances[address])

    async def send(self, account: NanoAccount, to_address: str, amount: int | None = None) -> SendResult:
        self.calls.append("send")
        if account.address in self.fail_sends:
            raise UpstreamUnavailable(f"node RPC process failed for {account.address}")
        balance = self.balances[account.address]
        if amount is None:
            amount = balance
        if amount <= 0 or amount > balance:
            raise InsufficientFunds("not enough")
        self.balances[account.address] = balance - amount
        self.pending[to_address].append(amount)
        return SendResult(balance=balance - amount, block_hash="hash")

    async def receive_all(self, account: NanoAccount) -> ReceiveResult:
        self.calls.append("receive_all")
        blocks = self.pending.pop(account.address, [])
        self.balances[account.address] += sum(blocks)
        return ReceiveResult(balance=self.balances[account.address], resolved_count=len(blocks))


class FakeCaptcha:
    def __init__(self):
        self.tokens: list[str] = []

    async def verify(self, token: str) -> CaptchaResult:
        self.tokens.append(token)
        if token == VALID_TOKEN:
            return CaptchaResult(success=True)
        return CaptchaResult(success=False, errors=["invalid-input-response"])


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        faucet_address=FAUCET_ADDRESS,
        faucet_public_key="faucet-pub",
        faucet_private_key="faucet-priv",
        captcha_secret="captcha-secret",
        nanobox_user="user",
        nanobox_password="password",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def nano():
    return FakeNano()


@pytest.fixture
def captcha():
    return FakeCaptcha()


@pytest.fixture
def ops(settings, store, nano, clock):
    return FaucetOperations(settings, store, nano, clock=clock)


@pytest.fixture
def client(settings, ops, captcha):
    from nano_faucet.main import app
    from nano_faucet.routers.faucet import get_captcha, get_operations, get_settings

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_operations] = lambda: ops
    app.dependency_overrides[get_captcha] = lambda: captcha
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
