"""Faucet API router.

Every endpoint requires complete configuration and a valid reCAPTCHA token in
the ``x-recaptcha`` header.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError

from nano_faucet.config import Settings, settings
from nano_faucet.errors import CaptchaRejected
from nano_faucet.models.schemas import (
    CreateWalletsResponse,
    ErrorResponse,
    FaucetResponse,
    GetFromFaucetRequest,
    IneligibleResponse,
    ReceiveRequest,
    ReceiveResponse,
    SendRequest,
    SendResponse,
)
from nano_faucet.services.captcha import RecaptchaValidator
from nano_faucet.services.operations import FaucetOperations

CAPTCHA_HEADER = "x-recaptcha"


def get_settings() -> Settings:
    return settings


def get_operations(request: Request) -> FaucetOperations:
    return request.app.state.operations


def get_captcha(request: Request) -> RecaptchaValidator:
    return request.app.state.captcha


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    # Check for X-Forwarded-For header (when behind proxy)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Take the first IP in the chain (original client)
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return "unknown"


async def verify_request(
    request: Request,
    config: Settings = Depends(get_settings),
    captcha: RecaptchaValidator = Depends(get_captcha),
) -> None:
    """Reject the request unless configuration is complete and the captcha passes."""
    config.require_complete()

    token = request.headers.get(CAPTCHA_HEADER)
    if not token:
        raise CaptchaRejected("access denied: captcha token required")
    result = await captcha.verify(token)
    if not result.success:
        raise CaptchaRejected("access denied: invalid captcha token")


def body_of(model: type[BaseModel]):
    """Dependency parsing the JSON body as ``model`` once the request has passed the gate."""

    async def parse(request: Request, _: None = Depends(verify_request)) -> BaseModel:
        try:
            data = await request.json()
        except ValueError:
            raise RequestValidationError([{"loc": ("body",), "msg": "Invalid JSON", "type": "json_invalid"}])
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RequestValidationError([{**err, "loc": ("body", *err["loc"])} for err in e.errors()])

    return parse


router = APIRouter(
    prefix="/api",
    tags=["faucet"],
    dependencies=[Depends(verify_request)],
    responses={
        403: {"model": ErrorResponse, "description": "Captcha rejected"},
        500: {"model": ErrorResponse, "description": "Server error"},
    },
)


@router.post("/createWallets", response_model=CreateWalletsResponse)
async def create_wallets(ops: FaucetOperations = Depends(get_operations)) -> CreateWalletsResponse:
    """Create two custodial wallets.

    The private keys are only ever returned by this call.
    """
    return await ops.create_wallets()


@router.post(
    "/send",
    response_model=SendResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid address, key or amount"}},
)
async def send(
    body: SendRequest = Depends(body_of(SendRequest)),
    ops: FaucetOperations = Depends(get_operations),
) -> SendResponse:
    """Send an amount (or the whole balance) from a custodial wallet."""
    return await ops.send(body.fromAddress, body.privateKey, body.toAddress, body.amount)


@router.post(
    "/receive",
    response_model=ReceiveResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid address"}},
)
async def receive(
    body: ReceiveRequest = Depends(body_of(ReceiveRequest)),
    ops: FaucetOperations = Depends(get_operations),
) -> ReceiveResponse:
    """Receive all pending blocks for a custodial wallet."""
    return await ops.receive(body.receiveAddress)


@router.post(
    "/getFromFaucet",
    response_model=FaucetResponse,
    responses={400: {"model": IneligibleResponse, "description": "Invalid wallet or not eligible"}},
)
async def get_from_faucet(
    request: Request,
    body: GetFromFaucetRequest = Depends(body_of(GetFromFaucetRequest)),
    ops: FaucetOperations = Depends(get_operations),
) -> FaucetResponse:
    """Pay a small share of the faucet balance to a custodial wallet.

    Payouts are throttled per client IP.
    """
    return await ops.get_from_faucet(body.toAddress, body.privateKey, get_client_ip(request))


@router.post("/receivePendingFaucetTransactions", response_model=ReceiveResponse)
@router.post("/faucetReceive", response_model=ReceiveResponse, include_in_schema=False)
async def receive_pending_faucet_transactions(
    ops: FaucetOperations = Depends(get_operations),
) -> ReceiveResponse:
    """Receive all pending blocks for the faucet account."""
    return await ops.receive_pending_faucet_transactions()
