"""Pydantic models for API request/response schemas.

Balances and amounts are decimal strings of raw units, which overflow
JavaScript numbers.
"""
from pydantic import BaseModel, Field


class SendRequest(BaseModel):
    fromAddress: str
    privateKey: str
    toAddress: str
    amount: str | None = Field(default=None, description="Raw amount to send; omit to send the whole balance")


class ReceiveRequest(BaseModel):
    receiveAddress: str


class GetFromFaucetRequest(BaseModel):
    toAddress: str
    privateKey: str


class WalletInfo(BaseModel):
    """A newly created wallet. This is the only time the private key is returned."""
    address: str
    privateKey: str
    balance: str


class CreateWalletsResponse(BaseModel):
    wallets: list[WalletInfo]


class SendResponse(BaseModel):
    address: str
    balance: str
    sendTimestamp: int = Field(description="Epoch milliseconds when the send was broadcast")


class ReceiveResponse(BaseModel):
    address: str
    balance: str
    resolvedCount: int = Field(description="Number of pending blocks received")


class FaucetResponse(BaseModel):
    """Faucet balance after a payout."""
    address: str
    balance: str


class SweepReport(BaseModel):
    """Summary of a sweep of wallet balances back to the faucet."""
    walletCount: int
    failedCount: int
    previousFaucetBalance: str
    updatedFaucetBalance: str
    resolvedCount: int


class ErrorResponse(BaseModel):
    """Error response schema."""
    error: str = Field(description="Error message")


class IneligibleResponse(BaseModel):
    """Faucet eligibility error response."""
    error: str
    retryAfter: int = Field(description="Seconds until the faucet can be used again")
