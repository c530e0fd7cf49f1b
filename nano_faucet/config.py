from pydantic_settings import BaseSettings

from nano_faucet.errors import ConfigMissing

# Settings that must be present before any request is processed
REQUIRED_SETTINGS = (
    "faucet_address",
    "faucet_public_key",
    "faucet_private_key",
    "captcha_secret",
    "nanobox_user",
    "nanobox_password",
)

# The sweep never verifies captchas
SWEEP_REQUIRED_SETTINGS = tuple(name for name in REQUIRED_SETTINGS if name != "captcha_secret")


class Settings(BaseSettings):
    # Faucet account
    faucet_address: str = ""
    faucet_public_key: str = ""
    faucet_private_key: str = ""

    # Nano node RPC (nanobox)
    nano_rpc_url: str = "https://api.nanobox.cc"
    nanobox_user: str = ""
    nanobox_password: str = ""
    nano_representative: str = ""  # Used when opening an account; defaults to the account itself

    # reCAPTCHA
    captcha_secret: str = ""
    recaptcha_verify_url: str = "https://www.google.com/recaptcha/api/siteverify"

    # Timeout for node RPC and captcha calls in seconds
    http_timeout: float = 10.0

    # Storage: "memory" or "dynamodb"
    store_backend: str = "memory"
    aws_region: str = "us-west-1"
    wallet_table: str = "TryNanoWallets"
    ip_usage_table: str = "TryNanoIpUsage"

    # Eligibility
    throttle_seconds: int = 600
    invoke_limit: int = 10
    reset_window_hours: float = 24
    retention_hours: float = 48

    # Wallets become eligible for sweeping this long after creation
    wallet_expiration_hours: float = 72

    # Fraction of the faucet balance paid out per request
    faucet_percent: float = 0.00015

    # Sweep
    sweep_expired_only: bool = True
    sweep_concurrency: int = 8

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        frozen = True

    def missing_settings(self, required: tuple[str, ...] = REQUIRED_SETTINGS) -> list[str]:
        """Names of required settings that are empty."""
        return [name for name in required if not getattr(self, name)]

    def require_complete(self, required: tuple[str, ...] = REQUIRED_SETTINGS) -> None:
        """Raise ConfigMissing for the first required setting that is empty."""
        missing = self.missing_settings(required)
        if missing:
            raise ConfigMissing(f"{missing[0].upper()} key missing from environment - you must fix")


settings = Settings()
