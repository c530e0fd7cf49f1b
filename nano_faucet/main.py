"""Nano Testnet Faucet - FastAPI Application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nano_faucet.config import settings
from nano_faucet.errors import FaucetError, Ineligible
from nano_faucet.routers import faucet
from nano_faucet.services.captcha import RecaptchaValidator
from nano_faucet.services.nano_client import NanoClient
from nano_faucet.services.operations import FaucetOperations
from nano_faucet.services.store import create_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    missing = settings.missing_settings()
    if missing:
        # Requests are refused with a 500 until these are set
        logger.warning("Missing required settings: %s", ", ".join(name.upper() for name in missing))

    nano = NanoClient.from_settings(settings)
    app.state.captcha = RecaptchaValidator.from_settings(settings)
    app.state.operations = FaucetOperations(settings, create_store(settings), nano)
    yield
    await nano.aclose()


app = FastAPI(
    title="Nano Testnet Faucet",
    description="Custodial test wallets funded from a shared faucet",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# Registered before CORS so error responses still pass through it
@app.middleware("http")
async def unexpected_error_middleware(request: Request, call_next) -> Response:
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(faucet.router)


@app.exception_handler(FaucetError)
async def faucet_error_handler(request: Request, exc: FaucetError) -> JSONResponse:
    if isinstance(exc, Ineligible):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "retryAfter": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = ", ".join(".".join(str(part) for part in err["loc"][1:]) or "body" for err in exc.errors())
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {fields}"})


@app.options("/{path:path}", include_in_schema=False)
async def options(path: str) -> Response:
    """Answer bare OPTIONS requests; CORS preflights are handled by the middleware."""
    return Response(status_code=200)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
