"""FastAPI surface for PingPay.

Routes are thin: each one calls a :class:`~ping_pay.service.PingPay`
method and every domain error is mapped to a status code and a
``{"error": kind, "detail": ...}`` body.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional, Union

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ping_pay import errors
from ping_pay.service import PingPay

logger = logging.getLogger("ping_pay.api")

STATUS_CODES: dict[type[errors.PingPayError], int] = {
    errors.NotFound: 404,
    errors.HandleMismatch: 403,
    errors.InvalidStateTransition: 409,
    errors.TransactionAlreadyUsed: 409,
    errors.InvalidAmount: 400,
    errors.InvalidAddress: 400,
    errors.InvalidHandle: 400,
    errors.InsufficientFunds: 400,
    errors.InsufficientGas: 400,
    errors.TransactionNotFound: 422,
    errors.ChainExecutionFailed: 422,
    errors.AmountMismatch: 422,
    errors.TransactionTimeout: 504,
    errors.ChainSubmissionError: 502,
    errors.ChainUnavailable: 503,
}


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------


class ParseBody(BaseModel):
    command: str


class PrepareBody(BaseModel):
    recipient: str
    amount: Union[str, int]
    senderAddress: Optional[str] = None
    senderHandle: Optional[str] = None


class EstimateBody(BaseModel):
    recipient: str
    amount: Union[str, int]
    senderAddress: Optional[str] = None


class ConfirmBody(BaseModel):
    transferId: str
    txHash: str


class VerifyClaimBody(BaseModel):
    handle: str


class WithdrawBody(BaseModel):
    handle: str
    toAddress: str
    amount: Optional[Union[str, int]] = None
    withdrawAll: bool = False


class CreateWalletBody(BaseModel):
    handle: str


# ------------------------------------------------------------------
# App factory
# ------------------------------------------------------------------


def create_app(service: PingPay) -> FastAPI:
    """Build the API around an existing service instance."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        yield
        await service.shutdown()

    app = FastAPI(title="PingPay API", lifespan=lifespan)
    app.state.service = service

    @app.exception_handler(errors.PingPayError)
    async def _domain_error(request: Request, exc: errors.PingPayError):
        status = STATUS_CODES.get(type(exc), 400)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.kind}: {exc.detail}")
        return JSONResponse(status_code=status, content=exc.to_dict())

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    @app.post("/api/transfers/parse")
    async def parse_command(body: ParseBody):
        result = await service.parse_command(body.command)
        if not result["parsed"]:
            return JSONResponse(
                status_code=400, content={"error": "Unparsed", "detail": result["reason"]}
            )
        return result

    @app.post("/api/transfers/prepare")
    async def prepare_transfer(body: PrepareBody):
        return await service.prepare_transfer(
            body.recipient, body.amount, body.senderAddress, body.senderHandle
        )

    @app.post("/api/transfers/estimate")
    async def estimate_transfer(body: EstimateBody):
        return await service.estimate_transfer(body.recipient, body.amount, body.senderAddress)

    @app.post("/api/transfers/confirm")
    async def confirm_transfer(body: ConfirmBody):
        return await service.confirm_transfer(body.transferId, body.txHash)

    @app.get("/api/transfers/history/{sender}")
    async def transfer_history(sender: str):
        return {"transfers": await service.list_transfers_by_sender(sender)}

    @app.get("/api/transfers/received/{handle}")
    async def transfers_received(handle: str):
        return {"transfers": await service.list_transfers_received(handle)}

    @app.get("/api/transfers/{transfer_id}")
    async def get_transfer(transfer_id: str):
        return await service.get_transfer(transfer_id)

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    @app.post("/api/claims/withdraw")
    async def withdraw(body: WithdrawBody):
        return await service.withdraw(
            body.handle, body.toAddress, body.amount, withdraw_all=body.withdrawAll
        )

    @app.get("/api/claims/pending/{handle}")
    async def pending_claims(handle: str):
        return {"pendingClaims": await service.pending_claims(handle)}

    @app.get("/api/claims/{token}")
    async def get_claim(token: str):
        return await service.get_claim(token)

    @app.post("/api/claims/{token}/verify")
    async def verify_claim(token: str, body: VerifyClaimBody):
        return await service.verify_claim(token, body.handle)

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    @app.get("/api/wallets/token")
    async def token_info():
        return service.token_info()

    @app.get("/api/wallets/balance/{address}")
    async def get_balance(address: str):
        return await service.get_balance(address)

    @app.get("/api/wallets/handle/{handle}")
    async def get_wallet(handle: str):
        return await service.get_wallet(handle)

    @app.post("/api/wallets/create")
    async def create_wallet(body: CreateWalletBody):
        return await service.create_wallet(body.handle)

    return app


# ------------------------------------------------------------------
# Runner
# ------------------------------------------------------------------


def run_server(service: PingPay, host: str = "127.0.0.1", port: int = 3001) -> None:
    uvicorn.run(create_app(service), host=host, port=port, log_level="info")
