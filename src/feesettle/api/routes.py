"""JSON endpoints over the settlement coordinator."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from feesettle.api.schemas import QuoteBody, SettlementBody
from feesettle.logging import get_logger
from feesettle.money import Money
from feesettle.settlement.coordinator import SettlementCoordinator

log = get_logger(__name__)

router = APIRouter()


def _coordinator(request: Request) -> SettlementCoordinator:
    return request.app.state.coordinator


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    coordinator = _coordinator(request)
    return JSONResponse(
        content={
            "status": "ok",
            "scheduled_retries": coordinator.retry_queue.pending,
        }
    )


@router.post("/fees/quote")
async def quote_fee(request: Request, body: QuoteBody) -> JSONResponse:
    """Fee rate, tier and amount for a prospective trade (no side effects)."""
    quote = _coordinator(request).compute_fee_quote(
        Money.parse(body.trade_amount), body.user.to_context()
    )
    return JSONResponse(
        content={
            "fee_rate": str(quote.fee_rate),
            "fee_tier": quote.fee_tier.value,
            "fee_amount": str(quote.fee_amount),
        }
    )


@router.post("/fees/settlements", status_code=202)
async def initiate_settlement(request: Request, body: SettlementBody) -> JSONResponse:
    """Create a PENDING fee transaction; settlement continues in the background."""
    txn = await _coordinator(request).initiate_settlement(
        trade_id=body.trade_id,
        trade_amount=Money.parse(body.trade_amount),
        user=body.user.to_context(),
        asset_code=body.asset_code,
        asset_issuer=body.asset_issuer,
        destination_address=body.destination_address,
    )
    log.info("settlement_initiated_via_api", transaction_id=txn.id)
    return JSONResponse(status_code=202, content=txn.to_dict())


@router.get("/fees/transactions/{transaction_id}")
async def get_transaction(request: Request, transaction_id: str) -> JSONResponse:
    txn = await _coordinator(request).get_transaction(transaction_id)
    return JSONResponse(content=txn.to_dict())


@router.post("/fees/transactions/{transaction_id}/refund")
async def refund_transaction(request: Request, transaction_id: str) -> JSONResponse:
    txn = await _coordinator(request).request_refund(transaction_id)
    return JSONResponse(content=txn.to_dict())


@router.post("/fees/transactions/{transaction_id}/retry", status_code=202)
async def retry_transaction(request: Request, transaction_id: str) -> JSONResponse:
    txn = await _coordinator(request).retry_settlement(transaction_id)
    log.info("settlement_retry_via_api", transaction_id=transaction_id)
    return JSONResponse(status_code=202, content=txn.to_dict())
