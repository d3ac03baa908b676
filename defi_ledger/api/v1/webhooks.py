"""POST /v1/webhooks/* - Signed inbound events from chain indexers, payment processors and loan operators"""

import logging
from typing import Iterable, Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from defi_ledger.api.dependencies import get_event_ingestion, get_request_id
from defi_ledger.api.errors import to_http_exception
from defi_ledger.api.v1.schemas import WebhookAck, WebhookStatusResponse
from defi_ledger.domain.events import BLOCKCHAIN_EVENT_TYPES, LOAN_EVENT_TYPES, PAYMENT_EVENT_TYPES
from defi_ledger.domain.exceptions import DomainException
from defi_ledger.services.ingestion import EventIngestion

router = APIRouter()


async def _ingest(
    request: Request,
    signature: Optional[str],
    allowed_types: Iterable[str],
    ingestion: EventIngestion,
) -> WebhookAck:
    request_id = get_request_id(request)
    raw_body = await request.body()  # Signature covers the exact bytes sent

    try:
        # Blocking database work, including row-lock waits, stays off the event loop
        result = await run_in_threadpool(
            ingestion.ingest, raw_body, signature, allowed_types=allowed_types, request_id=request_id
        )
    except DomainException as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        logging.error(f"Unexpected error ingesting webhook: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    return WebhookAck(
        event_id=result.event_id,
        event_type=result.event_type,
        correlation_key=result.correlation_key,
        processed=result.processed,
        duplicate=result.duplicate,
    )


@router.post("/webhooks/blockchain", response_model=WebhookAck)
async def blockchain_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
    ingestion: EventIngestion = Depends(get_event_ingestion),
):
    """transaction_confirmed, block_mined and contract_event deliveries"""
    return await _ingest(request, x_webhook_signature, BLOCKCHAIN_EVENT_TYPES, ingestion)


@router.post("/webhooks/payment", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
    ingestion: EventIngestion = Depends(get_event_ingestion),
):
    """payment_completed, payment_failed and refund_processed deliveries"""
    return await _ingest(request, x_webhook_signature, PAYMENT_EVENT_TYPES, ingestion)


@router.post("/webhooks/loan", response_model=WebhookAck)
async def loan_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
    ingestion: EventIngestion = Depends(get_event_ingestion),
):
    """loan_funded and loan_defaulted deliveries"""
    return await _ingest(request, x_webhook_signature, LOAN_EVENT_TYPES, ingestion)


@router.get("/webhooks/status", response_model=WebhookStatusResponse)
def webhook_status(ingestion: EventIngestion = Depends(get_event_ingestion)):
    """Processing statistics across recorded events"""
    return WebhookStatusResponse(**ingestion.webhook_status())
