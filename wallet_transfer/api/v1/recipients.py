"""Recipient verification and saved recipient endpoints"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from wallet_transfer.api.v1.schemas import SavedRecipientListResponse, SavedRecipientSchema, VerificationResponse
from wallet_transfer.api.dependencies import (
    ResolverRegistry,
    get_gateway,
    get_lookup_client,
    get_request_id,
    get_resolver_registry,
)
from wallet_transfer.domain.exceptions import GatewayUnavailableError, SavedRecipientNotFoundError
from wallet_transfer.domain.models import LookupKey, SavedRecipient, TransferCategory
from wallet_transfer.domain.ports import RecipientLookup, TransferGateway
from wallet_transfer.infrastructure.database.repositories import SavedRecipientRepository
from wallet_transfer.infrastructure.database.session import get_db
from wallet_transfer.infrastructure.observability.metrics import recipient_lookup_counter

router = APIRouter()


@router.get("/recipients/resolve", response_model=VerificationResponse)
async def resolve_recipient(
    request: Request,
    owner_id: str = Query(..., description="Sending user identifier"),
    category: TransferCategory = Query(...),
    account_number: str = Query(..., description="Bank account number or recipient wallet account number"),
    bank_code: str | None = Query(None),
    gateway: TransferGateway = Depends(get_gateway),
    lookup: RecipientLookup = Depends(get_lookup_client),
    registry: ResolverRegistry = Depends(get_resolver_registry),
):
    """
    Live-typing recipient verification.

    A newer call from the same owner supersedes older in-flight ones; a
    superseded call answers with current=false and is never applied.
    """
    try:
        resolver = await registry.get(owner_id, gateway, lookup)
    except GatewayUnavailableError as e:
        logging.error(f"Wallet profile unavailable: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=503, detail="Wallet service unavailable")

    key = LookupKey(account_number=account_number.strip(), bank_code=bank_code or None)
    if category == TransferCategory.PEER_TO_PEER:
        key = LookupKey(account_number=account_number.strip())

    verification = await resolver.resolve(category, key)
    recipient_lookup_counter.labels(status=verification.status.value).inc()

    return VerificationResponse(
        query_key=str(verification.query_key),
        status=verification.status.value,
        resolved_name=verification.resolved_name,
        platform_account_id=verification.platform_account_id,
        generation=verification.generation,
        message=verification.message,
        current=resolver.is_current(category, verification),
    )


def _saved_schema(recipient: SavedRecipient) -> SavedRecipientSchema:
    return SavedRecipientSchema(
        id=recipient.id,
        category=recipient.category,
        account_number=recipient.account_number,
        account_name=recipient.account_name,
        bank_code=recipient.bank_code,
        bank_name=recipient.bank_name,
        platform_account_id=recipient.platform_account_id,
        is_default=recipient.is_default,
        created_at=recipient.created_at,
    )


@router.get("/saved-recipients", response_model=SavedRecipientListResponse)
def list_saved_recipients(
    owner_id: str = Query(...),
    category: TransferCategory = Query(...),
    db: Session = Depends(get_db),
):
    """Saved accounts / beneficiaries, default first"""
    recipients = SavedRecipientRepository(db).list(owner_id, category)
    return SavedRecipientListResponse(
        owner_id=owner_id,
        category=category,
        recipients=[_saved_schema(r) for r in recipients],
    )


@router.get("/saved-recipients/suggest", response_model=SavedRecipientListResponse)
def suggest_saved_recipients(
    owner_id: str = Query(...),
    category: TransferCategory = Query(...),
    prefix: str = Query("", description="Typed account number or name prefix"),
    db: Session = Depends(get_db),
):
    recipients = SavedRecipientRepository(db).suggest(owner_id, category, prefix)
    return SavedRecipientListResponse(
        owner_id=owner_id,
        category=category,
        recipients=[_saved_schema(r) for r in recipients],
    )


@router.delete("/saved-recipients/{recipient_id}", status_code=204)
def remove_saved_recipient(
    recipient_id: str,
    owner_id: str = Query(...),
    db: Session = Depends(get_db),
):
    try:
        SavedRecipientRepository(db).remove(owner_id, recipient_id)
    except SavedRecipientNotFoundError:
        raise HTTPException(status_code=404, detail="Saved recipient not found")
    db.commit()
    return Response(status_code=204)


@router.delete("/recipients/resolve", status_code=204)
def clear_recipient_verification(
    owner_id: str = Query(...),
    category: TransferCategory = Query(...),
    registry: ResolverRegistry = Depends(get_resolver_registry),
):
    """
    Recipient input was edited or cleared.

    Drops the applied verification for the category and outdates any lookup
    still in flight, so a transfer cannot be created against the old result.
    """
    resolver = registry.peek(owner_id)
    if resolver is not None:
        resolver.invalidate(category)
    return Response(status_code=204)
