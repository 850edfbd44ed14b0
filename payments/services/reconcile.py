"""
Reconciliation of STK Push outcomes with the local transaction store.

Both the Safaricom callback and the STK status query end up in
``apply_result``, so the two paths always agree on the terminal status for
a given result code. The first terminal write wins, with one exception: a
successful callback replaces a failure recorded by a poll or by expiry.
Later deliveries may fill in a missing receipt but never flip a status the
callback set. The sale signal is sent only from the callback path, once
per transaction, so it always carries the receipt.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from django.db import transaction
from django.utils import timezone

from ..exceptions import CallbackParseError
from ..models import MpesaTransaction
from ..signals import payment_resolved, sale_completed

logger = logging.getLogger(__name__)

ACKNOWLEDGEMENT = {"ResultCode": 0, "ResultDesc": "Success"}

SOURCE_CALLBACK = "callback"
SOURCE_QUERY = "query"
SOURCE_EXPIRY = "expiry"


def status_for_result_code(result_code) -> str:
    if result_code is not None and str(result_code).strip() == "0":
        return MpesaTransaction.Status.COMPLETED
    return MpesaTransaction.Status.FAILED


@dataclass
class CallbackResult:
    merchant_request_id: Optional[str]
    checkout_request_id: Optional[str]
    result_code: Any
    result_desc: Optional[str]
    amount: Any = None
    receipt: Optional[str] = None
    transaction_date: Optional[str] = None
    phone: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self):
        return status_for_result_code(self.result_code)


def parse_callback(payload) -> CallbackResult:
    """Extract the stkCallback fields from a Daraja result envelope."""
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise CallbackParseError(f"Callback body is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise CallbackParseError("Callback body must be a JSON object")

    body = payload.get("Body")
    stk = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(stk, dict):
        raise CallbackParseError("Callback is missing Body.stkCallback")
    if "ResultCode" not in stk:
        raise CallbackParseError("Callback is missing ResultCode")

    metadata = stk.get("CallbackMetadata") or {}
    items = metadata.get("Item") if isinstance(metadata, dict) else None
    values = {}
    for item in items or []:
        if isinstance(item, dict) and "Name" in item:
            values[item["Name"]] = item.get("Value")

    receipt = values.get("MpesaReceiptNumber")
    transaction_date = values.get("TransactionDate")
    phone = values.get("PhoneNumber")
    return CallbackResult(
        merchant_request_id=stk.get("MerchantRequestID"),
        checkout_request_id=stk.get("CheckoutRequestID"),
        result_code=stk.get("ResultCode"),
        result_desc=stk.get("ResultDesc"),
        amount=values.get("Amount"),
        receipt=str(receipt) if receipt is not None else None,
        transaction_date=str(transaction_date) if transaction_date is not None else None,
        phone=str(phone) if phone is not None else None,
        raw=payload,
    )


def apply_result(
    result_code,
    result_desc,
    source,
    merchant_request_id=None,
    checkout_request_id=None,
    receipt=None,
    transaction_date=None,
    raw_callback=None,
) -> Optional[MpesaTransaction]:
    """
    Move the matching transaction to its terminal status.

    Returns the updated row, or None when no transaction matches the given
    identifiers.
    """
    if merchant_request_id:
        lookup = {"merchant_request_id": merchant_request_id}
    elif checkout_request_id:
        lookup = {"checkout_request_id": checkout_request_id}
    else:
        return None

    new_status = status_for_result_code(result_code)
    with transaction.atomic():
        txn = MpesaTransaction.objects.select_for_update().filter(**lookup).first()
        if txn is None:
            return None

        previous_source = txn.resolved_by
        transitioned = not txn.is_terminal or _callback_overrides(txn, new_status, source)
        if transitioned:
            txn.status = new_status
            txn.result_code = None if result_code is None else str(result_code)
            txn.result_desc = result_desc
            txn.completed_at = timezone.now()
            txn.resolved_by = source
        elif txn.status != new_status:
            logger.warning(
                f"Ignoring {source} result {result_code} for {lookup}: "
                f"transaction already {txn.status} via {txn.resolved_by}"
            )
            return txn

        if receipt and not txn.mpesa_receipt:
            txn.mpesa_receipt = receipt
        if transaction_date and not txn.transaction_date:
            txn.transaction_date = transaction_date
        if source == SOURCE_CALLBACK:
            txn.resolved_by = SOURCE_CALLBACK
        if raw_callback is not None:
            txn.raw_callback = raw_callback
        txn.save()

    if transitioned:
        logger.info(f"Transaction {txn.merchant_request_id} {txn.status} via {source}")
        payment_resolved.send(sender=MpesaTransaction, transaction=txn, source=source)

    # The sale goes out once, from the callback that carries the receipt
    confirms_sale = (
        source == SOURCE_CALLBACK
        and txn.status == MpesaTransaction.Status.COMPLETED
        and (transitioned or previous_source != SOURCE_CALLBACK)
    )
    if confirms_sale:
        sale_completed.send(
            sender=MpesaTransaction,
            branch=txn.branch,
            product=txn.product,
            amount=txn.amount,
            receipt=txn.mpesa_receipt,
            transaction=txn,
        )
    return txn


def _callback_overrides(txn, new_status, source):
    """A callback success outranks a failure recorded by a poll or by expiry."""
    return (
        source == SOURCE_CALLBACK
        and new_status == MpesaTransaction.Status.COMPLETED
        and txn.status == MpesaTransaction.Status.FAILED
        and txn.resolved_by in (SOURCE_QUERY, SOURCE_EXPIRY)
    )


def reconcile(payload) -> Dict[str, Any]:
    """
    Apply a Daraja STK callback and return the acknowledgement body.

    Safaricom retries any callback that is not acknowledged as a success,
    so every internal failure is logged here and the same acknowledgement
    is returned regardless.
    """
    try:
        result = parse_callback(payload)
        logger.info(
            f"M-Pesa callback received merchant_request_id={result.merchant_request_id} "
            f"checkout_request_id={result.checkout_request_id} result_code={result.result_code} "
            f"result_desc={result.result_desc} amount={result.amount} receipt={result.receipt}"
        )
        if not result.merchant_request_id:
            logger.warning("M-Pesa callback without MerchantRequestID dropped")
            return dict(ACKNOWLEDGEMENT)

        txn = apply_result(
            result.result_code,
            result.result_desc,
            SOURCE_CALLBACK,
            merchant_request_id=result.merchant_request_id,
            receipt=result.receipt,
            transaction_date=result.transaction_date,
            raw_callback=result.raw,
        )
        if txn is None:
            logger.warning(
                f"M-Pesa callback for unknown MerchantRequestID {result.merchant_request_id} dropped"
            )
    except CallbackParseError as e:
        logger.error(f"Malformed M-Pesa callback: {e}")
    except Exception as e:
        logger.error(f"Error processing M-Pesa callback: {e}", exc_info=True)

    return dict(ACKNOWLEDGEMENT)
