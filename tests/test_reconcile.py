"""
Tests for callback parsing and transaction reconciliation.
"""

import json
from decimal import Decimal

import pytest

from payments.exceptions import CallbackParseError
from payments.models import MpesaTransaction
from payments.services.reconcile import (
    ACKNOWLEDGEMENT,
    SOURCE_CALLBACK,
    SOURCE_EXPIRY,
    SOURCE_QUERY,
    apply_result,
    parse_callback,
    reconcile,
    status_for_result_code,
)
from payments.signals import payment_resolved, sale_completed

from .helpers import callback_payload


@pytest.fixture
def pending_transaction(db):
    return MpesaTransaction.objects.create(
        merchant_request_id="29115-34620561-1",
        checkout_request_id="ws_CO_191220191020363925",
        phone="254712345678",
        amount=Decimal("50"),
        branch="Nairobi",
        product="Coke",
    )


class SignalRecorder:
    def __init__(self, signal):
        self.calls = []
        self.signal = signal
        signal.connect(self.receive)

    def receive(self, sender, **kwargs):
        self.calls.append(kwargs)

    def disconnect(self):
        self.signal.disconnect(self.receive)


@pytest.fixture
def sales():
    recorder = SignalRecorder(sale_completed)
    yield recorder
    recorder.disconnect()


@pytest.fixture
def resolutions():
    recorder = SignalRecorder(payment_resolved)
    yield recorder
    recorder.disconnect()


class TestStatusMapping:
    @pytest.mark.parametrize("code", [0, "0", " 0 "])
    def test_zero_is_completed(self, code):
        assert status_for_result_code(code) == MpesaTransaction.Status.COMPLETED

    @pytest.mark.parametrize("code", [1, "1032", 2001, None, "abc"])
    def test_anything_else_is_failed(self, code):
        assert status_for_result_code(code) == MpesaTransaction.Status.FAILED


class TestParseCallback:
    def test_extracts_identifiers_and_metadata(self):
        result = parse_callback(callback_payload())
        assert result.merchant_request_id == "29115-34620561-1"
        assert result.checkout_request_id == "ws_CO_191220191020363925"
        assert result.result_code == 0
        assert result.amount == 50
        assert result.receipt == "ABC123"
        assert result.transaction_date == "20191219102115"
        assert result.phone == "254712345678"

    def test_failed_callback_has_no_metadata(self):
        result = parse_callback(callback_payload(result_code=1032, result_desc="Request cancelled by user"))
        assert result.result_code == 1032
        assert result.amount is None
        assert result.receipt is None
        assert result.status == MpesaTransaction.Status.FAILED

    def test_accepts_raw_bytes(self):
        result = parse_callback(json.dumps(callback_payload()).encode())
        assert result.receipt == "ABC123"

    @pytest.mark.parametrize(
        "payload",
        [b"not json", "[]", {}, {"Body": "x"}, {"Body": {}}, {"Body": {"stkCallback": {"MerchantRequestID": "1"}}}],
    )
    def test_malformed_envelopes(self, payload):
        with pytest.raises(CallbackParseError):
            parse_callback(payload)


@pytest.mark.django_db
class TestReconcile:
    def test_successful_callback_completes_transaction(self, pending_transaction, sales):
        ack = reconcile(callback_payload())

        assert ack == ACKNOWLEDGEMENT
        pending_transaction.refresh_from_db()
        assert pending_transaction.status == MpesaTransaction.Status.COMPLETED
        assert pending_transaction.mpesa_receipt == "ABC123"
        assert pending_transaction.result_code == "0"
        assert pending_transaction.completed_at is not None
        assert pending_transaction.raw_callback["Body"]["stkCallback"]["ResultCode"] == 0

        assert len(sales.calls) == 1
        sale = sales.calls[0]
        assert sale["branch"] == "Nairobi"
        assert sale["product"] == "Coke"
        assert sale["amount"] == Decimal("50")
        assert sale["receipt"] == "ABC123"

    def test_failed_callback_fails_transaction(self, pending_transaction, sales):
        reconcile(callback_payload(result_code=1032, result_desc="Request cancelled by user"))

        pending_transaction.refresh_from_db()
        assert pending_transaction.status == MpesaTransaction.Status.FAILED
        assert pending_transaction.result_code == "1032"
        assert pending_transaction.result_desc == "Request cancelled by user"
        assert pending_transaction.mpesa_receipt is None
        assert sales.calls == []

    def test_unknown_merchant_request_is_dropped(self, pending_transaction, sales):
        ack = reconcile(callback_payload(merchant_request_id="unknown-id"))

        assert ack == ACKNOWLEDGEMENT
        pending_transaction.refresh_from_db()
        assert pending_transaction.status == MpesaTransaction.Status.PENDING
        assert sales.calls == []

    def test_malformed_callback_still_acknowledged(self, pending_transaction):
        assert reconcile(b"{broken") == ACKNOWLEDGEMENT
        assert reconcile({"Body": {}}) == ACKNOWLEDGEMENT
        pending_transaction.refresh_from_db()
        assert pending_transaction.status == MpesaTransaction.Status.PENDING

    def test_internal_error_still_acknowledged(self, pending_transaction, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr("payments.services.reconcile.apply_result", explode)
        assert reconcile(callback_payload()) == ACKNOWLEDGEMENT

    def test_duplicate_callback_is_idempotent(self, pending_transaction, sales, resolutions):
        reconcile(callback_payload())
        pending_transaction.refresh_from_db()
        first_completed_at = pending_transaction.completed_at

        reconcile(callback_payload())
        pending_transaction.refresh_from_db()

        assert pending_transaction.status == MpesaTransaction.Status.COMPLETED
        assert pending_transaction.mpesa_receipt == "ABC123"
        assert pending_transaction.completed_at == first_completed_at
        assert len(sales.calls) == 1
        assert len(resolutions.calls) == 1
        assert resolutions.calls[0]["source"] == "callback"

    def test_terminal_status_is_never_flipped(self, pending_transaction, sales):
        reconcile(callback_payload(result_code=1032, result_desc="Request cancelled by user"))
        reconcile(callback_payload())

        pending_transaction.refresh_from_db()
        assert pending_transaction.status == MpesaTransaction.Status.FAILED
        assert pending_transaction.mpesa_receipt is None
        assert sales.calls == []


@pytest.mark.django_db
class TestApplyResult:
    @pytest.mark.parametrize(
        "result_code,expected",
        [(0, MpesaTransaction.Status.COMPLETED), ("1032", MpesaTransaction.Status.FAILED)],
    )
    def test_query_and_callback_agree(self, db, result_code, expected):
        for merchant_request_id, source in (("m-callback", "callback"), ("m-query", SOURCE_QUERY)):
            MpesaTransaction.objects.create(
                merchant_request_id=merchant_request_id,
                checkout_request_id=f"ws_{merchant_request_id}",
                phone="254712345678",
                amount=Decimal("10"),
            )
            txn = apply_result(result_code, "desc", source, merchant_request_id=merchant_request_id)
            assert txn.status == expected

    def test_lookup_by_checkout_request_id(self, pending_transaction):
        txn = apply_result("0", "ok", SOURCE_QUERY, checkout_request_id="ws_CO_191220191020363925")
        assert txn.pk == pending_transaction.pk
        assert txn.status == MpesaTransaction.Status.COMPLETED

    def test_query_success_waits_for_callback_receipt(self, pending_transaction, sales, resolutions):
        apply_result("0", "ok", SOURCE_QUERY, merchant_request_id="29115-34620561-1")
        pending_transaction.refresh_from_db()
        assert pending_transaction.status == MpesaTransaction.Status.COMPLETED
        assert pending_transaction.resolved_by == SOURCE_QUERY
        assert sales.calls == []
        assert len(resolutions.calls) == 1

        reconcile(callback_payload())
        reconcile(callback_payload())

        pending_transaction.refresh_from_db()
        assert pending_transaction.mpesa_receipt == "ABC123"
        assert pending_transaction.resolved_by == SOURCE_CALLBACK
        assert len(sales.calls) == 1
        assert sales.calls[0]["receipt"] == "ABC123"
        assert len(resolutions.calls) == 1

    def test_success_callback_overrides_expired_transaction(self, pending_transaction, sales, resolutions):
        apply_result(None, "Expired: no callback received", SOURCE_EXPIRY, merchant_request_id="29115-34620561-1")
        pending_transaction.refresh_from_db()
        assert pending_transaction.status == MpesaTransaction.Status.FAILED

        reconcile(callback_payload())

        pending_transaction.refresh_from_db()
        assert pending_transaction.status == MpesaTransaction.Status.COMPLETED
        assert pending_transaction.result_code == "0"
        assert pending_transaction.mpesa_receipt == "ABC123"
        assert pending_transaction.resolved_by == SOURCE_CALLBACK
        assert [call["source"] for call in resolutions.calls] == [SOURCE_EXPIRY, SOURCE_CALLBACK]
        assert len(sales.calls) == 1
        assert sales.calls[0]["receipt"] == "ABC123"

    def test_success_callback_overrides_failed_query(self, pending_transaction, sales):
        apply_result("1037", "DS timeout user cannot be reached", SOURCE_QUERY, merchant_request_id="29115-34620561-1")

        reconcile(callback_payload())

        pending_transaction.refresh_from_db()
        assert pending_transaction.status == MpesaTransaction.Status.COMPLETED
        assert pending_transaction.result_desc == "The service request is processed successfully."
        assert len(sales.calls) == 1

    def test_query_cannot_override_callback_failure(self, pending_transaction):
        reconcile(callback_payload(result_code=1032, result_desc="Request cancelled by user"))
        apply_result("0", "ok", SOURCE_QUERY, merchant_request_id="29115-34620561-1")

        pending_transaction.refresh_from_db()
        assert pending_transaction.status == MpesaTransaction.Status.FAILED
        assert pending_transaction.resolved_by == SOURCE_CALLBACK

    def test_conflicting_callback_envelope_not_stored(self, pending_transaction):
        reconcile(callback_payload())
        reconcile(callback_payload(result_code=1032, result_desc="Request cancelled by user"))

        pending_transaction.refresh_from_db()
        assert pending_transaction.status == MpesaTransaction.Status.COMPLETED
        assert pending_transaction.raw_callback["Body"]["stkCallback"]["ResultCode"] == 0

    def test_no_identifiers_matches_nothing(self, pending_transaction):
        assert apply_result("0", "ok", SOURCE_QUERY) is None
