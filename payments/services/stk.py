import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Optional

from django.db import IntegrityError, transaction

from ..config import MpesaConfig
from ..exceptions import ProviderError, ValidationError
from ..models import MpesaTransaction
from ..signals import payment_initiated
from .base import PaymentProvider
from .mpesa import MpesaDarajaClient, normalize_amount, normalize_phone, token_manager_for
from .reconcile import SOURCE_QUERY, apply_result, status_for_result_code

logger = logging.getLogger(__name__)


@dataclass
class StkPushResult:
    merchant_request_id: str
    checkout_request_id: str
    response_code: Optional[str] = None
    response_description: Optional[str] = None
    customer_message: Optional[str] = None

    def as_dict(self):
        return asdict(self)


@dataclass
class StkQueryResult:
    checkout_request_id: str
    result_code: Optional[str]
    result_desc: Optional[str]
    status: str

    def as_dict(self):
        return asdict(self)


class StkPushService(PaymentProvider):
    """
    Lipa na M-Pesa Online: push a payment prompt to the customer's phone
    and poll for its outcome when the callback is late.
    """

    def __init__(self, config: MpesaConfig = None, token_manager=None, client=None):
        self.config = config or MpesaConfig.from_settings()
        self.token_manager = token_manager or token_manager_for(self.config)
        self.client = client or MpesaDarajaClient(self.config, self.token_manager)

    def initiate(self, phone, amount, branch=None, product=None) -> StkPushResult:
        self.config.ensure_valid()
        msisdn = normalize_phone(phone)
        value = normalize_amount(amount)

        body = self.client.stk_push(
            msisdn,
            value,
            account_reference=f"Supermarket-{branch or 'Main'}",
            transaction_desc=f"Purchase {product or 'Items'} at {branch or 'Main'}",
        )
        result = StkPushResult(
            merchant_request_id=body.get("MerchantRequestID"),
            checkout_request_id=body.get("CheckoutRequestID"),
            response_code=body.get("ResponseCode"),
            response_description=body.get("ResponseDescription"),
            customer_message=body.get("CustomerMessage"),
        )

        if not result.merchant_request_id or not result.checkout_request_id:
            raise ProviderError(
                "STK Push response is missing MerchantRequestID or CheckoutRequestID",
                code=ProviderError.UNKNOWN_ERROR,
                details=body,
            )

        try:
            with transaction.atomic():
                txn = MpesaTransaction.objects.create(
                    merchant_request_id=result.merchant_request_id,
                    checkout_request_id=result.checkout_request_id,
                    phone=msisdn,
                    amount=Decimal(value),
                    branch=branch,
                    product=product,
                    status=MpesaTransaction.Status.PENDING,
                )
        except IntegrityError as e:
            logger.error(f"STK Push accepted but transaction could not be stored: {e}")
            raise ProviderError(
                "M-Pesa returned request identifiers that are already recorded",
                code=ProviderError.UNKNOWN_ERROR,
                details=body,
            ) from e
        logger.info(f"STK Push accepted, pending transaction {txn.merchant_request_id} stored")
        payment_initiated.send(sender=MpesaTransaction, transaction=txn)
        return result

    def query(self, checkout_request_id, merchant_request_id=None) -> StkQueryResult:
        self.config.ensure_valid()
        if not checkout_request_id:
            raise ValidationError("CheckoutRequestID is required")

        body = self.client.stk_query(checkout_request_id)
        result_code = body.get("ResultCode")
        if result_code is None:
            return StkQueryResult(
                checkout_request_id=checkout_request_id,
                result_code=None,
                result_desc=body.get("ResultDesc") or body.get("errorMessage"),
                status=MpesaTransaction.Status.PENDING,
            )

        result = StkQueryResult(
            checkout_request_id=body.get("CheckoutRequestID") or checkout_request_id,
            result_code=str(result_code),
            result_desc=body.get("ResultDesc"),
            status=status_for_result_code(result_code),
        )
        txn = apply_result(
            result_code,
            result.result_desc,
            SOURCE_QUERY,
            merchant_request_id=merchant_request_id,
            checkout_request_id=checkout_request_id,
        )
        if txn is None:
            logger.warning(
                f"STK query for {checkout_request_id} matched no local transaction"
            )
        return result
