"""
Default consumers of the payment lifecycle signals.

The dashboard and inventory collaborators hook into the same signals; these
receivers keep an audit trail in the logs for every payment event.
"""

import logging

from django.dispatch import receiver

from .signals import payment_initiated, payment_resolved, sale_completed

logger = logging.getLogger(__name__)


@receiver(payment_initiated)
def log_payment_initiated(sender, transaction, **kwargs):
    logger.info(
        f"mpesa-initiated phone={transaction.masked_phone} amount={transaction.amount} "
        f"branch={transaction.branch} product={transaction.product} "
        f"merchant_request_id={transaction.merchant_request_id}"
    )


@receiver(payment_resolved)
def log_payment_resolved(sender, transaction, source, **kwargs):
    logger.info(
        f"mpesa-{transaction.status} via {source} merchant_request_id={transaction.merchant_request_id} "
        f"result_desc={transaction.result_desc} receipt={transaction.mpesa_receipt}"
    )


@receiver(sale_completed)
def log_sale_completed(sender, branch, product, amount, receipt, **kwargs):
    logger.info(
        f"sale-completed branch={branch} product={product} quantity=1 "
        f"total_amount={amount} payment_method=mpesa receipt={receipt}"
    )
