from django.db import models


class MpesaTransaction(models.Model):
    """
    One row per STK Push attempt.

    Created as PENDING once Safaricom accepts the push, then moved to
    COMPLETED or FAILED by whichever of the callback, the status query or
    the expiry sweep arrives first. A success callback still replaces a
    failure recorded by the query or the sweep.
    """

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        COMPLETED = 'completed', 'Completed'
        FAILED = 'failed', 'Failed'

    # Provider-issued references, assigned at initiation
    merchant_request_id = models.CharField(max_length=128, unique=True)
    checkout_request_id = models.CharField(max_length=128, unique=True)

    phone = models.CharField(max_length=12)  # 2547XXXXXXXX
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    branch = models.CharField(max_length=100, blank=True, null=True)
    product = models.CharField(max_length=200, blank=True, null=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING, db_index=True)

    # Populated on the transition out of PENDING
    result_code = models.CharField(max_length=16, blank=True, null=True)
    result_desc = models.CharField(max_length=256, blank=True, null=True)
    mpesa_receipt = models.CharField(max_length=32, blank=True, null=True)
    transaction_date = models.CharField(max_length=14, blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    # Which path set the current terminal status: callback, query or expiry
    resolved_by = models.CharField(max_length=10, blank=True, null=True)

    raw_callback = models.JSONField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.masked_phone} - {self.amount} - {self.status}"

    @property
    def is_terminal(self):
        return self.status != self.Status.PENDING

    @property
    def masked_phone(self):
        if not self.phone or len(self.phone) < 8:
            return self.phone
        return f"{self.phone[:6]}****{self.phone[-2:]}"
