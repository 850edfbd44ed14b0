"""
Payment lifecycle signals for inventory and dashboard collaborators.

payment_initiated(sender, transaction)
    Safaricom accepted an STK Push and a pending row was stored.
payment_resolved(sender, transaction, source)
    A pending row reached completed or failed. ``source`` is one of
    "callback", "query" or "expiry".
sale_completed(sender, branch, product, amount, receipt, transaction)
    Sent once per transaction, on its transition to completed.
"""

from django.dispatch import Signal

payment_initiated = Signal()
payment_resolved = Signal()
sale_completed = Signal()
