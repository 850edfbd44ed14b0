"""
Management command to fail STK Push transactions whose callback never arrived.
"""

from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from payments.models import MpesaTransaction
from payments.services.reconcile import SOURCE_EXPIRY, apply_result

EXPIRED_DESC = "Expired: no callback received"


class Command(BaseCommand):
    help = "Mark pending M-Pesa transactions older than the timeout as failed"

    def add_arguments(self, parser):
        parser.add_argument(
            "--minutes",
            type=int,
            default=getattr(settings, "MPESA_PENDING_TIMEOUT_MINUTES", 15),
            help="Age in minutes after which a pending transaction is expired",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List the transactions that would be expired without changing them",
        )

    def handle(self, *args, **options):
        cutoff = timezone.now() - timedelta(minutes=options["minutes"])
        stale = MpesaTransaction.objects.filter(
            status=MpesaTransaction.Status.PENDING,
            created_at__lt=cutoff,
        ).order_by("created_at")

        if not stale.exists():
            self.stdout.write(self.style.SUCCESS("No stale pending transactions."))
            return

        expired = 0
        for txn in stale:
            if options["dry_run"]:
                self.stdout.write(f"  - would expire {txn.merchant_request_id} ({txn.created_at:%Y-%m-%d %H:%M})")
                continue
            updated = apply_result(
                None,
                EXPIRED_DESC,
                SOURCE_EXPIRY,
                merchant_request_id=txn.merchant_request_id,
            )
            # A callback may have resolved it between the listing and the update
            if updated is not None and updated.resolved_by == SOURCE_EXPIRY:
                expired += 1
                self.stdout.write(f"  - expired {txn.merchant_request_id}")

        if not options["dry_run"]:
            self.stdout.write(self.style.SUCCESS(f"Expired {expired} pending transaction(s)."))
