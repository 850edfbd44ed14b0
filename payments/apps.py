"""
Payments app configuration.
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the M-Pesa payments app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "M-Pesa Payments"

    def ready(self):
        """Connect signal receivers and report the M-Pesa configuration once at startup."""
        from . import receivers  # noqa: F401
        from .config import MpesaConfig, log_config_status

        log_config_status(MpesaConfig.from_settings())
