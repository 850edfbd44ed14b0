import logging
from dataclasses import dataclass, field
from typing import List, Optional

from django.conf import settings

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}

# Values shipped in .env.example that must be replaced before going live.
PLACEHOLDERS = {
    "MPESA_CONSUMER_KEY": "your_consumer_key_here",
    "MPESA_PASSKEY": "your_passkey_here",
}

REQUIRED_SETTINGS = (
    "MPESA_CONSUMER_KEY",
    "MPESA_CONSUMER_SECRET",
    "MPESA_SHORTCODE",
    "MPESA_PASSKEY",
    "MPESA_CALLBACK_URL",
)


@dataclass
class ConfigStatus:
    missing: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    shortcode: Optional[str] = None

    @property
    def valid(self) -> bool:
        return not self.missing and not self.warnings

    @property
    def has_valid_credentials(self) -> bool:
        return self.valid

    def as_dict(self):
        return {
            "configured": self.valid,
            "has_credentials": self.has_valid_credentials,
            "missing_variables": self.missing,
            "warnings": self.warnings,
            "shortcode": self.shortcode,
        }


@dataclass(frozen=True)
class MpesaConfig:
    consumer_key: str = ""
    consumer_secret: str = ""
    shortcode: str = ""
    passkey: str = ""
    callback_url: str = ""
    env: str = "sandbox"
    timeout: int = 30

    @classmethod
    def from_settings(cls):
        return cls(
            consumer_key=getattr(settings, "MPESA_CONSUMER_KEY", "") or "",
            consumer_secret=getattr(settings, "MPESA_CONSUMER_SECRET", "") or "",
            shortcode=str(getattr(settings, "MPESA_SHORTCODE", "") or ""),
            passkey=getattr(settings, "MPESA_PASSKEY", "") or "",
            callback_url=getattr(settings, "MPESA_CALLBACK_URL", "") or "",
            env=getattr(settings, "MPESA_ENV", "sandbox") or "sandbox",
            timeout=int(getattr(settings, "MPESA_TIMEOUT", 30)),
        )

    @property
    def base_url(self):
        return BASE_URLS.get(self.env, BASE_URLS["sandbox"])

    def _values(self):
        return {
            "MPESA_CONSUMER_KEY": self.consumer_key,
            "MPESA_CONSUMER_SECRET": self.consumer_secret,
            "MPESA_SHORTCODE": self.shortcode,
            "MPESA_PASSKEY": self.passkey,
            "MPESA_CALLBACK_URL": self.callback_url,
        }

    def validate(self) -> ConfigStatus:
        values = self._values()
        status = ConfigStatus(shortcode=self.shortcode or None)
        status.missing = [name for name in REQUIRED_SETTINGS if not values[name]]
        for name, placeholder in PLACEHOLDERS.items():
            if values[name] == placeholder:
                status.warnings.append(f"{name} is still set to default placeholder value")
        if self.env not in BASE_URLS:
            status.warnings.append(f"MPESA_ENV must be one of {sorted(BASE_URLS)}, got '{self.env}'")
        return status

    def ensure_valid(self) -> ConfigStatus:
        """Raise ConfigurationError unless every credential is present and real."""
        status = self.validate()
        if not status.valid:
            names = ", ".join(status.missing) or "placeholder values"
            raise ConfigurationError(
                f"M-Pesa configuration is incomplete: {names}",
                missing=status.missing,
                warnings=status.warnings,
            )
        return status


def log_config_status(config: MpesaConfig) -> ConfigStatus:
    status = config.validate()
    if status.missing:
        logger.error(
            "M-Pesa configuration error, missing environment variables: %s",
            ", ".join(status.missing),
        )
    for warning in status.warnings:
        logger.warning(f"M-Pesa configuration warning: {warning}")
    if status.valid:
        logger.info(
            f"M-Pesa configuration validated (shortcode={config.shortcode}, "
            f"callback={config.callback_url})"
        )
    return status
