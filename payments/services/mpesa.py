import base64
import datetime as dt
import logging
import re
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import lru_cache

import requests

from ..config import MpesaConfig
from ..exceptions import AuthError, ConfigurationError, ProviderError, ValidationError

logger = logging.getLogger(__name__)

# Daraja tokens live for an hour; refresh ten minutes early so a token never
# expires while a push is in flight.
TOKEN_VALIDITY_SECONDS = 60 * 60
TOKEN_CACHE_SECONDS = 50 * 60

AUTH_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"

# Returned by the STK query endpoint while the customer has not answered yet.
QUERY_IN_PROGRESS_CODE = "500.001.1001"

COUNTRY_CODE = "254"
PHONE_PATTERN = re.compile(r"^254[0-9]{9}$")
_PHONE_SEPARATORS = re.compile(r"[\s\-().]")


def normalize_phone(phone) -> str:
    """
    Return the canonical 2547XXXXXXXX MSISDN for ``phone``.

    Accepts 07XXXXXXXX, 2547XXXXXXXX and 7XXXXXXXX, optionally with a
    leading "+" and spaces or dashes between digit groups.
    """
    if phone is None or not str(phone).strip():
        raise ValidationError("Phone number is required")

    digits = _PHONE_SEPARATORS.sub("", str(phone).strip())
    if digits.startswith("+"):
        digits = digits[1:]
    if not re.fullmatch(r"[0-9]+", digits):
        raise ValidationError(f"Invalid phone number '{phone}': only digits are allowed")

    if digits.startswith("0"):
        digits = COUNTRY_CODE + digits[1:]
    elif not digits.startswith(COUNTRY_CODE):
        digits = COUNTRY_CODE + digits

    if not PHONE_PATTERN.match(digits):
        raise ValidationError(
            "Invalid phone number format: must be 254XXXXXXXXX (12 digits starting with 254)"
        )
    return digits


def normalize_amount(amount) -> int:
    """Daraja only accepts whole shillings."""
    if amount is None or amount == "":
        raise ValidationError("Amount is required")
    if isinstance(amount, bool):
        raise ValidationError("Amount must be a number")
    try:
        value = Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Amount must be a number, got '{amount}'")
    if not value.is_finite() or value < 1:
        raise ValidationError("Amount must be at least 1")
    return int(value)


def generate_timestamp(now=None) -> str:
    now = now or dt.datetime.now(dt.timezone.utc)
    return now.strftime("%Y%m%d%H%M%S")[:14]


def generate_password(shortcode, passkey, timestamp) -> str:
    raw = f"{shortcode}{passkey}{timestamp}".encode("utf-8")
    return base64.b64encode(raw).decode("utf-8")


@dataclass(frozen=True)
class CachedToken:
    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenManager:
    """
    Owns the Daraja OAuth token for one set of credentials.

    The cached token is swapped in with a single assignment, so concurrent
    readers see either the old token or the new one, never a mix. Two
    threads refreshing at once is harmless; the last one wins.
    """

    def __init__(self, config: MpesaConfig, clock=time.time):
        self.config = config
        self._clock = clock
        self._cached = None

    def get_token(self) -> str:
        cached = self._cached
        if cached is not None and cached.is_valid(self._clock()):
            return cached.value
        return self.refresh()

    def refresh(self) -> str:
        missing = [
            name
            for name, value in (
                ("MPESA_CONSUMER_KEY", self.config.consumer_key),
                ("MPESA_CONSUMER_SECRET", self.config.consumer_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError("M-Pesa credentials not configured", missing=missing)

        logger.info("Requesting M-Pesa access token")
        try:
            resp = requests.get(
                f"{self.config.base_url}{AUTH_PATH}",
                auth=(self.config.consumer_key, self.config.consumer_secret),
                headers={"Accept": "application/json"},
                timeout=self.config.timeout,
            )
        except requests.Timeout as e:
            logger.error(f"M-Pesa OAuth request timed out: {e}")
            raise AuthError("M-Pesa OAuth request timed out. Please try again.") from e
        except requests.ConnectionError as e:
            logger.error(f"M-Pesa OAuth connection failed: {e}")
            raise AuthError(
                "Cannot connect to M-Pesa API. Please check your internet connection."
            ) from e
        except requests.RequestException as e:
            logger.error(f"M-Pesa OAuth request failed: {e}")
            raise AuthError(f"Failed to get M-Pesa access token: {e}") from e

        if resp.status_code == 401:
            logger.error(f"M-Pesa OAuth rejected credentials: {resp.text}")
            raise AuthError("Invalid M-Pesa credentials. Please check your Consumer Key and Secret.")

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code != 200:
            logger.error(f"M-Pesa OAuth error: status={resp.status_code}, body={resp.text}")
            detail = data.get("errorDescription") or data.get("errorMessage") or resp.text
            raise AuthError(f"Failed to get M-Pesa access token: {detail}")
        if not data.get("access_token"):
            raise AuthError(f"M-Pesa OAuth response missing access_token: {data}")

        self._cached = CachedToken(
            value=data["access_token"],
            expires_at=self._clock() + TOKEN_CACHE_SECONDS,
        )
        logger.info("M-Pesa access token obtained")
        return self._cached.value

    def invalidate(self):
        self._cached = None

    def status(self):
        cached = self._cached
        now = self._clock()
        if cached is None:
            return {"has_token": False, "expires_in": 0, "is_expired": True}
        return {
            "has_token": True,
            "expires_in": max(0, round(cached.expires_at - now)),
            "is_expired": not cached.is_valid(now),
        }


@lru_cache(maxsize=None)
def token_manager_for(config: MpesaConfig) -> TokenManager:
    """Process-wide TokenManager for a given set of credentials."""
    return TokenManager(config)


class MpesaDarajaClient:
    """Thin HTTP client for the STK Push and STK Query endpoints."""

    def __init__(self, config: MpesaConfig, token_manager: TokenManager):
        self.config = config
        self.token_manager = token_manager

    def _credentials(self):
        timestamp = generate_timestamp()
        password = generate_password(self.config.shortcode, self.config.passkey, timestamp)
        return password, timestamp

    def stk_push(self, phone: str, amount: int, account_reference: str, transaction_desc: str):
        password, timestamp = self._credentials()
        token = self.token_manager.get_token()
        payload = {
            "BusinessShortCode": self.config.shortcode,
            "Password": password,
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": amount,
            "PartyA": phone,
            "PartyB": self.config.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.config.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": transaction_desc,
        }
        logger.info(
            f"Initiating STK Push phone={phone} amount={amount} "
            f"timestamp={timestamp} shortcode={self.config.shortcode}"
        )
        resp, body = self._post(STK_PUSH_PATH, payload, token)
        self._raise_for_response(resp, body, "Failed to initiate STK Push")
        logger.info(f"STK Push response: {body}")

        # Success acceptance code from Daraja is ResponseCode == "0"
        if str(body.get("ResponseCode")) != "0":
            raise ProviderError(
                body.get("errorMessage") or body.get("ResponseDescription") or "STK Push was not accepted",
                code=ProviderError.UNKNOWN_ERROR,
                details=body,
            )
        return body

    def stk_query(self, checkout_request_id: str):
        password, timestamp = self._credentials()
        token = self.token_manager.get_token()
        payload = {
            "BusinessShortCode": self.config.shortcode,
            "Password": password,
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }
        resp, body = self._post(STK_QUERY_PATH, payload, token)
        if body.get("errorCode") == QUERY_IN_PROGRESS_CODE:
            logger.info(f"STK query {checkout_request_id}: still being processed")
            return body
        self._raise_for_response(resp, body, "Failed to query transaction status")
        logger.info(f"STK query response: {body}")
        return body

    def _post(self, path, payload, token):
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        try:
            resp = requests.post(
                f"{self.config.base_url}{path}",
                json=payload,
                headers=headers,
                timeout=self.config.timeout,
            )
        except requests.Timeout as e:
            logger.error(f"M-Pesa request to {path} timed out: {e}")
            raise ProviderError(
                "M-Pesa API request timed out. Please try again.",
                code=ProviderError.TIMEOUT,
                details=str(e),
            ) from e
        except requests.ConnectionError as e:
            logger.error(f"M-Pesa connection to {path} failed: {e}")
            raise ProviderError(
                "Cannot connect to M-Pesa API. Please check your internet connection.",
                code=ProviderError.CONNECTION_ERROR,
                details=str(e),
            ) from e
        except requests.RequestException as e:
            logger.error(f"M-Pesa request to {path} failed: {e}")
            raise ProviderError(str(e), code=ProviderError.UNKNOWN_ERROR, details=str(e)) from e

        # Daraja reports most failures as JSON bodies; keep them for the caller
        try:
            body = resp.json()
        except ValueError:
            body = {"raw": resp.text}
        if not isinstance(body, dict):
            body = {"raw": body}
        return resp, body

    def _raise_for_response(self, resp, body, default_message):
        if 200 <= resp.status_code < 300:
            return
        logger.error(f"M-Pesa API error status={resp.status_code} body={body}")
        if resp.status_code == 401:
            # A revoked or rotated token must not be reused
            self.token_manager.invalidate()
            raise ProviderError(
                "Invalid M-Pesa credentials. Please check your configuration.",
                code=ProviderError.AUTH_ERROR,
                details=body,
            )
        if resp.status_code == 500:
            raise ProviderError(
                "M-Pesa API returned an internal error. Please try again later.",
                code=ProviderError.SERVER_ERROR,
                details=body,
            )
        raise ProviderError(
            body.get("errorMessage") or default_message,
            code=ProviderError.UNKNOWN_ERROR,
            details=body,
        )
