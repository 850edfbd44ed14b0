import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from .config import MpesaConfig
from .exceptions import AuthError, ConfigurationError, ProviderError, ValidationError
from .models import MpesaTransaction
from .services.mpesa import token_manager_for
from .services.reconcile import reconcile
from .services.stk import StkPushService

logger = logging.getLogger(__name__)

SETUP_HINT = "Check your .env M-Pesa configuration and internet connection"


def _request_data(request):
    if request.content_type == "application/json":
        try:
            data = json.loads(request.body.decode("utf-8") or "{}")
        except ValueError:
            return None
        return data if isinstance(data, dict) else None
    return request.POST.dict()


def _configuration_error_response(error):
    return JsonResponse({
        "success": False,
        "error": "M-Pesa configuration is incomplete",
        "message": str(error),
        "missing_variables": error.missing,
        "warnings": error.warnings,
    }, status=500)


@require_GET
def config_status(request):
    status = MpesaConfig.from_settings().validate()
    return JsonResponse(status.as_dict())


@require_GET
def test_connection(request):
    config = MpesaConfig.from_settings()
    status = config.validate()
    if not status.has_valid_credentials:
        return JsonResponse({
            "success": False,
            "message": "M-Pesa credentials not configured",
            "missing_variables": status.missing,
            "warnings": status.warnings,
        }, status=500)

    token_manager = token_manager_for(config)
    try:
        token_manager.get_token()
    except (AuthError, ConfigurationError) as e:
        logger.error(f"M-Pesa connection test failed: {e}")
        return JsonResponse({"success": False, "message": str(e), "hint": SETUP_HINT}, status=500)

    return JsonResponse({
        "success": True,
        "message": "M-Pesa API connection successful",
        "token_received": True,
        "expires_in": token_manager.status()["expires_in"],
    })


@csrf_exempt
@require_POST
def stk_push(request):
    data = _request_data(request)
    if data is None:
        return JsonResponse({"error": "Request body must be a JSON object"}, status=400)

    phone = data.get("phone")
    amount = data.get("amount")
    if not phone or amount in (None, ""):
        return JsonResponse({"error": "Phone and amount are required"}, status=400)

    service = StkPushService()
    try:
        result = service.initiate(phone, amount, branch=data.get("branch"), product=data.get("product"))
    except ConfigurationError as e:
        return _configuration_error_response(e)
    except ValidationError as e:
        return JsonResponse({"error": "Invalid payment request", "message": str(e)}, status=400)
    except AuthError as e:
        logger.error(f"STK Push token error: {e}")
        return JsonResponse({
            "error": str(e),
            "error_code": ProviderError.AUTH_ERROR,
            "hint": ProviderError.HINTS[ProviderError.AUTH_ERROR],
        }, status=500)
    except ProviderError as e:
        logger.error(f"STK Push error: {e.code} {e.details}")
        return JsonResponse(e.as_dict(), status=500)

    return JsonResponse({
        "success": True,
        "message": "STK Push initiated successfully. Please check your phone.",
        "data": result.as_dict(),
    })


@csrf_exempt
@require_POST
def stk_query(request):
    data = _request_data(request)
    if data is None:
        return JsonResponse({"error": "Request body must be a JSON object"}, status=400)

    checkout_request_id = data.get("checkout_request_id")
    if not checkout_request_id:
        return JsonResponse({"error": "checkout_request_id is required"}, status=400)

    service = StkPushService()
    try:
        result = service.query(checkout_request_id, merchant_request_id=data.get("merchant_request_id"))
    except ConfigurationError as e:
        return _configuration_error_response(e)
    except AuthError as e:
        logger.error(f"STK query token error: {e}")
        return JsonResponse({
            "error": "Failed to query transaction status",
            "details": str(e),
            "error_code": ProviderError.AUTH_ERROR,
        }, status=500)
    except ProviderError as e:
        logger.error(f"STK query error: {e.code} {e.details}")
        body = e.as_dict()
        body["error"] = "Failed to query transaction status"
        body["message"] = str(e)
        return JsonResponse(body, status=500)

    return JsonResponse({"success": True, "data": result.as_dict()})


@csrf_exempt
@require_http_methods(["GET", "POST"])
def mpesa_callback(request):
    if request.method == "GET":
        return JsonResponse({"status": "Callback URL is active. Waiting for POST data."})
    return JsonResponse(reconcile(request.body))


@require_GET
def transactions_list(request):
    transactions = MpesaTransaction.objects.order_by('-created_at')[:50]
    return JsonResponse({
        "transactions": [
            {
                "id": txn.id,
                "phone": txn.masked_phone,
                "amount": str(txn.amount),
                "branch": txn.branch,
                "product": txn.product,
                "status": txn.status,
                "mpesa_receipt": txn.mpesa_receipt,
                "created_at": txn.created_at.isoformat(),
                "completed_at": txn.completed_at.isoformat() if txn.completed_at else None,
            }
            for txn in transactions
        ]
    })


@require_GET
def token_status(request):
    return JsonResponse(token_manager_for(MpesaConfig.from_settings()).status())
