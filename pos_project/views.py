from django.http import JsonResponse

def index(request):
    return JsonResponse({
        "message": "Django POS Payments API",
        "endpoints": {
            "admin": "/admin/",
            "mpesa_config_status": "/api/mpesa/config-status/",
            "mpesa_test_connection": "/api/mpesa/test-connection/",
            "mpesa_stkpush": "/api/mpesa/stkpush/",
            "mpesa_stkquery": "/api/mpesa/stkquery/",
            "mpesa_callback": "/api/mpesa/callback/",
            "mpesa_transactions": "/api/mpesa/transactions/",
            "mpesa_token_status": "/api/mpesa/token-status/",
        }
    })
