"""
Canned Daraja responses and payloads for tests.
"""

from unittest.mock import Mock


def make_response(status_code=200, json_data=None, text=""):
    """Build a stand-in for requests.Response."""
    response = Mock()
    response.status_code = status_code
    response.text = text or (str(json_data) if json_data is not None else "")
    if json_data is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = json_data
    return response


def token_response(token="test-access-token"):
    return make_response(200, {"access_token": token, "expires_in": "3599"})


def stk_push_response(merchant_request_id="29115-34620561-1", checkout_request_id="ws_CO_191220191020363925"):
    return make_response(200, {
        "MerchantRequestID": merchant_request_id,
        "CheckoutRequestID": checkout_request_id,
        "ResponseCode": "0",
        "ResponseDescription": "Success. Request accepted for processing",
        "CustomerMessage": "Success. Request accepted for processing",
    })


def callback_payload(merchant_request_id="29115-34620561-1", checkout_request_id="ws_CO_191220191020363925",
                     result_code=0, result_desc="The service request is processed successfully.",
                     amount=50, receipt="ABC123", phone=254712345678):
    stk = {
        "MerchantRequestID": merchant_request_id,
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc,
    }
    if result_code == 0:
        stk["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "Balance"},
                {"Name": "TransactionDate", "Value": 20191219102115},
                {"Name": "PhoneNumber", "Value": phone},
            ]
        }
    return {"Body": {"stkCallback": stk}}
