from django.contrib import admin
from .models import MpesaTransaction

@admin.register(MpesaTransaction)
class MpesaTransactionAdmin(admin.ModelAdmin):
    list_display = ('merchant_request_id', 'masked_phone', 'amount', 'branch', 'product', 'status', 'mpesa_receipt', 'resolved_by', 'created_at', 'completed_at')
    search_fields = ('merchant_request_id', 'checkout_request_id', 'phone', 'mpesa_receipt')
    list_filter = ('status', 'branch')
    readonly_fields = ('merchant_request_id', 'checkout_request_id', 'raw_callback', 'created_at', 'updated_at', 'completed_at', 'resolved_by')
