from django.urls import path
from . import views

urlpatterns = [
    path('config-status/', views.config_status, name='mpesa_config_status'),
    path('test-connection/', views.test_connection, name='mpesa_test_connection'),
    path('stkpush/', views.stk_push, name='mpesa_stkpush'),
    path('stkquery/', views.stk_query, name='mpesa_stkquery'),
    path('callback/', views.mpesa_callback, name='mpesa_callback'),
    path('transactions/', views.transactions_list, name='mpesa_transactions'),
    path('token-status/', views.token_status, name='mpesa_token_status'),
]
