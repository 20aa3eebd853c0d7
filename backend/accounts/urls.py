from django.urls import path

from .views import FundWalletView, WalletView

app_name = 'accounts'

urlpatterns = [
    path('', WalletView.as_view(), name='wallet'),
    path('fund/', FundWalletView.as_view(), name='fund-wallet'),
]
