from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from accounts import wallet
from .models import User
from .serializers import FundWalletSerializer, UserSerializer, WalletTransactionSerializer

RECENT_TRANSACTIONS = 20


class WalletView(APIView):
    """
    GET: Current wallet balance and the most recent ledger rows.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        user = User.objects.get(pk=request.user.pk)
        transactions = user.wallet_transactions.all()[:RECENT_TRANSACTIONS]
        user_data = UserSerializer(user).data

        return Response({
            'user': user_data,
            'balance': user_data['wallet_balance'],
            'transactions': WalletTransactionSerializer(transactions, many=True).data,
        })


class FundWalletView(APIView):
    """
    Add funds to the caller's wallet

    POST Body:
    {
        "amount": "1500.00"
    }
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = FundWalletSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        result = wallet.credit_balance(request.user.pk, serializer.validated_data['amount'])

        return Response({
            'message': 'Wallet funded successfully',
            'balance': f"{result.new_balance:.2f}",
        }, status=status.HTTP_200_OK)
