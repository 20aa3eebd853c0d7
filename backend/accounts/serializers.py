from rest_framework import serializers

from .models import User, WalletTransaction


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "role",
            "phone_number",
            "wallet_balance",
        ]
        read_only_fields = fields


class WalletTransactionSerializer(serializers.ModelSerializer):
    ride_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = WalletTransaction
        fields = ["id", "kind", "amount", "balance_after", "ride_id", "created_at"]
        read_only_fields = fields


class FundWalletSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Amount must be greater than zero")
        return value
