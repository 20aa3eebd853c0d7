from rest_framework import serializers

from .models import Ride


class RideSerializer(serializers.ModelSerializer):
    """Serializer for Ride rows (also used as the realtime row format)"""
    rider_id = serializers.IntegerField(read_only=True)
    driver_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = Ride
        fields = ['id', 'rider_id', 'rider_email', 'driver_id',
                  'pickup_latitude', 'pickup_longitude',
                  'destination_latitude', 'destination_longitude', 'destination_address',
                  'distance_km', 'price', 'status',
                  'created_at', 'accepted_at', 'completed_at']
        read_only_fields = fields


class RankedRideSerializer(serializers.Serializer):
    """A pending ride plus its distance from the driver"""
    ride = RideSerializer(read_only=True)
    distance_meters = serializers.FloatField(read_only=True, allow_null=True)
    distance_text = serializers.SerializerMethodField()

    def get_distance_text(self, obj):
        if obj.distance_meters is None:
            return "N/A"
        return f"{obj.distance_meters / 1000:.1f} km"


class RideCreateSerializer(serializers.Serializer):
    """Serializer for ride requests. Presence of the destination is checked by the service."""
    pickup_latitude = serializers.FloatField()
    pickup_longitude = serializers.FloatField()
    destination_latitude = serializers.FloatField(required=False, allow_null=True)
    destination_longitude = serializers.FloatField(required=False, allow_null=True)
    destination_address = serializers.CharField(required=False, allow_blank=True, default="")


class LocationSerializer(serializers.Serializer):
    """Driver position sample"""
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)


def ride_to_row(ride: Ride) -> dict:
    """Plain dict form of a ride, safe to hand to the channel layer."""
    return dict(RideSerializer(ride).data)
