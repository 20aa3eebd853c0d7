from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from accounts.permissions import IsDriver, IsRider
from services.ride_management import ride_lifecycle
from services.session import Session
from .serializers import (
    RankedRideSerializer,
    RideCreateSerializer,
    RideSerializer,
    LocationSerializer,
)

# HTTP status per ride error code
ERROR_STATUS = {
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "precondition_failed": status.HTTP_409_CONFLICT,
    "settlement_error": status.HTTP_402_PAYMENT_REQUIRED,
    "transport_error": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _error_response(result):
    body = {"error": result.message, "code": result.error_code}
    if result.error_code == "precondition_failed":
        # Client should drop its local copy and refetch
        body["refresh"] = True
    elif result.error_code == "transport_error":
        body["retryable"] = True
    return Response(body, status=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST))


def _ride_response(result, status_code=status.HTTP_200_OK):
    if not result.success:
        return _error_response(result)
    return Response(
        {**RideSerializer(result.ride).data, "message": result.message},
        status=status_code,
    )


# ==================== Rider Ride APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated, IsRider])
def create_ride(request):
    """Create a new ride request (rider books a ride)"""
    serializer = RideCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    destination = None
    if data.get("destination_latitude") is not None or data.get("destination_longitude") is not None:
        destination = (data.get("destination_latitude"), data.get("destination_longitude"))

    result = ride_lifecycle.create_ride(
        Session.from_user(request.user),
        pickup=(data["pickup_latitude"], data["pickup_longitude"]),
        destination=destination,
        destination_address=data.get("destination_address", ""),
    )
    return _ride_response(result, status_code=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsRider])
def my_rides(request):
    """
    Rider's bookings, newest first (POLLING ENDPOINT)

    The app polls this every 15 seconds and also refetches it on every
    realtime change; each response replaces the whole list.
    """
    result = ride_lifecycle.list_rider_rides(Session.from_user(request.user))
    if not result.success:
        return _error_response(result)

    serialized = RideSerializer(result.rides, many=True).data
    return Response({"count": len(serialized), "rides": serialized})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsRider])
def cancel_ride(request, ride_id):
    """Cancel ride by rider (pending rides only)"""
    result = ride_lifecycle.cancel_ride(Session.from_user(request.user), ride_id)
    return _ride_response(result)


# ==================== Driver Ride APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def available_rides(request):
    """
    Pending rides ranked by distance from the driver's current position.

    Body: {"latitude": ..., "longitude": ...}
    """
    serializer = LocationSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    result = ride_lifecycle.list_available_rides(
        Session.from_user(request.user),
        serializer.validated_data["latitude"],
        serializer.validated_data["longitude"],
    )
    if not result.success:
        return _error_response(result)

    serialized = RankedRideSerializer(result.rides, many=True).data
    return Response({"count": len(serialized), "rides": serialized})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsDriver])
def current_ride(request):
    """Driver's ride in progress, if any"""
    result = ride_lifecycle.get_current_driver_ride(Session.from_user(request.user))
    if not result.success:
        return _error_response(result)
    if result.ride is None:
        return Response({"has_active_ride": False, "message": "No active ride"})

    return Response({"has_active_ride": True, "ride": RideSerializer(result.ride).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def accept_ride(request, ride_id):
    """Driver accepts a pending ride"""
    result = ride_lifecycle.accept_ride(Session.from_user(request.user), ride_id)
    return _ride_response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def complete_ride(request, ride_id):
    """Driver completes a ride; the rider's wallet is charged the ride price"""
    result = ride_lifecycle.complete_ride(Session.from_user(request.user), ride_id)
    return _ride_response(result)
