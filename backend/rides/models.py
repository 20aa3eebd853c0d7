from django.db import models
from django.db.models import Q
from django.conf import settings


class Ride(models.Model):
    """A single transport request from pickup to destination."""

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        ACCEPTED = 'accepted', 'Accepted'
        # Valid state, but nothing transitions into it yet
        IN_PROGRESS = 'in_progress', 'In Progress'
        COMPLETED = 'completed', 'Completed'
        CANCELLED = 'cancelled', 'Cancelled'

    # Statuses in which a driver must be assigned
    DRIVER_STATUSES = (Status.ACCEPTED, Status.IN_PROGRESS, Status.COMPLETED)

    # Written once at insert, never touched by updates
    IMMUTABLE_FIELDS = frozenset({
        'rider', 'rider_id', 'rider_email', 'price', 'distance_km',
        'pickup_latitude', 'pickup_longitude',
        'destination_latitude', 'destination_longitude', 'destination_address',
        'created_at',
    })

    # Owner
    rider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='rides'
    )
    rider_email = models.EmailField(blank=True)

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='driven_rides'
    )

    # Pickup location
    pickup_latitude = models.FloatField()
    pickup_longitude = models.FloatField()

    # Destination
    destination_latitude = models.FloatField()
    destination_longitude = models.FloatField()
    destination_address = models.TextField(blank=True, default='Unknown address')

    # Computed at creation from pickup/destination
    distance_km = models.FloatField()
    price = models.DecimalField(max_digits=12, decimal_places=2)

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'rides'
        ordering = ['-created_at', '-id']
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(driver__isnull=False, status__in=['accepted', 'in_progress', 'completed'])
                    | Q(driver__isnull=True, status__in=['pending', 'cancelled'])
                ),
                name='ride_driver_matches_status',
            ),
        ]

    def __str__(self):
        return f"Ride #{self.id} - {self.rider_email or self.rider_id} - {self.status}"

    @property
    def pickup(self):
        return (self.pickup_latitude, self.pickup_longitude)

    @property
    def destination(self):
        return (self.destination_latitude, self.destination_longitude)
