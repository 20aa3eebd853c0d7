"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin
from .models import Ride


@admin.register(Ride)
class RideAdmin(admin.ModelAdmin):
    """Ride admin (read-only: transitions go through the lifecycle service)"""
    list_display = ['id', 'rider', 'driver', 'status', 'price', 'distance_km', 'created_at', 'accepted_at', 'completed_at']
    list_filter = ['status', 'created_at']
    search_fields = ['rider__username', 'rider_email', 'driver__username', 'destination_address']
    date_hierarchy = 'created_at'

    def has_change_permission(self, request, obj=None):
        return False
