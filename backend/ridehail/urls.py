from django.contrib import admin
from django.urls import path, include

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check), # Health check endpoint

    # Wallet endpoints (at /api/wallet/)
    path('api/wallet/', include('accounts.urls')),

    # Rides endpoints (at /api/rides/)
    path('api/rides/', include('rides.urls')),
]
