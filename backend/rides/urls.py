from django.urls import path
from . import views

app_name = 'rides'

urlpatterns = [
    # Rider APIs
    path('', views.create_ride, name='create-ride'),
    path('mine/', views.my_rides, name='my-rides'),
    path('<int:ride_id>/cancel/', views.cancel_ride, name='cancel-ride'),

    # Driver APIs
    path('available/', views.available_rides, name='available-rides'),
    path('current/', views.current_ride, name='current-ride'),
    path('<int:ride_id>/accept/', views.accept_ride, name='accept-ride'),
    path('<int:ride_id>/complete/', views.complete_ride, name='complete-ride'),
]
