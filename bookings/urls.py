from django.urls import path
from .views import (
    BookingListCreateView,
    MyBookingsView,
    CancelBookingView,
    RescheduleBookingView,
    CompleteBookingView,
    ExpirePastBookingsView,
)

urlpatterns = [
    path('', BookingListCreateView.as_view(), name='booking-list'),
    path('my-bookings/', MyBookingsView.as_view(), name='my-bookings'),
    path('expire-past/', ExpirePastBookingsView.as_view(), name='expire-past-bookings'),

    # Actions
    path('<int:pk>/cancel/', CancelBookingView.as_view(), name='cancel-booking'),
    path('<int:pk>/reschedule/', RescheduleBookingView.as_view(), name='reschedule-booking'),
    path('<int:pk>/complete/', CompleteBookingView.as_view(), name='complete-booking'),
]
