from django.urls import path
from .views import (
    GenerateSlotsView,
    AvailableSlotsView,
    DoctorSlotsView,
    BlockSlotView,
    DeleteSlotView,
)

urlpatterns = [
    path('generate/', GenerateSlotsView.as_view(), name='slot-generate'),
    path('available/', AvailableSlotsView.as_view(), name='slot-available'),
    path('doctor/<int:doctor_id>/', DoctorSlotsView.as_view(), name='slot-doctor'),
    path('<int:pk>/block/', BlockSlotView.as_view(), name='slot-block'),
    path('<int:pk>/', DeleteSlotView.as_view(), name='slot-delete'),
]
