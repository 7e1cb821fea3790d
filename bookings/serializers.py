from rest_framework import serializers

from accounts.serializers import UserSummarySerializer
from doctors.serializers import DoctorSummarySerializer, SlotSerializer
from .models import Booking


class BookingSerializer(serializers.ModelSerializer):
    """Booking with its user, doctor and slot expanded for display"""

    user = UserSummarySerializer(read_only=True)
    doctor = DoctorSummarySerializer(read_only=True)
    slot = SlotSerializer(read_only=True)

    class Meta:
        model = Booking
        fields = [
            'id',
            'user',
            'doctor',
            'slot',
            'status',
            'cancellation_reason',
            'created_at',
            'updated_at',
        ]


class CreateBookingSerializer(serializers.Serializer):
    slot_id = serializers.IntegerField()


class CancelBookingSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True)


class RescheduleBookingSerializer(serializers.Serializer):
    new_slot_id = serializers.IntegerField()
