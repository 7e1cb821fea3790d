from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsAdmin, IsAdminOrUser
from .models import Booking
from .serializers import (
    BookingSerializer,
    CreateBookingSerializer,
    CancelBookingSerializer,
    RescheduleBookingSerializer,
)
from .services import (
    create_booking,
    cancel_booking,
    reschedule_booking,
    complete_booking,
    expire_past_bookings,
)


class BookingListCreateView(generics.ListCreateAPIView):
    """Book a slot (admin or user); list every booking (admin only)"""

    serializer_class = BookingSerializer

    def get_permissions(self):
        if self.request.method == 'POST':
            return [IsAdminOrUser()]
        return [IsAdmin()]

    def get_queryset(self):
        return Booking.objects.select_related('user', 'doctor', 'slot')

    def create(self, request, *args, **kwargs):
        serializer = CreateBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        booking = create_booking(request.user, serializer.validated_data['slot_id'])

        return Response({
            'message': 'Booking created successfully',
            'booking': BookingSerializer(booking).data
        }, status=status.HTTP_201_CREATED)


class MyBookingsView(generics.ListAPIView):
    serializer_class = BookingSerializer
    permission_classes = [IsAdminOrUser]

    def get_queryset(self):
        return Booking.objects.filter(user=self.request.user).select_related('user', 'doctor', 'slot')


class CancelBookingView(APIView):
    permission_classes = [IsAdminOrUser]

    def patch(self, request, pk):
        serializer = CancelBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        booking = cancel_booking(pk, request.user, serializer.validated_data.get('reason'))

        return Response({
            'message': 'Booking cancelled successfully',
            'booking': BookingSerializer(booking).data
        })


class RescheduleBookingView(APIView):
    permission_classes = [IsAdminOrUser]

    def patch(self, request, pk):
        serializer = RescheduleBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        booking = reschedule_booking(pk, request.user, serializer.validated_data['new_slot_id'])

        return Response({
            'message': 'Booking rescheduled successfully',
            'booking': BookingSerializer(booking).data
        })


class CompleteBookingView(APIView):
    permission_classes = [IsAdmin]

    def patch(self, request, pk):
        booking = complete_booking(pk)

        return Response({
            'message': 'Booking marked as completed',
            'booking': BookingSerializer(booking).data
        })


class ExpirePastBookingsView(APIView):
    permission_classes = [IsAdmin]

    def patch(self, request):
        count = expire_past_bookings()

        return Response({
            'message': 'Expired past bookings successfully' if count else 'No bookings to expire',
            'count': count
        })
