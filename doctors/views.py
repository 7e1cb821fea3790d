import logging

from rest_framework import generics, status
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsAdmin, IsAdminOrUser
from .filters import SlotFilter
from .models import Doctor, Slot
from .serializers import (
    DoctorSerializer, DoctorCreateSerializer, SlotSerializer, GenerateSlotsSerializer,
)
from .services import generate_slots, block_slot, delete_slot

logger = logging.getLogger(__name__)


class DoctorListCreateView(generics.ListCreateAPIView):
    queryset = Doctor.objects.prefetch_related('availabilities').order_by('name', 'id')

    def get_permissions(self):
        if self.request.method == 'POST':
            return [IsAdmin()]
        return [IsAdminOrUser()]

    def get_serializer_class(self):
        if self.request.method == 'POST':
            return DoctorCreateSerializer
        return DoctorSerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        doctor = serializer.save()
        logger.info('Created doctor %s for user %s', doctor.pk, doctor.user_id)

        return Response({
            'message': 'Doctor created successfully',
            'doctor': DoctorSerializer(doctor).data,
        }, status=status.HTTP_201_CREATED)


class DoctorDetailView(generics.RetrieveAPIView):
    queryset = Doctor.objects.prefetch_related('availabilities')
    serializer_class = DoctorSerializer
    permission_classes = [IsAdminOrUser]


class GenerateSlotsView(APIView):
    """Generate slots for one doctor over a date range from their weekly availability"""

    permission_classes = [IsAdmin]

    def post(self, request):
        serializer = GenerateSlotsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        doctor = Doctor.objects.get(pk=data['doctor_id'])
        created_count = generate_slots(
            doctor,
            data['start_date'],
            data['end_date'],
            data.get('slot_duration_minutes'),
            data['timezone'],
        )

        return Response({
            'message': f'Generated {created_count} slots',
            'created_count': created_count,
        }, status=status.HTTP_201_CREATED)


class AvailableSlotsView(generics.ListAPIView):
    serializer_class = SlotSerializer
    permission_classes = [IsAdminOrUser]
    filterset_class = SlotFilter
    pagination_class = None

    def get_queryset(self):
        return Slot.objects.filter(status=Slot.Status.AVAILABLE).order_by('date', 'start_time')


class DoctorSlotsView(generics.ListAPIView):
    serializer_class = SlotSerializer
    permission_classes = [IsAdminOrUser]
    pagination_class = None

    def get_queryset(self):
        queryset = Slot.objects.filter(doctor_id=self.kwargs['doctor_id'])

        slot_status = self.request.query_params.get('status')
        if slot_status:
            if slot_status not in Slot.Status.values:
                raise ValidationError({'status': [f'Invalid status: {slot_status}']})
            queryset = queryset.filter(status=slot_status)

        return queryset.order_by('date', 'start_time')


class BlockSlotView(APIView):
    permission_classes = [IsAdmin]

    def patch(self, request, pk):
        slot = block_slot(pk)
        return Response({
            'message': 'Slot blocked successfully',
            'slot': SlotSerializer(slot).data,
        })


class DeleteSlotView(APIView):
    permission_classes = [IsAdmin]

    def delete(self, request, pk):
        delete_slot(pk)
        return Response({'message': 'Slot deleted successfully'})
