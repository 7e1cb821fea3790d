from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from rest_framework import serializers

from config.exceptions import NotFoundError
from .models import Doctor, Availability, Slot

User = get_user_model()


class AvailabilitySerializer(serializers.ModelSerializer):
    day_name = serializers.CharField(source='get_day_of_week_display', read_only=True)

    class Meta:
        model = Availability
        fields = ['id', 'day_of_week', 'day_name', 'start_time', 'end_time', 'is_active']

    def validate(self, attrs):
        start_time = attrs.get('start_time')
        end_time = attrs.get('end_time')
        if start_time and end_time and end_time <= start_time:
            raise serializers.ValidationError({'end_time': 'End time must be after start time'})
        return attrs


class DoctorSerializer(serializers.ModelSerializer):
    availability = AvailabilitySerializer(source='availabilities', many=True, read_only=True)

    class Meta:
        model = Doctor
        fields = ['id', 'user', 'name', 'specialization', 'email', 'availability', 'created_at']


class DoctorSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Doctor
        fields = ['id', 'name', 'specialization', 'email']


class DoctorCreateSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()
    name = serializers.CharField(max_length=200)
    specialization = serializers.CharField(max_length=100)
    email = serializers.EmailField()
    availability = AvailabilitySerializer(many=True, required=False)

    def validate_user_id(self, value):
        user = User.objects.filter(pk=value).first()
        if user is None:
            raise NotFoundError('User not found')
        if Doctor.objects.filter(user=user).exists():
            raise serializers.ValidationError('Doctor profile already exists for this user')
        return value

    def create(self, validated_data):
        windows = validated_data.pop('availability', [])

        with transaction.atomic():
            doctor = Doctor.objects.create(
                user_id=validated_data.pop('user_id'),
                **validated_data
            )
            Availability.objects.bulk_create(
                Availability(doctor=doctor, **window) for window in windows
            )

        return doctor


class SlotSerializer(serializers.ModelSerializer):
    doctor_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Slot
        fields = ['id', 'doctor_id', 'date', 'start_time', 'end_time', 'status', 'timezone']


class GenerateSlotsSerializer(serializers.Serializer):
    doctor_id = serializers.IntegerField()
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    slot_duration_minutes = serializers.IntegerField(required=False, min_value=1, max_value=480)
    timezone = serializers.RegexField(
        r'^[A-Za-z_]+(/[A-Za-z_]+)*$',
        max_length=64,
        error_messages={'invalid': 'Invalid timezone format'},
    )

    def validate_doctor_id(self, value):
        doctor = Doctor.objects.filter(pk=value).first()
        if doctor is None:
            raise NotFoundError('Doctor not found')
        return value

    def validate(self, attrs):
        start_date, end_date = attrs['start_date'], attrs['end_date']
        if end_date < start_date:
            raise serializers.ValidationError({'end_date': 'end_date must be after or equal to start_date'})
        if (end_date - start_date).days + 1 > settings.SLOT_GENERATION_MAX_DAYS:
            raise serializers.ValidationError(
                {'end_date': f'Range cannot exceed {settings.SLOT_GENERATION_MAX_DAYS} days'}
            )
        return attrs
