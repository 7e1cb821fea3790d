from django.contrib import admin
from .models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    """Read-only view; bookings change only through the booking endpoints."""

    list_display = ['id', 'user', 'doctor', 'slot', 'status', 'created_at']
    list_filter = ['status']
    search_fields = ['user__email', 'doctor__name']
    readonly_fields = ['user', 'doctor', 'slot', 'status', 'cancellation_reason', 'created_at', 'updated_at']

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
