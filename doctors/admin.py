from django.contrib import admin, messages

from config.exceptions import ConflictError
from .models import Doctor, Availability, Slot
from .services import delete_slot


class AvailabilityInline(admin.TabularInline):
    model = Availability
    extra = 0


@admin.register(Doctor)
class DoctorAdmin(admin.ModelAdmin):
    list_display = ['name', 'specialization', 'email']
    search_fields = ['name', 'email']
    inlines = [AvailabilityInline]


@admin.register(Slot)
class SlotAdmin(admin.ModelAdmin):
    """Slot status only changes through the booking engine and the block/delete endpoints."""

    list_display = ['doctor', 'date', 'start_time', 'end_time', 'status']
    list_filter = ['status', 'date']
    readonly_fields = ['status']

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.bookings.active().exists():
            return False
        return super().has_delete_permission(request, obj)

    def delete_model(self, request, obj):
        delete_slot(obj.pk)

    def delete_queryset(self, request, queryset):
        for slot in queryset:
            try:
                delete_slot(slot.pk)
            except ConflictError as exc:
                self.message_user(request, f'{slot}: {exc.detail}', messages.WARNING)
