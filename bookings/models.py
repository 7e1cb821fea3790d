from django.conf import settings
from django.db import models
from django.db.models import Q


class BookingQuerySet(models.QuerySet):
    def active(self):
        return self.filter(status__in=Booking.ACTIVE_STATUSES)


class Booking(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        CONFIRMED = 'confirmed', 'Confirmed'
        CANCELLED = 'cancelled', 'Cancelled'
        COMPLETED = 'completed', 'Completed'
        EXPIRED = 'expired', 'Expired'

    # Statuses that hold the slot; at most one such booking per slot.
    ACTIVE_STATUSES = [Status.PENDING, Status.CONFIRMED]

    ALLOWED_TRANSITIONS = {
        Status.PENDING: {Status.CONFIRMED, Status.CANCELLED, Status.COMPLETED, Status.EXPIRED},
        Status.CONFIRMED: {Status.CANCELLED, Status.COMPLETED, Status.EXPIRED},
        Status.CANCELLED: set(),
        Status.COMPLETED: set(),
        Status.EXPIRED: set(),
    }

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='bookings'
    )
    doctor = models.ForeignKey(
        'doctors.Doctor',
        on_delete=models.CASCADE,
        related_name='bookings'
    )
    # Nulled when an admin deletes a slot that only historical bookings reference.
    slot = models.ForeignKey(
        'doctors.Slot',
        on_delete=models.SET_NULL,
        related_name='bookings',
        null=True,
        blank=True
    )
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.CONFIRMED)
    cancellation_reason = models.TextField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = BookingQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['slot'],
                condition=Q(status__in=['pending', 'confirmed']),
                name='unique_active_booking_per_slot',
            ),
        ]

    def __str__(self):
        return f"Booking #{self.pk} - {self.user.email} ({self.status})"

    @property
    def is_active(self):
        return self.status in self.ACTIVE_STATUSES

    def can_transition_to(self, new_status):
        return new_status in self.ALLOWED_TRANSITIONS[self.Status(self.status)]

    @classmethod
    def statuses_leading_to(cls, new_status):
        """Statuses from which the table allows moving to ``new_status``."""
        return [status for status, targets in cls.ALLOWED_TRANSITIONS.items() if new_status in targets]
