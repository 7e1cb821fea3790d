import django_filters

from .models import Slot


class SlotFilter(django_filters.FilterSet):
    doctor_id = django_filters.NumberFilter(field_name='doctor_id')
    date = django_filters.DateFilter(field_name='date')
    start_date = django_filters.DateFilter(field_name='date', lookup_expr='gte')
    end_date = django_filters.DateFilter(field_name='date', lookup_expr='lte')

    class Meta:
        model = Slot
        fields = ['doctor_id', 'date', 'start_date', 'end_date']
