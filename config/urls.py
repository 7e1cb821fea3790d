# config/urls.py
from django.contrib import admin
from django.urls import path, include
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response


@api_view(['GET'])
@permission_classes([AllowAny])
def health_check(request):
    return Response({
        'status': 'healthy',
        'message': 'DocSlot API is running'
    })


@api_view(['GET'])
@permission_classes([AllowAny])
def api_root(request):
    return Response({
        'message': 'Welcome to DocSlot API',
        'version': '1.0.0',
        'endpoints': {
            'auth': '/api/auth/',
            'doctors': '/api/doctors/',
            'slots': '/api/slots/',
            'bookings': '/api/bookings/',
        }
    })


urlpatterns = [
    # Admin
    path('admin/', admin.site.urls),

    # API Routes
    path('api/', api_root, name='api-root'),
    path('api/auth/', include('accounts.urls')),
    path('api/doctors/', include('doctors.urls')),
    path('api/slots/', include('doctors.slot_urls')),
    path('api/bookings/', include('bookings.urls')),

    # Health check
    path('health/', health_check, name='health-check'),
]
