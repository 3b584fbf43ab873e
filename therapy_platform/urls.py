"""
URL configuration for therapy_platform project.
"""
from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('accounts.urls')),
    path('api/', include('availability.urls')),
    path('api/', include('therapy_sessions.urls')),
]
