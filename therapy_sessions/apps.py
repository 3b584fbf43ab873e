from django.apps import AppConfig


class TherapySessionsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'therapy_sessions'
    verbose_name = 'Therapy sessions'
