"""
URL routing for sessions and session notes.
"""

from django.urls import path
from .views import (
    AiSoapNotesView,
    ProcessSessionView,
    RecordingReadyWebhookView,
    SessionBookView,
    SessionCompleteView,
    SessionDetailView,
    SessionListView,
    SoapNotesView,
    TranscribeView,
)

urlpatterns = [
    path('sessions/', SessionListView.as_view(), name='session-list'),
    path('sessions/book/', SessionBookView.as_view(), name='session-book'),
    path('sessions/soap-notes/', SoapNotesView.as_view(), name='session-soap-notes'),
    path('sessions/<int:pk>/', SessionDetailView.as_view(), name='session-detail'),
    path('sessions/<int:pk>/complete/', SessionCompleteView.as_view(), name='session-complete'),
    path('sessions/<int:pk>/ai-soap-notes/', AiSoapNotesView.as_view(), name='session-ai-soap-notes'),
    path('transcribe/', TranscribeView.as_view(), name='transcribe'),
    path('ai/process-session/', ProcessSessionView.as_view(), name='ai-process-session'),
    path('webhooks/recording-ready/', RecordingReadyWebhookView.as_view(), name='recording-ready-webhook'),
]
