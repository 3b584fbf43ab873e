import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='TherapySession',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('session_date', models.DateField()),
                ('session_time', models.TimeField()),
                ('duration_minutes', models.PositiveIntegerField(default=60)),
                ('session_type', models.CharField(choices=[('individual', 'Individual'), ('group', 'Group'), ('consultation', 'Consultation')], default='individual', max_length=20)),
                ('status', models.CharField(choices=[('scheduled', 'Scheduled'), ('confirmed', 'Confirmed'), ('in_progress', 'In progress'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='scheduled', max_length=20)),
                ('title', models.CharField(blank=True, default='', max_length=200)),
                ('notes', models.TextField(blank=True, default='')),
                ('room_url', models.URLField(blank=True, default='', max_length=500)),
                ('recording_id', models.CharField(blank=True, default='', max_length=100)),
                ('session_summary', models.TextField(blank=True, default='')),
                ('ai_notes_generated', models.BooleanField(default=False)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('therapist', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='therapist_sessions', to=settings.AUTH_USER_MODEL)),
                ('user', models.ForeignKey(help_text='The patient', on_delete=django.db.models.deletion.CASCADE, related_name='patient_sessions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['session_date', 'session_time'],
                'indexes': [
                    models.Index(fields=['therapist', 'session_date'], name='session_therapist_date_idx'),
                    models.Index(fields=['user', 'session_date'], name='session_patient_date_idx'),
                    models.Index(fields=['status'], name='session_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status__in', ['scheduled', 'confirmed', 'in_progress'])), fields=('therapist', 'session_date', 'session_time'), name='unique_active_therapist_slot'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SessionNote',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('transcript', models.TextField(blank=True, default='')),
                ('soap_subjective', models.TextField(blank=True, default='')),
                ('soap_objective', models.TextField(blank=True, default='')),
                ('soap_assessment', models.TextField(blank=True, default='')),
                ('soap_plan', models.TextField(blank=True, default='')),
                ('summary', models.TextField(blank=True, default='')),
                ('mood_rating', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(10)])),
                ('progress_notes', models.TextField(blank=True, default='')),
                ('homework_assigned', models.TextField(blank=True, default='')),
                ('next_session_focus', models.TextField(blank=True, default='')),
                ('therapeutic_insights', models.JSONField(blank=True, default=dict)),
                ('ai_generated', models.BooleanField(default=False)),
                ('provider', models.CharField(blank=True, default='', max_length=50)),
                ('is_fallback', models.BooleanField(default=False)),
                ('processing_status', models.CharField(choices=[('pending', 'Pending'), ('processing', 'Processing'), ('completed', 'Completed'), ('error', 'Error')], default='pending', max_length=20)),
                ('recording_id', models.CharField(blank=True, default='', max_length=100)),
                ('processing_time_ms', models.PositiveIntegerField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('session', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='note', to='therapy_sessions.therapysession')),
            ],
        ),
        migrations.CreateModel(
            name='SessionProcessingError',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('recording_id', models.CharField(blank=True, default='', max_length=100)),
                ('error_message', models.TextField()),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('session', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='processing_errors', to='therapy_sessions.therapysession')),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
    ]
