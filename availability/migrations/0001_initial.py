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
            name='WeeklySchedule',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('template_name', models.CharField(default='primary', max_length=100)),
                ('weekly_availability', models.JSONField(default=dict)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('therapist', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='weekly_schedules', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'constraints': [models.UniqueConstraint(fields=('therapist', 'template_name'), name='unique_therapist_template_name')],
            },
        ),
        migrations.CreateModel(
            name='AvailabilityTemplate',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('day_of_week', models.PositiveSmallIntegerField(choices=[(0, 'Sunday'), (1, 'Monday'), (2, 'Tuesday'), (3, 'Wednesday'), (4, 'Thursday'), (5, 'Friday'), (6, 'Saturday')], help_text='Day of week (0=Sunday, 6=Saturday)')),
                ('start_time', models.TimeField()),
                ('end_time', models.TimeField()),
                ('session_duration', models.PositiveIntegerField(default=45)),
                ('session_type', models.CharField(choices=[('individual', 'Individual'), ('group', 'Group'), ('consultation', 'Consultation')], default='individual', max_length=20)),
                ('max_sessions', models.PositiveIntegerField(default=1)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('therapist', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='availability_templates', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['day_of_week', 'start_time'],
                'indexes': [models.Index(fields=['therapist', 'day_of_week'], name='template_therapist_day_idx')],
            },
        ),
        migrations.CreateModel(
            name='AvailabilityOverride',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('override_date', models.DateField()),
                ('is_available', models.BooleanField(default=False, help_text='False blocks the whole day; True replaces it with start_time-end_time')),
                ('start_time', models.TimeField(blank=True, null=True)),
                ('end_time', models.TimeField(blank=True, null=True)),
                ('session_duration', models.PositiveIntegerField(default=60)),
                ('session_type', models.CharField(choices=[('individual', 'Individual'), ('group', 'Group'), ('consultation', 'Consultation')], default='individual', max_length=20)),
                ('max_sessions', models.PositiveIntegerField(default=1)),
                ('reason', models.CharField(blank=True, default='', max_length=255)),
                ('notes', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('therapist', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='availability_overrides', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['override_date'],
                'constraints': [models.UniqueConstraint(fields=('therapist', 'override_date'), name='unique_therapist_override_date')],
            },
        ),
    ]
