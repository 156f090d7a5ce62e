import django.core.validators
import django.db.models.deletion
from django.db import migrations, models

import scheduling.models


HHMM = django.core.validators.RegexValidator(
    message='Enter a time in HH:MM format.',
    regex='^([01]\\d|2[0-3]):[0-5]\\d$',
)
YYYYMMDD = django.core.validators.RegexValidator(
    message='Enter a date in YYYY-MM-DD format.',
    regex='^\\d{4}-\\d{2}-\\d{2}$',
)


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Branch',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('working_days', models.JSONField(default=scheduling.models.default_working_days, help_text='Operable weekdays (0=Sunday, 6=Saturday)')),
                ('operating_hours_start', models.CharField(default='06:00', max_length=5, validators=[HHMM])),
                ('operating_hours_end', models.CharField(default='21:00', max_length=5, validators=[HHMM])),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['name'],
                'verbose_name_plural': 'branches',
            },
        ),
        migrations.CreateModel(
            name='Client',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('first_name', models.CharField(max_length=100)),
                ('last_name', models.CharField(blank=True, default='', max_length=100)),
                ('phone_number', models.CharField(blank=True, default='', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('branch', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='clients', to='scheduling.branch')),
            ],
            options={
                'ordering': ['first_name', 'last_name'],
            },
        ),
        migrations.CreateModel(
            name='Vehicle',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('registration_number', models.CharField(blank=True, default='', max_length=20)),
                ('is_active', models.BooleanField(default=True)),
                ('branch', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='vehicles', to='scheduling.branch')),
            ],
            options={
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Plan',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('joining_date', models.DateField()),
                ('joining_time', models.CharField(help_text='Daily session start time (HH:MM)', max_length=5, validators=[HHMM])),
                ('number_of_sessions', models.PositiveIntegerField()),
                ('session_duration_minutes', models.PositiveIntegerField(default=30)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('branch', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='plans', to='scheduling.branch')),
                ('client', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='plans', to='scheduling.client')),
                ('vehicle', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='plans', to='scheduling.vehicle')),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='Session',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('session_number', models.PositiveIntegerField(help_text='Position of this session in the plan (1-based)')),
                ('session_date', models.CharField(max_length=10, validators=[YYYYMMDD])),
                ('start_time', models.CharField(max_length=5, validators=[HHMM])),
                ('end_time', models.CharField(max_length=5, validators=[HHMM])),
                ('status', models.CharField(choices=[('SCHEDULED', 'Scheduled'), ('IN_PROGRESS', 'In Progress'), ('COMPLETED', 'Completed'), ('CANCELLED', 'Cancelled'), ('NO_SHOW', 'No Show'), ('RESCHEDULED', 'Rescheduled')], default='SCHEDULED', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('branch', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='sessions', to='scheduling.branch')),
                ('client', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='sessions', to='scheduling.client')),
                ('plan', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='sessions', to='scheduling.plan')),
                ('vehicle', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='sessions', to='scheduling.vehicle')),
            ],
            options={
                'ordering': ['session_date', 'start_time'],
                'indexes': [
                    models.Index(fields=['session_date', 'status', 'vehicle'], name='sess_date_status_vehicle_idx'),
                    models.Index(fields=['client', 'session_number'], name='sess_client_number_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('plan', 'session_number'), name='unique_session_number_per_plan'),
                    models.UniqueConstraint(condition=models.Q(('status', 'CANCELLED'), _negated=True), fields=('vehicle', 'session_date', 'start_time'), name='unique_active_vehicle_slot'),
                ],
            },
        ),
    ]
