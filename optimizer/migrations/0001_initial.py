# Generated manually for optimization runs and the autopilot queue

import uuid

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('sites', '0001_initial'),
        ('seo', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='OptimizationRun',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('mode', models.CharField(choices=[('full', 'Full'), ('quick', 'Quick')], default='full', max_length=10)),
                ('status', models.CharField(choices=[('running', 'Running'), ('completed', 'Completed'), ('error', 'Error')], default='running', max_length=20)),
                ('results', models.JSONField(blank=True, default=dict)),
                ('recommendations_generated', models.IntegerField(default=0)),
                ('auto_applied', models.IntegerField(default=0)),
                ('alerts_raised', models.IntegerField(default=0)),
                ('ai_model', models.CharField(blank=True, max_length=100)),
                ('error_message', models.TextField(blank=True, null=True)),
                ('started_at', models.DateTimeField()),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('site', models.ForeignKey(db_constraint=False, on_delete=django.db.models.deletion.CASCADE, related_name='optimization_runs', to='sites.site')),
            ],
            options={
                'db_table': 'optimization_runs',
                'ordering': ['-started_at'],
                'indexes': [
                    models.Index(fields=['site', 'status'], name='opt_runs_site_status_idx'),
                    models.Index(fields=['site', '-started_at'], name='opt_runs_site_started_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AutopilotSettings',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('enabled', models.BooleanField(default=False)),
                ('allowed_change_types', models.JSONField(blank=True, default=list)),
                ('confidence_threshold', models.IntegerField(default=80, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ('max_daily_changes', models.IntegerField(default=10, validators=[django.core.validators.MinValueValidator(1)])),
                ('high_traffic_threshold', models.IntegerField(default=1000, help_text='Impressions per week', validators=[django.core.validators.MinValueValidator(0)])),
                ('auto_revert_threshold', models.IntegerField(default=20, help_text='Percent metric drop that triggers a rollback', validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(100)])),
                ('notify_on_apply', models.BooleanField(default=True)),
                ('notify_on_revert', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('site', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='autopilot_settings', to='sites.site')),
            ],
            options={
                'db_table': 'autopilot_settings',
                'verbose_name_plural': 'autopilot settings',
            },
        ),
        migrations.CreateModel(
            name='QueueItem',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('change_type', models.CharField(max_length=30)),
                ('field', models.CharField(max_length=50)),
                ('old_value', models.TextField(blank=True)),
                ('suggested_value', models.TextField()),
                ('ai_confidence', models.IntegerField(validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ('ai_reasoning', models.TextField(blank=True)),
                ('is_high_traffic', models.BooleanField(default=False)),
                ('requires_approval', models.BooleanField(default=False)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('approved', 'Approved'), ('rejected', 'Rejected'), ('applied', 'Applied'), ('reverted', 'Reverted')], default='pending', max_length=20)),
                ('approved_by', models.CharField(blank=True, max_length=255, null=True)),
                ('approved_at', models.DateTimeField(blank=True, null=True)),
                ('rejected_at', models.DateTimeField(blank=True, null=True)),
                ('applied_by', models.CharField(blank=True, max_length=255, null=True)),
                ('applied_at', models.DateTimeField(blank=True, null=True)),
                ('baseline_clicks', models.IntegerField(blank=True, null=True)),
                ('monitor_until', models.DateTimeField(blank=True, null=True)),
                ('reverted_at', models.DateTimeField(blank=True, null=True)),
                ('revert_reason', models.TextField(blank=True, null=True)),
                ('last_error', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('page', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='autopilot_queue', to='seo.page')),
                ('recommendation', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='queue_items', to='seo.recommendation')),
                ('run', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='queue_items', to='optimizer.optimizationrun')),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='autopilot_queue', to='sites.site')),
            ],
            options={
                'db_table': 'autopilot_queue',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['site', 'status'], name='autopilot_q_site_status_idx'),
                    models.Index(fields=['status', 'monitor_until'], name='autopilot_q_monitor_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('recommendation__isnull', False)), fields=('recommendation',), name='uniq_queue_item_recommendation'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AutopilotDailyCounter',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('day', models.DateField()),
                ('applied_count', models.IntegerField(default=0)),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='autopilot_daily_counters', to='sites.site')),
            ],
            options={
                'db_table': 'autopilot_daily_counters',
                'unique_together': {('site', 'day')},
            },
        ),
    ]
