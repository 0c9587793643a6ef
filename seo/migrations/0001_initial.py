# Generated manually for pages, tracked keywords, recommendations and alerts

import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('sites', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Page',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('wp_post_id', models.IntegerField(blank=True, help_text='WordPress post/page ID', null=True)),
                ('url', models.URLField(max_length=2048)),
                ('title', models.CharField(max_length=500)),
                ('status', models.CharField(choices=[('publish', 'Published'), ('draft', 'Draft'), ('private', 'Private')], default='publish', max_length=20)),
                ('yoast_title', models.CharField(blank=True, max_length=500)),
                ('yoast_description', models.TextField(blank=True)),
                ('h1_text', models.CharField(blank=True, max_length=500)),
                ('clicks_28d', models.IntegerField(default=0)),
                ('clicks_prev_28d', models.IntegerField(blank=True, null=True)),
                ('impressions_28d', models.IntegerField(default=0)),
                ('impressions_7d', models.IntegerField(default=0)),
                ('avg_position', models.FloatField(blank=True, null=True)),
                ('is_decaying', models.BooleanField(default=False)),
                ('decay_severity', models.CharField(blank=True, choices=[('critical', 'Critical'), ('high', 'High'), ('medium', 'Medium')], max_length=20, null=True)),
                ('decay_detected_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='pages', to='sites.site')),
            ],
            options={
                'db_table': 'pages',
                'ordering': ['-clicks_28d'],
                'indexes': [
                    models.Index(fields=['site', 'status'], name='pages_site_id_status_idx'),
                    models.Index(fields=['site', '-clicks_28d'], name='pages_site_clicks_idx'),
                    models.Index(fields=['site', 'is_decaying'], name='pages_site_decaying_idx'),
                    models.Index(fields=['url'], name='pages_url_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='TrackedKeyword',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('keyword', models.CharField(max_length=255)),
                ('current_position', models.FloatField(blank=True, null=True)),
                ('previous_position', models.FloatField(blank=True, null=True)),
                ('best_position', models.FloatField(blank=True, null=True)),
                ('clicks', models.IntegerField(default=0)),
                ('impressions', models.IntegerField(default=0)),
                ('is_active', models.BooleanField(default=True)),
                ('last_checked_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('page', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='tracked_keywords', to='seo.page')),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='tracked_keywords', to='sites.site')),
            ],
            options={
                'db_table': 'tracked_keywords',
                'unique_together': {('site', 'keyword')},
                'indexes': [
                    models.Index(fields=['site', 'is_active'], name='tracked_kw_site_active_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Recommendation',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('page_url', models.CharField(blank=True, max_length=2048)),
                ('category', models.CharField(choices=[('title', 'Title'), ('meta', 'Meta'), ('content', 'Content'), ('technical', 'Technical'), ('keyword', 'Keyword')], max_length=20)),
                ('priority', models.CharField(choices=[('critical', 'Critical'), ('high', 'High'), ('medium', 'Medium'), ('low', 'Low')], default='medium', max_length=20)),
                ('title', models.CharField(max_length=500)),
                ('description', models.TextField(blank=True)),
                ('field_name', models.CharField(blank=True, help_text='Change type the suggestion rewrites (title, meta_description, h1, schema)', max_length=50)),
                ('current_value', models.TextField(blank=True)),
                ('suggested_value', models.TextField(blank=True)),
                ('confidence', models.IntegerField(blank=True, help_text='AI confidence, 0-100', null=True)),
                ('impact_score', models.IntegerField(blank=True, help_text='Estimated impact, 1-10', null=True)),
                ('auto_fixable', models.BooleanField(default=False)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('auto_approved', 'Auto Approved'), ('applied', 'Applied'), ('rejected', 'Rejected'), ('dismissed', 'Dismissed')], default='pending', max_length=20)),
                ('ai_model', models.CharField(blank=True, max_length=100)),
                ('generated_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('reviewed_at', models.DateTimeField(blank=True, null=True)),
                ('page', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='recommendations', to='seo.page')),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='recommendations', to='sites.site')),
            ],
            options={
                'db_table': 'seo_recommendations',
                'ordering': ['-generated_at'],
                'indexes': [
                    models.Index(fields=['site', 'status'], name='seo_rec_site_status_idx'),
                    models.Index(fields=['site', 'priority'], name='seo_rec_site_priority_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('site', 'page', 'title'), name='uniq_recommendation_page_title'),
                    models.UniqueConstraint(condition=models.Q(('page__isnull', True)), fields=('site', 'title'), name='uniq_recommendation_sitewide_title'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Alert',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('alert_type', models.CharField(max_length=50)),
                ('severity', models.CharField(choices=[('critical', 'Critical'), ('high', 'High'), ('medium', 'Medium'), ('low', 'Low'), ('warning', 'Warning'), ('info', 'Info')], max_length=20)),
                ('title', models.CharField(max_length=255)),
                ('message', models.TextField(blank=True)),
                ('data', models.JSONField(blank=True, default=dict)),
                ('status', models.CharField(choices=[('active', 'Active'), ('resolved', 'Resolved')], default='active', max_length=20)),
                ('triggered_at', models.DateTimeField(auto_now_add=True)),
                ('resolved_at', models.DateTimeField(blank=True, null=True)),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='alerts', to='sites.site')),
            ],
            options={
                'db_table': 'seo_alerts',
                'ordering': ['-triggered_at'],
                'indexes': [
                    models.Index(fields=['site', 'status'], name='seo_alerts_site_status_idx'),
                    models.Index(fields=['site', 'alert_type'], name='seo_alerts_site_type_idx'),
                ],
            },
        ),
    ]
