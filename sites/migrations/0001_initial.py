# Generated manually for Site and SiteKnowledge

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
            name='Site',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('url', models.URLField(help_text='Base URL of the site')),
                ('is_active', models.BooleanField(default=True)),
                ('last_synced_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('business_type', models.CharField(blank=True, choices=[('local_service', 'Local/Service Business'), ('ecommerce', 'E-Commerce'), ('content_blog', 'Content/Blog'), ('saas', 'SaaS/Software'), ('other', 'Other')], help_text='Type of business', max_length=50, null=True)),
                ('primary_services', models.JSONField(blank=True, default=list, help_text='List of main services/products the business offers')),
                ('service_areas', models.JSONField(blank=True, default=list, help_text='List of geographic areas served (for local businesses)')),
                ('business_description', models.TextField(blank=True, help_text='Brief description of the business')),
                ('gsc_site_url', models.URLField(blank=True, help_text='GSC property URL (e.g., https://example.com/)', null=True)),
                ('gsc_access_token', models.TextField(blank=True, help_text='GSC OAuth access token', null=True)),
                ('gsc_refresh_token', models.TextField(blank=True, help_text='GSC OAuth refresh token', null=True)),
                ('gsc_token_expires_at', models.DateTimeField(blank=True, help_text='When the access token expires', null=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='sites', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'sites',
                'ordering': ['-created_at'],
                'unique_together': {('user', 'url')},
            },
        ),
        migrations.CreateModel(
            name='SiteKnowledge',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('business_profile', models.JSONField(blank=True, default=dict, help_text='Business name, industry, services, audience, brand voice')),
                ('last_trained_at', models.DateTimeField(blank=True, null=True)),
                ('training_status', models.CharField(choices=[('not_started', 'Not Started'), ('in_progress', 'In Progress'), ('completed', 'Completed'), ('needs_refresh', 'Needs Refresh')], default='not_started', max_length=20)),
                ('retrain_requested_at', models.DateTimeField(blank=True, null=True)),
                ('pages_analyzed', models.IntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('site', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='knowledge', to='sites.site')),
            ],
            options={
                'db_table': 'site_knowledge',
            },
        ),
    ]
