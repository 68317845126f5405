import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Audit',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, editable=False, help_text='When the row was written')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='When the row last changed')),
                ('url', models.URLField(help_text='Seed URL the crawl starts from', max_length=2048)),
                ('domain', models.CharField(db_index=True, help_text='Host part of the seed URL', max_length=255)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('crawling', 'Crawling'), ('analyzing', 'Analyzing'), ('completed', 'Completed'), ('failed', 'Failed')], db_index=True, default='pending', max_length=20)),
                ('max_pages', models.PositiveIntegerField(default=50, help_text='Upper bound on discovered pages')),
                ('pages_crawled', models.PositiveIntegerField(default=0)),
                ('jobs_total', models.PositiveIntegerField(default=0, help_text='Analysis units dispatched for this run')),
                ('jobs_completed', models.PositiveIntegerField(default=0)),
                ('jobs_failed', models.PositiveIntegerField(default=0)),
                ('current_step', models.CharField(blank=True, default='', max_length=255)),
                ('score', models.PositiveSmallIntegerField(blank=True, help_text='Overall score 0-100', null=True)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('error_message', models.TextField(blank=True, default='')),
                ('config', models.JSONField(blank=True, default=dict, help_text='Per-audit overrides such as checkout_paths')),
                ('run_number', models.PositiveIntegerField(default=1, help_text='Generation counter, bumped on restart so late work from an earlier run is ignored')),
                ('fanned_in_at', models.DateTimeField(blank=True, help_text='When the last unit of this run reported and aggregation was triggered', null=True)),
            ],
            options={
                'ordering': ['-created_at'],
                'abstract': False,
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('jobs_total__gte', models.F('jobs_completed') + models.F('jobs_failed'))), name='audit_job_counters_within_total'),
                    models.CheckConstraint(condition=models.Q(('score__isnull', True), ('score__lte', 100), _connector='OR'), name='audit_score_within_range'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Page',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, editable=False, help_text='When the row was written')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='When the row last changed')),
                ('url', models.URLField(max_length=2048)),
                ('position', models.PositiveIntegerField(default=0, help_text='Discovery order within the audit')),
                ('status_code', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('title', models.TextField(blank=True, default='')),
                ('meta_description', models.TextField(blank=True, default='')),
                ('h1', models.TextField(blank=True, default='')),
                ('load_time', models.FloatField(blank=True, help_text='Seconds taken to fetch the HTML', null=True)),
                ('screenshot_path', models.CharField(blank=True, default='', max_length=500)),
                ('html_excerpt', models.TextField(blank=True, default='', help_text='First 2000 characters of the HTML')),
                ('crawled_at', models.DateTimeField(blank=True, null=True)),
                ('audit', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='pages', to='audits.audit')),
            ],
            options={
                'ordering': ['position', 'created_at'],
                'constraints': [
                    models.UniqueConstraint(fields=('audit', 'url'), name='page_unique_url_per_audit'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Finding',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, editable=False, help_text='When the row was written')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='When the row last changed')),
                ('category', models.CharField(choices=[('performance', 'Performance'), ('mobile', 'Mobile'), ('seo', 'SEO'), ('checkout', 'Checkout'), ('links', 'Links'), ('accessibility', 'Accessibility')], db_index=True, max_length=20)),
                ('severity', models.CharField(choices=[('critical', 'Critical'), ('high', 'High'), ('medium', 'Medium'), ('low', 'Low'), ('info', 'Info')], db_index=True, max_length=10)),
                ('title', models.CharField(max_length=255)),
                ('description', models.TextField()),
                ('recommendation', models.TextField(blank=True, default='')),
                ('affected_element', models.TextField(blank=True, default='')),
                ('metadata', models.JSONField(blank=True, null=True)),
                ('audit', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='findings', to='audits.audit')),
                ('page', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='findings', to='audits.page')),
            ],
            options={
                'ordering': ['-created_at'],
                'abstract': False,
                'indexes': [
                    models.Index(fields=['audit', 'category'], name='audits_find_audit_cat_idx'),
                    models.Index(fields=['audit', 'severity'], name='audits_find_audit_sev_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PerformanceSample',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, editable=False, help_text='When the row was written')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='When the row last changed')),
                ('device_type', models.CharField(choices=[('mobile', 'Mobile'), ('desktop', 'Desktop')], max_length=10)),
                ('lcp', models.FloatField(blank=True, null=True)),
                ('fid', models.FloatField(blank=True, null=True)),
                ('cls', models.FloatField(blank=True, null=True)),
                ('fcp', models.FloatField(blank=True, null=True)),
                ('ttfb', models.FloatField(blank=True, null=True)),
                ('speed_index', models.FloatField(blank=True, null=True)),
                ('total_blocking_time', models.FloatField(blank=True, null=True)),
                ('performance_score', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('accessibility_score', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('seo_score', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('best_practices_score', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('raw_report', models.JSONField(blank=True, null=True)),
                ('page', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='performance_samples', to='audits.page')),
            ],
            options={
                'ordering': ['-created_at'],
                'abstract': False,
                'constraints': [
                    models.UniqueConstraint(fields=('page', 'device_type'), name='performance_sample_unique_device'),
                ],
            },
        ),
        migrations.CreateModel(
            name='CheckoutStepResult',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, editable=False, help_text='When the row was written')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='When the row last changed')),
                ('step_number', models.PositiveSmallIntegerField()),
                ('step_name', models.CharField(max_length=255)),
                ('url', models.URLField(max_length=2048)),
                ('screenshot_path', models.CharField(blank=True, default='', max_length=500)),
                ('form_fields_count', models.PositiveIntegerField(default=0)),
                ('errors', models.JSONField(blank=True, default=list)),
                ('load_time', models.PositiveIntegerField(blank=True, help_text='Milliseconds', null=True)),
                ('successful', models.BooleanField(default=False)),
                ('audit', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='checkout_steps', to='audits.audit')),
            ],
            options={
                'ordering': ['step_number'],
                'constraints': [
                    models.UniqueConstraint(fields=('audit', 'step_number'), name='checkout_step_unique_number'),
                ],
            },
        ),
        migrations.CreateModel(
            name='LinkRecord',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, editable=False, help_text='When the row was written')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='When the row last changed')),
                ('destination_url', models.TextField()),
                ('link_text', models.TextField(blank=True, default='')),
                ('link_type', models.CharField(choices=[('internal', 'Internal'), ('external', 'External'), ('asset', 'Asset')], max_length=10)),
                ('status_code', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('is_broken', models.BooleanField(db_index=True, default=False)),
                ('checked_at', models.DateTimeField(blank=True, null=True)),
                ('audit', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='link_records', to='audits.audit')),
                ('source_page', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='link_records', to='audits.page')),
            ],
            options={
                'ordering': ['-created_at'],
                'abstract': False,
                'indexes': [
                    models.Index(fields=['audit', 'is_broken'], name='audits_link_audit_broken_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='UnitOutcome',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, editable=False, help_text='When the row was written')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='When the row last changed')),
                ('run_number', models.PositiveIntegerField()),
                ('unit_key', models.CharField(max_length=255)),
                ('outcome', models.CharField(choices=[('succeeded', 'Succeeded'), ('failed', 'Failed')], max_length=10)),
                ('error', models.TextField(blank=True, default='')),
                ('attempts', models.PositiveSmallIntegerField(default=1)),
                ('audit', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='unit_outcomes', to='audits.audit')),
            ],
            options={
                'ordering': ['-created_at'],
                'abstract': False,
                'constraints': [
                    models.UniqueConstraint(fields=('audit', 'run_number', 'unit_key'), name='unit_outcome_unique_per_run'),
                ],
            },
        ),
    ]
