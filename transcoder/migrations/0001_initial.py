import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='StoredFile',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('contenthash', models.CharField(db_index=True, max_length=40)),
                ('pathnamehash', models.CharField(db_index=True, max_length=40)),
                ('context_id', models.BigIntegerField(db_index=True)),
                ('component', models.CharField(max_length=100)),
                ('filearea', models.CharField(max_length=50)),
                ('item_id', models.BigIntegerField(default=0)),
                ('filepath', models.CharField(default='/', max_length=255)),
                ('filename', models.CharField(max_length=255)),
                ('mimetype', models.CharField(blank=True, max_length=100)),
                ('filesize', models.BigIntegerField(default=0)),
                ('source', models.TextField(blank=True)),
                ('time_created', models.DateTimeField(default=django.utils.timezone.now)),
                ('time_modified', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
            ],
            options={
                'indexes': [
                    models.Index(fields=['component', 'filearea'], name='transcoder__compone_7d1c2e_idx'),
                    models.Index(fields=['mimetype'], name='transcoder__mimetyp_3f0a9b_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='TranscodeTask',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('source_file_id', models.BigIntegerField(db_index=True)),
                ('derived_file_id', models.BigIntegerField(blank=True, null=True)),
                (
                    'status',
                    models.CharField(
                        choices=[
                            ('READY', 'Ready'),
                            ('IN_PROGRESS', 'In progress'),
                            ('COMPLETED', 'Completed'),
                            ('FAILED', 'Failed'),
                        ],
                        db_index=True,
                        default='READY',
                        max_length=20,
                    ),
                ),
                ('retries', models.PositiveIntegerField(default=0)),
                ('attempt_token', models.CharField(blank=True, max_length=21)),
                ('error_message', models.TextField(blank=True)),
                ('queued_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('finished_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'ordering': ['queued_at', 'id'],
                'indexes': [
                    models.Index(fields=['status', 'queued_at'], name='transcoder__status_1b2f4c_idx'),
                    models.Index(fields=['status', 'started_at'], name='transcoder__status_8e5d0a_idx'),
                    models.Index(fields=['status', 'finished_at'], name='transcoder__status_c4a7e1_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(
                        condition=models.Q(('status__in', ['READY', 'IN_PROGRESS'])),
                        fields=('source_file_id',),
                        name='unique_active_task_per_source',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='DiscoveryMark',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=50, unique=True)),
                ('files_from_time', models.DateTimeField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
    ]
