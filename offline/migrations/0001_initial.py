# Initial migration for the offline app
# Generated to match current model state

import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='CachedTour',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tour_id', models.CharField(max_length=64, unique=True)),
                ('name', models.CharField(max_length=255)),
                ('tour_data', models.JSONField(default=dict)),
                ('floor_plans', models.JSONField(default=list)),
                ('hotspots', models.JSONField(default=list)),
                ('photos', models.JSONField(default=list)),
                ('size', models.BigIntegerField(default=0, help_text='Serialized metadata plus image bytes')),
                ('cached_at', models.DateTimeField()),
                ('expires_at', models.DateTimeField()),
            ],
            options={
                'ordering': ['cached_at', 'id'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('expires_at__gt', models.F('cached_at'))), name='cachedtour_expires_after_cached'),
                ],
            },
        ),
        migrations.CreateModel(
            name='CachedTourImage',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('floor_plan_id', models.CharField(max_length=64)),
                ('content', models.BinaryField()),
                ('size', models.PositiveIntegerField(default=0)),
                ('cached_tour', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='images', to='offline.cachedtour')),
            ],
            options={
                'constraints': [
                    models.UniqueConstraint(fields=('cached_tour', 'floor_plan_id'), name='unique_cached_floor_plan_image'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PendingPhoto',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('local_id', models.UUIDField(default=uuid.uuid4, editable=False, unique=True)),
                ('hotspot_id', models.CharField(max_length=64)),
                ('tour_id', models.CharField(max_length=64)),
                ('tenant_id', models.CharField(max_length=64)),
                ('payload', models.BinaryField()),
                ('capture_date', models.DateTimeField()),
                ('filename', models.CharField(max_length=255)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('syncing', 'Syncing'), ('synced', 'Synced'), ('failed', 'Failed')], default='pending', max_length=20)),
                ('error_message', models.TextField(blank=True)),
                ('attempts', models.PositiveSmallIntegerField(default=0)),
                ('remote_id', models.CharField(blank=True, help_text='Photo id assigned by the backend', max_length=64)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('synced_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'ordering': ['created_at', 'id'],
                'indexes': [models.Index(fields=['status', 'created_at'], name='pendingphoto_status_idx')],
            },
        ),
    ]
