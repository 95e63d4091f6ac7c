import uuid

import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Job",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "operation",
                    models.CharField(
                        choices=[
                            ("video-convert", "Video Convert"),
                            ("audio-extract", "Audio Extract"),
                            ("frame-extract", "Frame Extract"),
                            ("audio-convert", "Audio Convert"),
                            ("image-convert", "Image Convert"),
                            ("probe", "Probe"),
                        ],
                        max_length=32,
                    ),
                ),
                ("input_path", models.CharField(max_length=1024)),
                ("options", models.JSONField(blank=True, default=dict)),
                (
                    "state",
                    models.CharField(
                        choices=[
                            ("queued", "Queued"),
                            ("active", "Active"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="queued",
                        max_length=16,
                    ),
                ),
                ("attempts", models.PositiveSmallIntegerField(default=0)),
                ("max_attempts", models.PositiveSmallIntegerField(default=3)),
                ("progress", models.JSONField(blank=True, null=True)),
                ("result", models.JSONField(blank=True, null=True)),
                ("last_error", models.TextField(blank=True, default="")),
                ("claim_token", models.CharField(blank=True, default="", max_length=32)),
                ("claimed_by", models.CharField(blank=True, default="", max_length=255)),
                ("heartbeat_at", models.DateTimeField(blank=True, null=True)),
                ("available_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("finished_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(fields=["state", "available_at", "created_at"], name="job_claim_idx"),
                    models.Index(fields=["state", "finished_at"], name="job_retention_idx"),
                ],
            },
        ),
    ]
