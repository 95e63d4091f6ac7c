import uuid
from django.db import models
from django.utils import timezone


class Job(models.Model):
    class State(models.TextChoices):
        QUEUED = "queued"
        ACTIVE = "active"
        COMPLETED = "completed"
        FAILED = "failed"

    class Operation(models.TextChoices):
        VIDEO_CONVERT = "video-convert"
        AUDIO_EXTRACT = "audio-extract"
        FRAME_EXTRACT = "frame-extract"
        AUDIO_CONVERT = "audio-convert"
        IMAGE_CONVERT = "image-convert"
        PROBE = "probe"

    TERMINAL_STATES = (State.COMPLETED, State.FAILED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    operation = models.CharField(max_length=32, choices=Operation.choices)
    input_path = models.CharField(max_length=1024)          # staged upload, removed once terminal
    options = models.JSONField(default=dict, blank=True)

    state = models.CharField(max_length=16, choices=State.choices, default=State.QUEUED)
    attempts = models.PositiveSmallIntegerField(default=0)
    max_attempts = models.PositiveSmallIntegerField(default=3)
    progress = models.JSONField(null=True, blank=True)      # number or free-form marker
    result = models.JSONField(null=True, blank=True)        # only set in terminal states
    last_error = models.TextField(blank=True, default="")   # latest attempt, not exposed until terminal

    # Ownership of an active job; a new token is issued on every claim.
    claim_token = models.CharField(max_length=32, blank=True, default="")
    claimed_by = models.CharField(max_length=255, blank=True, default="")
    heartbeat_at = models.DateTimeField(null=True, blank=True)

    available_at = models.DateTimeField(default=timezone.now)  # backoff gate for re-claims
    created_at = models.DateTimeField(default=timezone.now)
    finished_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["state", "available_at", "created_at"], name="job_claim_idx"),
            models.Index(fields=["state", "finished_at"], name="job_retention_idx"),
        ]

    def __str__(self):
        return f"{self.operation} job {self.id} ({self.state})"

    @property
    def is_terminal(self) -> bool:
        return self.state in self.TERMINAL_STATES
