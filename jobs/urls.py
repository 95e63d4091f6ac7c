from django.urls import path

from .models import Job
from .views import HealthView, JobResultView, JobStatusView, SubmitJobView

urlpatterns = [
    path("health", HealthView.as_view(), name="health"),
    path("video/convert", SubmitJobView.as_view(operation=Job.Operation.VIDEO_CONVERT), name="video_convert"),
    path("audio/extract", SubmitJobView.as_view(operation=Job.Operation.AUDIO_EXTRACT), name="audio_extract"),
    path("video/frames", SubmitJobView.as_view(operation=Job.Operation.FRAME_EXTRACT), name="video_frames"),
    path("audio/convert", SubmitJobView.as_view(operation=Job.Operation.AUDIO_CONVERT), name="audio_convert"),
    path("image/convert", SubmitJobView.as_view(operation=Job.Operation.IMAGE_CONVERT), name="image_convert"),
    path("media/probe", SubmitJobView.as_view(operation=Job.Operation.PROBE), name="media_probe"),
    path("job/<str:job_id>", JobStatusView.as_view(), name="job_status"),
    path("job/<str:job_id>/result", JobResultView.as_view(), name="job_result"),
]
