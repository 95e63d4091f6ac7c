from django.conf import settings
from django.http import FileResponse
from rest_framework import status, views
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .serializers import UploadSerializer, validate_options
from .status import NOT_FOUND, ArtifactUnavailable, job_status, result_artifact
from .tasks import submit_job
from .utils import remove_file, save_uploaded_file


class HealthView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        return Response({"status": "ok", "storageMode": settings.STORAGE_MODE})


class SubmitJobView(views.APIView):
    """
    Accepts a multipart upload (`file` + optional JSON `options`), stages the
    file under MEDIA_ROOT/uploads and queues one job of `operation` for it.
    """
    permission_classes = [AllowAny]
    authentication_classes = []
    operation = None

    def post(self, request):
        ser = UploadSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        options = validate_options(self.operation, ser.validated_data.get("options") or {})

        input_path = save_uploaded_file(ser.validated_data["file"])
        try:
            job_id = submit_job(self.operation, input_path, options)
        except Exception:
            remove_file(input_path)
            raise
        return Response({"jobId": job_id, "status": "queued"}, status=status.HTTP_202_ACCEPTED)


class JobStatusView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, job_id):
        data = job_status(job_id)
        if data["status"] == NOT_FOUND:
            return Response(data, status=status.HTTP_404_NOT_FOUND)
        return Response(data)


class JobResultView(views.APIView):
    """Streams a stateless result file; object-storage results live at their URL."""
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, job_id):
        try:
            index = int(request.query_params.get("index", 0))
        except ValueError:
            return Response({"error": "index must be an integer"}, status=status.HTTP_400_BAD_REQUEST)

        try:
            artifact = result_artifact(job_id, index=index)
        except ArtifactUnavailable as e:
            return Response({"error": e.message}, status=e.http_status)

        return FileResponse(
            open(artifact.path, "rb"),
            as_attachment=True,
            filename=artifact.filename,
            content_type=artifact.content_type,
        )
