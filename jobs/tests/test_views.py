"""
Tests for the HTTP surface in jobs/views.py
"""
import json
import tempfile
import uuid
from pathlib import Path
from unittest.mock import patch

from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework.test import APIClient

from jobs.models import Job
from jobs.queue import JobQueue


class ApiTestCase(TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.media = Path(tmp.name)
        overrides = override_settings(MEDIA_ROOT=self.media, STORAGE_MODE='stateless')
        overrides.enable()
        self.addCleanup(overrides.disable)

        patcher = patch('jobs.tasks.run_next_job')
        self.run_next_job = patcher.start()
        self.addCleanup(patcher.stop)

        self.client = APIClient()

    def upload(self, url, options=None, name='clip.mov'):
        data = {'file': SimpleUploadedFile(name, b'fake media bytes', content_type='application/octet-stream')}
        if options is not None:
            data['options'] = options if isinstance(options, str) else json.dumps(options)
        with self.captureOnCommitCallbacks(execute=True):
            return self.client.post(url, data, format='multipart')

    def staged_uploads(self):
        return list((self.media / 'uploads').glob('*')) if (self.media / 'uploads').exists() else []


class HealthTest(ApiTestCase):
    def test_health(self):
        response = self.client.get('/health')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'status': 'ok', 'storageMode': 'stateless'})


class SubmitTest(ApiTestCase):
    def test_submit_queues_job_and_wakes_a_worker(self):
        response = self.upload('/video/convert', {'codec': 'libx265', 'videoBitrate': '2M'})

        self.assertEqual(response.status_code, 202)
        body = response.json()
        self.assertEqual(body['status'], 'queued')
        job = Job.objects.get(pk=body['jobId'])
        self.assertEqual(job.operation, 'video-convert')
        self.assertEqual(job.state, Job.State.QUEUED)
        self.assertEqual(job.options, {'codec': 'libx265', 'video_bitrate': '2M'})
        self.assertTrue(Path(job.input_path).is_file())
        self.assertTrue(Path(job.input_path).name.endswith('_clip.mov'))
        self.run_next_job.apply_async.assert_called_once_with(countdown=None)

    def test_each_route_maps_to_its_operation(self):
        routes = {
            '/audio/extract': ('audio-extract', None),
            '/video/frames': ('frame-extract', {'count': 3}),
            '/audio/convert': ('audio-convert', {'format': 'wav'}),
            '/image/convert': ('image-convert', {'quality': 80}),
            '/media/probe': ('probe', None),
        }
        for url, (operation, options) in routes.items():
            with self.subTest(url=url):
                response = self.upload(url, options)
                self.assertEqual(response.status_code, 202)
                self.assertEqual(Job.objects.get(pk=response.json()['jobId']).operation, operation)

    def test_audio_convert_defaults_to_mp3(self):
        response = self.upload('/audio/convert')
        self.assertEqual(Job.objects.get(pk=response.json()['jobId']).options, {'format': 'mp3'})

    def test_missing_file(self):
        response = self.client.post('/video/convert', {'options': '{}'}, format='multipart')

        self.assertEqual(response.status_code, 400)
        self.assertIn('file', response.json())
        self.assertFalse(Job.objects.exists())

    def test_invalid_options_are_rejected_before_staging(self):
        cases = [
            ('/video/convert', 'not json'),
            ('/video/convert', '[1, 2]'),
            ('/video/convert', {'bogus': 1}),
            ('/video/convert', {'resolution': 'big'}),
            ('/video/frames', {}),
            ('/video/frames', {'count': 500}),
            ('/audio/extract', {'channels': 6}),
            ('/image/convert', {'quality': 100}),
            ('/media/probe', {'anything': True}),
        ]
        for url, options in cases:
            with self.subTest(url=url, options=options):
                response = self.upload(url, options)
                self.assertEqual(response.status_code, 400)

        self.assertFalse(Job.objects.exists())
        self.assertEqual(self.staged_uploads(), [])
        self.run_next_job.apply_async.assert_not_called()

    def test_staged_file_is_removed_when_enqueue_fails(self):
        with patch('jobs.views.submit_job', side_effect=RuntimeError('database unavailable')):
            self.client.raise_request_exception = True
            with self.assertRaises(RuntimeError):
                self.upload('/media/probe')

        self.assertEqual(self.staged_uploads(), [])


class JobStatusViewTest(ApiTestCase):
    def test_unknown_job_is_404(self):
        response = self.client.get(f'/job/{uuid.uuid4()}')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {'status': 'not-found'})

    def test_submitted_job_is_queued(self):
        job_id = self.upload('/media/probe').json()['jobId']

        response = self.client.get(f'/job/{job_id}')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'status': 'queued', 'progress': None})

    def test_failed_job_reports_reason(self):
        queue = JobQueue()
        job_id = queue.enqueue('probe', '/tmp/in.mov')
        job = queue.claim(job_id, 'w')
        queue.report_terminal(job_id, {'success': False, 'mode': 'stateless', 'error': 'not a media file'}, token=job.claim_token)

        body = self.client.get(f'/job/{job_id}').json()

        self.assertEqual(body['status'], 'failed')
        self.assertEqual(body['failedReason'], 'not a media file')


class JobResultViewTest(ApiTestCase):
    def completed_job(self, result):
        queue = JobQueue()
        job_id = queue.enqueue('frame-extract', '/tmp/in.mov')
        job = queue.claim(job_id, 'w')
        queue.report_terminal(job_id, result, token=job.claim_token)
        return job_id

    def make_output(self, name, content):
        path = self.media / 'outputs' / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return str(path)

    def test_download_streams_file_as_attachment(self):
        path = self.make_output('out.mp4', b'mp4-bytes')
        job_id = self.completed_job({'success': True, 'mode': 'stateless', 'outputPath': path})

        response = self.client.get(f'/job/{job_id}/result')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'video/mp4')
        self.assertIn('attachment', response['Content-Disposition'])
        self.assertIn('out.mp4', response['Content-Disposition'])
        self.assertEqual(b''.join(response.streaming_content), b'mp4-bytes')
        response.close()

    def test_frames_are_selected_by_index(self):
        frames = [self.make_output(f'f{i}.jpg', f'frame-{i}'.encode()) for i in range(2)]
        job_id = self.completed_job({'success': True, 'mode': 'stateless', 'outputPaths': frames})

        response = self.client.get(f'/job/{job_id}/result', {'index': 1})

        self.assertEqual(response['Content-Type'], 'image/jpeg')
        self.assertEqual(b''.join(response.streaming_content), b'frame-1')
        response.close()

    def test_bad_index(self):
        job_id = self.completed_job({'success': True, 'mode': 'stateless', 'outputPath': '/x/out.mp4'})

        self.assertEqual(self.client.get(f'/job/{job_id}/result', {'index': 'x'}).status_code, 400)

    def test_object_storage_result_points_to_url(self):
        job_id = self.completed_job({'success': True, 'mode': 's3', 'urls': ['https://cdn/a.jpg']})

        response = self.client.get(f'/job/{job_id}/result')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'error': 'Use the URL from job status for S3 mode'})

    def test_unfinished_or_unknown_job(self):
        job_id = JobQueue().enqueue('probe', '/tmp/in.mov')

        self.assertEqual(self.client.get(f'/job/{job_id}/result').status_code, 404)
        self.assertEqual(self.client.get(f'/job/{uuid.uuid4()}/result').status_code, 404)


class BrokerOutageTest(TransactionTestCase):
    """Autocommit, so the wake-up runs inside the request as it does in production."""

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.media = Path(tmp.name)
        overrides = override_settings(MEDIA_ROOT=self.media, STORAGE_MODE='stateless')
        overrides.enable()
        self.addCleanup(overrides.disable)

        patcher = patch('jobs.tasks.run_next_job')
        self.run_next_job = patcher.start()
        self.addCleanup(patcher.stop)
        self.run_next_job.apply_async.side_effect = ConnectionError('broker down')

        self.client = APIClient()

    def test_submission_is_accepted_while_broker_is_down(self):
        upload = SimpleUploadedFile('c.mov', b'fake media bytes', content_type='application/octet-stream')

        response = self.client.post('/video/convert', {'file': upload}, format='multipart')

        self.assertEqual(response.status_code, 202)
        job = Job.objects.get(pk=response.json()['jobId'])
        self.assertEqual(job.state, Job.State.QUEUED)
        self.assertTrue(Path(job.input_path).is_file())
        self.run_next_job.apply_async.assert_called_once_with(countdown=None)
