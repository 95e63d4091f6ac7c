from rest_framework import serializers

from .models import Job

# ffmpeg-style rates: 128k, 2.5M, 96000
RATE_REGEX = r"^\d+(\.\d+)?[kKmM]?$"
# seconds (12.5) or [HH:]MM:SS[.ms]
TIMESTAMP_REGEX = r"^(\d+(\.\d+)?|(\d{1,2}:)?\d{1,2}:\d{2}(\.\d+)?)$"


class UploadSerializer(serializers.Serializer):
    file = serializers.FileField()
    # multipart sends options as a JSON string
    options = serializers.JSONField(required=False, binary=True)

    def validate_options(self, value):
        if value in (None, ""):
            return {}
        if not isinstance(value, dict):
            raise serializers.ValidationError("Options must be a JSON object.")
        return value


class OptionsSerializer(serializers.Serializer):
    """Rejects keys the operation does not understand instead of dropping them."""

    def validate(self, attrs):
        unknown = sorted(set(self.initial_data) - set(self.fields))
        if unknown:
            raise serializers.ValidationError(
                f"Unsupported options: {unknown}. Allowed: {sorted(self.fields)}"
            )
        return attrs


class VideoConvertOptions(OptionsSerializer):
    codec = serializers.RegexField(r"^[A-Za-z0-9][A-Za-z0-9_\-]*$", required=False)
    videoBitrate = serializers.RegexField(RATE_REGEX, required=False, source="video_bitrate")
    audioBitrate = serializers.RegexField(RATE_REGEX, required=False, source="audio_bitrate")
    fps = serializers.FloatField(required=False, min_value=0.1, max_value=240)
    resolution = serializers.RegexField(r"^\d{1,5}x\d{1,5}$", required=False)


class AudioExtractOptions(OptionsSerializer):
    track = serializers.IntegerField(required=False, min_value=0)
    channels = serializers.ChoiceField(choices=[1, 2], required=False)


class FrameExtractOptions(OptionsSerializer):
    timestamp = serializers.RegexField(TIMESTAMP_REGEX, required=False)
    count = serializers.IntegerField(required=False, min_value=1, max_value=100)
    fps = serializers.FloatField(required=False, min_value=0.01, max_value=60)

    def validate(self, attrs):
        attrs = super().validate(attrs)
        if not any(attrs.get(k) for k in ("timestamp", "count", "fps")):
            raise serializers.ValidationError("Provide one of: timestamp, count, fps.")
        return attrs


class AudioConvertOptions(OptionsSerializer):
    format = serializers.ChoiceField(choices=["mp3", "wav"], required=False, default="mp3")
    bitrate = serializers.RegexField(RATE_REGEX, required=False)
    sampleRate = serializers.IntegerField(required=False, min_value=8000, max_value=192000, source="sample_rate")


class ImageConvertOptions(OptionsSerializer):
    quality = serializers.IntegerField(required=False, min_value=1, max_value=95)


class ProbeOptions(OptionsSerializer):
    pass


OPTION_SERIALIZERS = {
    Job.Operation.VIDEO_CONVERT: VideoConvertOptions,
    Job.Operation.AUDIO_EXTRACT: AudioExtractOptions,
    Job.Operation.FRAME_EXTRACT: FrameExtractOptions,
    Job.Operation.AUDIO_CONVERT: AudioConvertOptions,
    Job.Operation.IMAGE_CONVERT: ImageConvertOptions,
    Job.Operation.PROBE: ProbeOptions,
}


def validate_options(operation: str, options: dict) -> dict:
    """Typed, executor-ready options for `operation` (snake_case keys)."""
    try:
        serializer_class = OPTION_SERIALIZERS[operation]
    except KeyError:
        raise serializers.ValidationError({"operation": f"Unknown operation kind: {operation}"})
    ser = serializer_class(data=options)
    if not ser.is_valid():
        raise serializers.ValidationError({"options": ser.errors})
    return dict(ser.validated_data)
