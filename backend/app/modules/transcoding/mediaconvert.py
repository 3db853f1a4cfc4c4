"""AWS Elemental MediaConvert adapter.

Translates a quality ladder into one HLS transcoding job and reports job
status. All outputs use the same segment length as the local encoder.
"""

import logging
import posixpath
from dataclasses import dataclass
from typing import Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import Settings
from app.modules.transcoding.abr import AUDIO_BITRATE, SEGMENT_DURATION_SECONDS
from app.modules.transcoding.exceptions import ConfigurationError, ExternalServiceError
from app.modules.transcoding.schemas import CloudJobStatus, JobState, QualityRung

logger = logging.getLogger(__name__)

_STATE_MAP = {
    "SUBMITTED": JobState.SUBMITTED,
    "PROGRESSING": JobState.PROGRESSING,
    "COMPLETE": JobState.COMPLETE,
    "ERROR": JobState.ERROR,
    "CANCELED": JobState.ERROR,
}


@dataclass
class MediaConvertConfig:
    """Configuration for the MediaConvert client."""
    region: str = "us-east-1"
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    role_arn: str = ""
    account_id: str = ""
    queue: str = "Default"
    bucket: str = ""
    cloudfront_domain: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "MediaConvertConfig":
        return cls(
            region=settings.AWS_REGION,
            access_key=settings.AWS_ACCESS_KEY_ID,
            secret_key=settings.AWS_SECRET_ACCESS_KEY,
            endpoint_url=settings.AWS_MEDIACONVERT_ENDPOINT,
            role_arn=settings.AWS_MEDIACONVERT_ROLE_ARN,
            account_id=settings.AWS_ACCOUNT_ID,
            queue=settings.AWS_MEDIACONVERT_QUEUE,
            bucket=settings.AWS_S3_BUCKET,
            cloudfront_domain=settings.AWS_CLOUDFRONT_DOMAIN,
        )

    @property
    def resolved_role_arn(self) -> str:
        if self.role_arn:
            return self.role_arn
        if self.account_id:
            return f"arn:aws:iam::{self.account_id}:role/MediaConvertRole"
        return ""


def quality_for_output_path(path: str, ladder: Sequence[QualityRung]) -> Optional[QualityRung]:
    """Map a job output playlist (e.g. ``.../source_720p.m3u8``) to its rung."""
    filename = posixpath.basename(path)
    for rung in ladder:
        if filename == f"{rung.name}.m3u8" or filename.endswith(f"_{rung.name}.m3u8"):
            return rung
    return None


def s3_key_from_uri(uri: str) -> str:
    """Strip the ``s3://bucket/`` prefix from an object URI."""
    if uri.startswith("s3://"):
        return uri[len("s3://"):].split("/", 1)[-1]
    return uri


class MediaConvertAdapter:
    """Submits HLS ladder jobs to MediaConvert and reports their status."""

    def __init__(self, config: MediaConvertConfig, client=None):
        """Initialize adapter.

        Args:
            config: MediaConvert configuration
            client: Pre-built boto3 ``mediaconvert`` client
        """
        self.config = config
        self._client = client

    def _get_client(self):
        """Get or create the MediaConvert client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "mediaconvert",
                "region_name": self.config.region,
                "aws_access_key_id": self.config.access_key,
                "aws_secret_access_key": self.config.secret_key,
            }
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url

            self._client = boto3.client(**client_kwargs)

        return self._client

    def ensure_configured(self) -> str:
        """Resolve the IAM role, failing fast when configuration is missing.

        Raises:
            ConfigurationError: Credentials or role missing
        """
        if not (self.config.access_key and self.config.secret_key):
            raise ConfigurationError("AWS credentials are not configured for MediaConvert")
        role_arn = self.config.resolved_role_arn
        if not role_arn:
            raise ConfigurationError(
                "MediaConvert IAM role is not configured "
                "(set AWS_MEDIACONVERT_ROLE_ARN or AWS_ACCOUNT_ID)"
            )
        return role_arn

    def submit(
        self,
        video_id: str,
        input_uri: str,
        output_prefix: str,
        qualities: Sequence[QualityRung],
    ) -> str:
        """Create one job producing every rung.

        Returns:
            Job id

        Raises:
            ConfigurationError: Credentials or role missing
            ExternalServiceError: The service rejected the request
        """
        role_arn = self.ensure_configured()
        job_settings = self.build_job_settings(input_uri, output_prefix, qualities)

        try:
            response = self._get_client().create_job(
                Role=role_arn,
                Settings=job_settings,
                Queue=self.config.queue,
                UserMetadata={"videoId": str(video_id)},
            )
        except (ClientError, BotoCoreError) as e:
            raise ExternalServiceError(f"Failed to create transcoding job: {e}") from e

        job_id = (response.get("Job") or {}).get("Id")
        if not job_id:
            raise ExternalServiceError("Transcoding service returned no job id")

        logger.info("Created MediaConvert job %s for video %s", job_id, video_id)
        return job_id

    def get_status(self, job_id: str) -> CloudJobStatus:
        """Fetch the current state of a job.

        Raises:
            ExternalServiceError: The status call failed
        """
        try:
            response = self._get_client().get_job(Id=job_id)
        except (ClientError, BotoCoreError) as e:
            raise ExternalServiceError(f"Failed to get job status: {e}") from e

        job = response.get("Job")
        if not job:
            raise ExternalServiceError(f"Job {job_id} not found")

        state = _STATE_MAP.get(job.get("Status", "SUBMITTED"), JobState.SUBMITTED)
        output_paths = self.extract_output_paths(job)

        return CloudJobStatus(
            job_id=job.get("Id", job_id),
            state=state,
            progress=100 if state == JobState.COMPLETE else self.calculate_progress(job),
            output_paths=output_paths if state == JobState.COMPLETE else [],
            error_message=job.get("ErrorMessage") if state == JobState.ERROR else None,
        )

    @staticmethod
    def _output_details(job: dict) -> list[dict]:
        details = []
        for group in job.get("OutputGroupDetails") or []:
            details.extend(group.get("OutputDetails") or [])
        return details

    def calculate_progress(self, job: dict) -> int:
        """Share of declared outputs that report a written file path."""
        outputs = self._output_details(job)
        if not outputs:
            return 0
        done = sum(1 for output in outputs if output.get("OutputFilePaths"))
        return round(done * 100 / len(outputs))

    def extract_output_paths(self, job: dict) -> list[str]:
        """First file path of each completed output (the rung's playlist)."""
        return [
            output["OutputFilePaths"][0]
            for output in self._output_details(job)
            if output.get("OutputFilePaths")
        ]

    def public_url(self, key: str) -> str:
        """CloudFront URL when configured, otherwise the bucket URL."""
        if self.config.cloudfront_domain:
            return f"https://{self.config.cloudfront_domain}/{key}"
        return f"https://{self.config.bucket}.s3.{self.config.region}.amazonaws.com/{key}"

    def build_job_settings(
        self,
        input_uri: str,
        output_prefix: str,
        qualities: Sequence[QualityRung],
    ) -> dict:
        """Build the job ``Settings`` document: one HLS output per rung."""
        outputs = [self._build_output(rung) for rung in qualities]

        return {
            "Inputs": [
                {
                    "AudioSelectors": {
                        "Audio Selector 1": {"DefaultSelection": "DEFAULT"},
                    },
                    "VideoSelector": {"ColorSpace": "FOLLOW", "Rotate": "DEGREE_0"},
                    "TimecodeSource": "EMBEDDED",
                    "FileInput": input_uri,
                },
            ],
            "OutputGroups": [
                {
                    "Name": "HLS",
                    "OutputGroupSettings": {
                        "Type": "HLS_GROUP_SETTINGS",
                        "HlsGroupSettings": {
                            "ManifestDurationFormat": "INTEGER",
                            "SegmentLength": SEGMENT_DURATION_SECONDS,
                            "MinSegmentLength": 0,
                            "Destination": f"{output_prefix.rstrip('/')}/",
                            "SegmentControl": "SEGMENTED_FILES",
                            "OutputSelection": "MANIFESTS_AND_SEGMENTS",
                            "DirectoryStructure": "SINGLE_DIRECTORY",
                            "ProgramDateTime": "EXCLUDE",
                        },
                    },
                    "Outputs": outputs,
                },
            ],
            "TimecodeConfig": {"Source": "EMBEDDED"},
        }

    def _build_output(self, rung: QualityRung) -> dict:
        bitrate_bps = rung.bitrate * 1000
        return {
            "NameModifier": f"_{rung.name}",
            "VideoDescription": {
                "Width": rung.width,
                "Height": rung.height,
                "ScalingBehavior": "DEFAULT",
                "CodecSettings": {
                    "Codec": "H_264",
                    "H264Settings": {
                        "RateControlMode": "QVBR",
                        "QvbrSettings": {"QvbrQualityLevel": self._qvbr_level(rung.crf)},
                        "MaxBitrate": bitrate_bps,
                        "HrdBufferSize": bitrate_bps * 2,
                        "GopSize": 60,
                        "GopSizeUnits": "FRAMES",
                        "FramerateControl": "INITIALIZE_FROM_SOURCE",
                        "SceneChangeDetect": "TRANSITION_DETECTION",
                        "QualityTuningLevel": "SINGLE_PASS",
                    },
                },
            },
            "AudioDescriptions": [
                {
                    "AudioSourceName": "Audio Selector 1",
                    "CodecSettings": {
                        "Codec": "AAC",
                        "AacSettings": {
                            "Bitrate": AUDIO_BITRATE,
                            "CodingMode": "CODING_MODE_2_0",
                            "SampleRate": 48000,
                        },
                    },
                },
            ],
            "ContainerSettings": {"Container": "M3U8", "M3u8Settings": {}},
            "Extension": "m3u8",
        }

    @staticmethod
    def _qvbr_level(crf: int) -> int:
        """Map an x264 CRF (lower is better) onto the QVBR 1-10 scale."""
        return max(1, min(10, round(10 - (crf - 18) / 2)))
