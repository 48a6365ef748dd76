"""
Prometheus metrics for the Tubely API.

Metrics are exposed at the /metrics endpoint in Prometheus text format.
"""

from prometheus_client import Counter, Histogram, Info, generate_latest

# Application info
APP_INFO = Info("tubely", "Tubely application information")

# HTTP request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "tubely_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "tubely_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0],
)

# Upload metrics
THUMBNAIL_UPLOADS_TOTAL = Counter(
    "tubely_thumbnail_uploads_total",
    "Total thumbnail uploads",
    ["storage"],  # data_url, filesystem
)

VIDEO_UPLOADS_TOTAL = Counter(
    "tubely_video_uploads_total",
    "Total video uploads",
    ["result"],  # success, failed
)

VIDEO_UPLOAD_BYTES_TOTAL = Counter(
    "tubely_video_upload_bytes_total",
    "Total bytes of video received",
)

VIDEOS_BY_ASPECT_RATIO_TOTAL = Counter(
    "tubely_videos_by_aspect_ratio_total",
    "Uploaded videos by aspect ratio bucket",
    ["aspect_ratio"],  # landscape, portrait, other
)

# Media processing metrics
MEDIA_TOOL_DURATION_SECONDS = Histogram(
    "tubely_media_tool_duration_seconds",
    "ffprobe/ffmpeg run time in seconds",
    ["tool"],  # probe, transcode
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 600.0],
)

MEDIA_TOOL_FAILURES_TOTAL = Counter(
    "tubely_media_tool_failures_total",
    "ffprobe/ffmpeg failures, including timeouts",
    ["tool"],
)

# Object storage metrics
STORAGE_UPLOAD_DURATION_SECONDS = Histogram(
    "tubely_storage_upload_duration_seconds",
    "Object storage upload time in seconds",
    buckets=[0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)

STORAGE_UPLOAD_FAILURES_TOTAL = Counter(
    "tubely_storage_upload_failures_total",
    "Object storage upload failures",
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics in text format."""
    return generate_latest()


def init_app_info(version: str = "0.1.0"):
    """Initialize application info metric."""
    APP_INFO.info({"version": version, "app": "tubely"})
