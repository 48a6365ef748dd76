"""
Centralized enums for values stored in keys, URLs and configuration.
Using str-based enums so values serialize as plain strings.
"""

from enum import Enum


class AspectRatio(str, Enum):
    """Aspect ratio buckets, used as the first segment of video storage keys."""

    LANDSCAPE = "landscape"  # 16:9
    PORTRAIT = "portrait"  # 9:16
    OTHER = "other"  # anything else, or unknown


class ThumbnailStorage(str, Enum):
    """Where uploaded thumbnails are kept."""

    DATA_URL = "data_url"  # base64 data URL embedded in the record
    FILESYSTEM = "filesystem"  # file under the assets root, served at /assets
