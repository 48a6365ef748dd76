"""Aspect ratio classification for uploaded videos."""

import math
from typing import Tuple

from api.enums import AspectRatio

LANDSCAPE_RATIO = 16 / 9
PORTRAIT_RATIO = 9 / 16
RATIO_TOLERANCE = 0.01


def reduce_ratio(width: int, height: int) -> Tuple[int, int]:
    """Reduce width:height to lowest terms, e.g. (1920, 1080) -> (16, 9)."""
    divisor = math.gcd(width, height)
    return width // divisor, height // divisor


def classify_aspect_ratio(width: int, height: int) -> AspectRatio:
    """
    Bucket frame dimensions into landscape (16:9), portrait (9:16) or other.

    Dimensions that are not both positive classify as OTHER.

    Examples:
        >>> classify_aspect_ratio(1920, 1080)
        <AspectRatio.LANDSCAPE: 'landscape'>
        >>> classify_aspect_ratio(608, 1080)
        <AspectRatio.PORTRAIT: 'portrait'>
        >>> classify_aspect_ratio(1000, 1000)
        <AspectRatio.OTHER: 'other'>
    """
    if width <= 0 or height <= 0:
        return AspectRatio.OTHER

    reduced_w, reduced_h = reduce_ratio(width, height)
    ratio = reduced_w / reduced_h

    if abs(ratio - LANDSCAPE_RATIO) < RATIO_TOLERANCE:
        return AspectRatio.LANDSCAPE
    if abs(ratio - PORTRAIT_RATIO) < RATIO_TOLERANCE:
        return AspectRatio.PORTRAIT
    return AspectRatio.OTHER
