"""
Thumbnail and video upload endpoints.

Both handlers follow the same order: path parameter, bearer token, record
lookup, ownership, then the uploaded file. Nothing is written anywhere until
all of those checks pass.
"""

import base64
import logging
import os
import time
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, File, Request, UploadFile

from api.audit import AuditAction, log_audit
from api.auth import authenticate_request
from api.common import limiter
from api.enums import ThumbnailStorage
from api.errors import ForbiddenError, InternalFailureError, InvalidRequestError, NotFoundError
from api.exception_utils import handle_api_exceptions
from api.metrics import (
    STORAGE_UPLOAD_DURATION_SECONDS,
    STORAGE_UPLOAD_FAILURES_TOTAL,
    THUMBNAIL_UPLOADS_TOTAL,
    VIDEO_UPLOAD_BYTES_TOTAL,
    VIDEO_UPLOADS_TOTAL,
    VIDEOS_BY_ASPECT_RATIO_TOTAL,
)
from api.object_storage import ObjectStorage, ObjectStorageError, s3_object_url
from api.schemas import Video
from api.staging import (
    TempFileSet,
    extension_for_content_type,
    random_asset_name,
    read_upload_with_size_limit,
    save_upload_with_size_limit,
)
from api.video_store import VideoStore
from config import RATE_LIMIT_UPLOAD, ApiConfig
from media.tools import detect_aspect_ratio, optimize_for_streaming, processed_path

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_VIDEO_ID_LENGTH = 64
VIDEO_CONTENT_TYPE = "video/mp4"
VIDEO_EXTENSION = ".mp4"


def media_type_of(content_type: Optional[str]) -> str:
    """Media type without parameters, lowercased ("Video/MP4; x=y" -> "video/mp4")."""
    return (content_type or "").split(";")[0].strip().lower()


def validate_video_id(video_id: str) -> str:
    video_id = video_id.strip()
    if not video_id or len(video_id) > MAX_VIDEO_ID_LENGTH:
        raise InvalidRequestError("Invalid video ID")
    return video_id


async def get_owned_video(store: VideoStore, video_id: str, user_id: str) -> Video:
    """Fetch a record, requiring that ``user_id`` owns it."""
    video = await store.get(video_id)
    if video is None:
        raise NotFoundError("Video not found")
    if video.user_id != user_id:
        raise ForbiddenError("Video not owned by this user")
    return video


def local_asset_path(cfg: ApiConfig, url: Optional[str]) -> Optional[Path]:
    """
    Map a URL under the assets base URL back to its file in the assets root.

    Returns None for data URLs, foreign URLs, and anything that is not a
    plain file name.
    """
    prefix = cfg.assets_base_url.rstrip("/") + "/"
    if not url or not url.startswith(prefix):
        return None
    name = url[len(prefix) :]
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        return None
    return cfg.assets_root / name


async def store_thumbnail_file(cfg: ApiConfig, thumbnail: UploadFile, media_type: str) -> Path:
    """
    Write a thumbnail under the assets root and return its final path.

    Bytes land in a ``.part`` file first and are renamed into place only
    once the whole upload has been received.
    """
    final_path = cfg.assets_root / random_asset_name(extension_for_content_type(media_type))
    with TempFileSet() as temp_files:
        part_path = temp_files.add(final_path.with_name(final_path.name + ".part"))
        await save_upload_with_size_limit(
            thumbnail,
            part_path,
            cfg.max_thumbnail_upload_size,
            cfg.upload_chunk_size,
            "Thumbnail exceeded file size limit",
        )
        try:
            os.replace(part_path, final_path)
        except OSError as e:
            logger.error(f"Couldn't move thumbnail into place at {final_path}: {e}")
            raise InternalFailureError("Couldn't save thumbnail") from e
    return final_path


async def store_video_object(storage: ObjectStorage, record: Video, key: str, path: Path) -> None:
    """Upload a video file, reporting storage failures as a plain 500."""
    start_time = time.monotonic()
    try:
        await storage.put_object(key, path, VIDEO_CONTENT_TYPE)
    except ObjectStorageError as e:
        STORAGE_UPLOAD_FAILURES_TOTAL.inc()
        logger.error(f"Storage upload failed for video {record.id}: {e}")
        raise InternalFailureError() from e
    STORAGE_UPLOAD_DURATION_SECONDS.observe(time.monotonic() - start_time)


@router.post("/api/thumbnail_upload/{video_id}", response_model=Video)
@limiter.limit(RATE_LIMIT_UPLOAD)
@handle_api_exceptions("thumbnail_upload", "Failed to upload thumbnail")
async def upload_thumbnail(
    request: Request,
    video_id: str,
    thumbnail: Optional[UploadFile] = File(None),
) -> Video:
    """
    Attach a thumbnail image to a video the caller owns.

    Depending on configuration the image is embedded in the record as a
    base64 data URL or written under the assets root and served from
    ``/assets``.
    """
    cfg: ApiConfig = request.app.state.config
    store: VideoStore = request.app.state.store

    video_id = validate_video_id(video_id)
    user_id = authenticate_request(request, cfg)

    logger.info(f"Uploading thumbnail for video {video_id} by user {user_id}")

    video = await get_owned_video(store, video_id, user_id)

    if thumbnail is None:
        raise InvalidRequestError("Thumbnail file missing")
    if thumbnail.size is not None and thumbnail.size > cfg.max_thumbnail_upload_size:
        raise InvalidRequestError("Thumbnail exceeded file size limit")
    media_type = media_type_of(thumbnail.content_type)
    if not cfg.accepts_thumbnail_type(media_type):
        raise InvalidRequestError("Unsupported thumbnail type")

    previous_path = local_asset_path(cfg, video.thumbnail_url)
    new_path: Optional[Path] = None

    if cfg.thumbnail_storage == ThumbnailStorage.FILESYSTEM.value:
        new_path = await store_thumbnail_file(cfg, thumbnail, media_type)
        video.thumbnail_url = f"{cfg.assets_base_url.rstrip('/')}/{new_path.name}"
    else:
        data = await read_upload_with_size_limit(
            thumbnail,
            cfg.max_thumbnail_upload_size,
            cfg.upload_chunk_size,
            "Thumbnail exceeded file size limit",
        )
        video.thumbnail_url = f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"

    try:
        await store.update(video)
    except BaseException:
        # The record still points at the old thumbnail
        if new_path is not None:
            new_path.unlink(missing_ok=True)
        raise

    if previous_path is not None and previous_path != new_path:
        try:
            previous_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Couldn't remove previous thumbnail {previous_path}: {e}")

    THUMBNAIL_UPLOADS_TOTAL.labels(storage=cfg.thumbnail_storage).inc()
    log_audit(
        AuditAction.THUMBNAIL_UPLOAD,
        request,
        user_id=user_id,
        resource_id=video.id,
        details={"content_type": media_type, "storage": cfg.thumbnail_storage},
    )
    return video


@router.post("/api/video_upload/{video_id}", response_model=Video)
@limiter.limit(RATE_LIMIT_UPLOAD)
@handle_api_exceptions("video_upload", "Failed to upload video")
async def upload_video(
    request: Request,
    video_id: str,
    video: Optional[UploadFile] = File(None),
) -> Video:
    """
    Upload the video file of a record the caller owns.

    The file is staged under the assets root, classified by aspect ratio,
    remuxed for fast start, and stored in the bucket under
    ``<aspect>/<name>.mp4``. Staged and processed files are removed on every
    exit path.
    """
    cfg: ApiConfig = request.app.state.config
    store: VideoStore = request.app.state.store
    storage = request.app.state.storage
    media_tools = request.app.state.media_tools

    video_id = validate_video_id(video_id)
    user_id = authenticate_request(request, cfg)

    logger.info(f"Uploading video for video {video_id} by user {user_id}")

    record = await get_owned_video(store, video_id, user_id)

    if video is None:
        raise InvalidRequestError("Video file missing")
    if video.size is not None and video.size > cfg.max_video_upload_size:
        raise InvalidRequestError("Video exceeded file size limit")
    if media_type_of(video.content_type) not in cfg.video_allowed_types:
        raise InvalidRequestError("Unsupported mime type")

    with TempFileSet() as temp_files:
        staged_path = temp_files.add(cfg.assets_root / random_asset_name(VIDEO_EXTENSION))
        size = await save_upload_with_size_limit(
            video,
            staged_path,
            cfg.max_video_upload_size,
            cfg.upload_chunk_size,
            "Video exceeded file size limit",
        )

        aspect = await detect_aspect_ratio(media_tools, staged_path)
        # Covers partial output from a failed remux
        temp_files.add(processed_path(staged_path))
        upload_path = await optimize_for_streaming(media_tools, staged_path)
        if upload_path != staged_path:
            temp_files.add(upload_path)

        key = f"{aspect.value}/{staged_path.name}"
        try:
            await store_video_object(storage, record, key, upload_path)
            record.video_url = s3_object_url(cfg.s3_bucket, cfg.s3_region, key)
            await store.update(record)
        except Exception as e:
            VIDEO_UPLOADS_TOTAL.labels(result="failed").inc()
            log_audit(
                AuditAction.VIDEO_UPLOAD,
                request,
                user_id=user_id,
                resource_id=record.id,
                details={"key": key, "size": size, "aspect_ratio": aspect.value},
                success=False,
                error=str(e.__cause__ or e),
            )
            raise

    VIDEO_UPLOADS_TOTAL.labels(result="success").inc()
    VIDEO_UPLOAD_BYTES_TOTAL.inc(size)
    VIDEOS_BY_ASPECT_RATIO_TOTAL.labels(aspect_ratio=aspect.value).inc()
    logger.info(f"Stored video {record.id} as {key} ({size} bytes, processed={upload_path != staged_path})")
    log_audit(
        AuditAction.VIDEO_UPLOAD,
        request,
        user_id=user_id,
        resource_id=record.id,
        details={"key": key, "size": size, "aspect_ratio": aspect.value},
    )
    return record
