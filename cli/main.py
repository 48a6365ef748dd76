#!/usr/bin/env python3
"""
Tubely CLI - Command line client for the upload API.
"""

import argparse
import mimetypes
import os
import sys
from datetime import timedelta
from pathlib import Path

import httpx
from rich.progress import (
    BarColumn,
    FileSizeColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TotalFileSizeColumn,
    TransferSpeedColumn,
)

from api.auth import make_jwt
from api.errors import truncate_error
from config import (
    ERROR_DETAIL_MAX_LENGTH,
    ERROR_SUMMARY_MAX_LENGTH,
    JWT_SECRET,
    MAX_THUMBNAIL_UPLOAD_SIZE,
    MAX_VIDEO_UPLOAD_SIZE,
    PORT,
)

# Default timeout for API requests (30 seconds)
DEFAULT_API_TIMEOUT = int(os.getenv("TUBELY_API_TIMEOUT", "30"))

# Upload timeout in seconds (default 2 hours)
# Covers transfer plus server-side remux and storage upload
UPLOAD_TIMEOUT = int(os.getenv("TUBELY_UPLOAD_TIMEOUT", "7200"))

_default_api_url = f"http://localhost:{PORT}"
API_BASE = os.getenv("TUBELY_API_URL", _default_api_url).rstrip("/") + "/api"


class CLIError(Exception):
    """Custom exception for CLI errors."""

    pass


class ProgressFileWrapper:
    """Wrapper for file objects that reports upload progress."""

    def __init__(self, file, progress, task_id):
        self.file = file
        self.progress = progress
        self.task_id = task_id

    def read(self, size=-1):
        """
        Read from the file and update progress.

        Empty reads at EOF don't advance progress as no bytes were transferred.
        """
        data = self.file.read(size)
        if data:
            self.progress.update(self.task_id, advance=len(data))
        return data

    def seek(self, *args, **kwargs):
        return self.file.seek(*args, **kwargs)

    def tell(self):
        return self.file.tell()

    def close(self):
        """Does not close the underlying file as it's managed externally."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        pass


def positive_days(value: str) -> int:
    """Argparse type converter for token lifetimes."""
    i = int(value)
    if i <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {i}")
    return i


def safe_json_response(response, default_error="Request failed"):
    """
    Safely parse JSON response with proper error handling.

    Raises:
        CLIError: If response status is not successful or JSON parsing fails
    """
    if not response.is_success:
        try:
            detail = response.json().get("detail", response.text)
        except (ValueError, httpx.ResponseNotRead):
            detail = truncate_error(response.text, ERROR_DETAIL_MAX_LENGTH) if response.text else default_error
        raise CLIError(f"API error ({response.status_code}): {detail}")

    try:
        return response.json()
    except (ValueError, httpx.ResponseNotRead):
        raise CLIError(f"Invalid JSON response: {truncate_error(response.text, ERROR_SUMMARY_MAX_LENGTH)}")


def validate_file(file_path: Path, max_size: int) -> int:
    """
    Validate file exists, is readable, and fits the server's size limit.

    Returns:
        int: File size in bytes

    Raises:
        CLIError: If file doesn't exist, isn't readable, is empty, or is too large
    """
    if not file_path.exists():
        raise CLIError(f"File not found: {file_path}")

    if not file_path.is_file():
        raise CLIError(f"Path is not a file: {file_path}")

    if not os.access(file_path, os.R_OK):
        raise CLIError(f"File is not readable: {file_path}")

    file_size = file_path.stat().st_size
    if file_size == 0:
        raise CLIError(f"File is empty: {file_path}")

    if file_size > max_size:
        raise CLIError(f"File too large ({file_size / (1024 * 1024):.1f} MB). Maximum is {max_size / (1024 * 1024):.0f} MB")

    return file_size


def guess_content_type(file_path: Path) -> str:
    content_type, _ = mimetypes.guess_type(file_path.name)
    return content_type or "application/octet-stream"


def get_auth_headers() -> dict:
    """Get headers for API requests from TUBELY_TOKEN."""
    token = os.getenv("TUBELY_TOKEN", "")
    if not token:
        raise CLIError("No access token. Set TUBELY_TOKEN (see 'tubely token').")
    return {"Authorization": f"Bearer {token}"}


def handle_auth_error(response) -> bool:
    """
    Check for auth errors and provide helpful message.

    Returns True if an auth error was handled (and program should exit).
    """
    if response.status_code == 401:
        print("Error: Authentication failed.")
        print("Check that TUBELY_TOKEN holds a valid, unexpired access token.")
        sys.exit(1)
    return False


def upload_file(url: str, field: str, file_path: Path, file_size: int, content_type: str):
    """POST a file as multipart field ``field`` with a progress bar."""
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        FileSizeColumn(),
        TextColumn("/"),
        TotalFileSizeColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
    ) as progress:
        task_id = progress.add_task("Uploading...", total=file_size)

        with open(file_path, "rb") as f:
            wrapped_file = ProgressFileWrapper(f, progress, task_id)
            files = {field: (file_path.name, wrapped_file, content_type)}

            with httpx.Client(timeout=httpx.Timeout(UPLOAD_TIMEOUT)) as client:
                response = client.post(url, files=files, headers=get_auth_headers())

    handle_auth_error(response)
    return safe_json_response(response)


def run_command(func, args):
    """Run a command, turning connection and API failures into exit code 1."""
    try:
        func(args)
    except httpx.ConnectError:
        print(f"Error: Could not connect to API at {API_BASE}")
        print("Make sure the server is running.")
        sys.exit(1)
    except httpx.TimeoutException:
        print(f"Error: Request to {API_BASE} timed out")
        print("You can increase the timeout with TUBELY_UPLOAD_TIMEOUT environment variable")
        sys.exit(1)
    except CLIError as e:
        print(f"Error: {e}")
        sys.exit(1)


def cmd_token(args):
    """Mint a development access token."""
    if not JWT_SECRET:
        raise CLIError("TUBELY_JWT_SECRET is not set")
    print(make_jwt(args.user_id, JWT_SECRET, expires_in=timedelta(days=args.days)))


def cmd_create(args):
    """Create a draft video."""
    response = httpx.post(
        f"{API_BASE}/videos",
        json={"title": args.title, "description": args.description or ""},
        headers=get_auth_headers(),
        timeout=DEFAULT_API_TIMEOUT,
    )
    handle_auth_error(response)
    result = safe_json_response(response)
    print("Created draft video.")
    print(f"  ID: {result['id']}")
    print(f"  Title: {result['title']}")


def cmd_list(args):
    """List the caller's videos."""
    response = httpx.get(f"{API_BASE}/videos", headers=get_auth_headers(), timeout=DEFAULT_API_TIMEOUT)
    handle_auth_error(response)
    videos_list = safe_json_response(response)

    if not videos_list:
        print("No videos found.")
        return

    print(f"{'ID':<38} {'Video':<6} {'Thumb':<6} {'Title':<40}")
    print("-" * 92)
    for v in videos_list:
        title = v["title"][:38] + ".." if len(v["title"]) > 40 else v["title"]
        has_video = "yes" if v.get("video_url") else "-"
        has_thumb = "yes" if v.get("thumbnail_url") else "-"
        print(f"{v['id']:<38} {has_video:<6} {has_thumb:<6} {title:<40}")


def cmd_upload_thumbnail(args):
    """Upload a thumbnail image for a video."""
    file_path = Path(args.file)
    file_size = validate_file(file_path, MAX_THUMBNAIL_UPLOAD_SIZE)
    content_type = guess_content_type(file_path)
    if not content_type.startswith("image/"):
        raise CLIError(f"Not an image file: {file_path.name} ({content_type})")

    print(f"Uploading thumbnail: {file_path.name}")
    result = upload_file(f"{API_BASE}/thumbnail_upload/{args.video_id}", "thumbnail", file_path, file_size, content_type)
    print("Success! Thumbnail updated.")
    url = result.get("thumbnail_url") or ""
    print(f"  Thumbnail: {truncate_error(url, ERROR_SUMMARY_MAX_LENGTH)}")


def cmd_upload_video(args):
    """Upload the video file for a video."""
    file_path = Path(args.file)
    file_size = validate_file(file_path, MAX_VIDEO_UPLOAD_SIZE)
    content_type = guess_content_type(file_path)
    if content_type != "video/mp4":
        raise CLIError(f"Only MP4 files are supported, got {content_type}")

    print(f"Uploading video: {file_path.name}")
    result = upload_file(f"{API_BASE}/video_upload/{args.video_id}", "video", file_path, file_size, content_type)
    print("Success! Video stored.")
    print(f"  URL: {result.get('video_url')}")


def main():
    parser = argparse.ArgumentParser(prog="tubely", description="Tubely CLI - Upload videos and thumbnails")
    subparsers = parser.add_subparsers(dest="command", required=True)

    token_parser = subparsers.add_parser("token", help="Mint a development access token")
    token_parser.add_argument("user_id", help="User ID to issue the token to")
    token_parser.add_argument("--days", type=positive_days, default=1, help="Token lifetime in days (default: 1)")
    token_parser.set_defaults(func=cmd_token)

    create_parser = subparsers.add_parser("create", help="Create a draft video")
    create_parser.add_argument("title", help="Video title")
    create_parser.add_argument("-d", "--description", help="Video description")
    create_parser.set_defaults(func=cmd_create)

    list_parser = subparsers.add_parser("list", help="List your videos")
    list_parser.set_defaults(func=cmd_list)

    thumb_parser = subparsers.add_parser("upload-thumbnail", help="Upload a thumbnail image")
    thumb_parser.add_argument("video_id", help="Video ID")
    thumb_parser.add_argument("file", help="Image file to upload")
    thumb_parser.set_defaults(func=cmd_upload_thumbnail)

    video_parser = subparsers.add_parser("upload-video", help="Upload an MP4 video file")
    video_parser.add_argument("video_id", help="Video ID")
    video_parser.add_argument("file", help="MP4 file to upload")
    video_parser.set_defaults(func=cmd_upload_video)

    args = parser.parse_args()
    run_command(args.func, args)


if __name__ == "__main__":
    main()
