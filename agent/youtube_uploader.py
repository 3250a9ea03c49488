"""
YouTube publishing via the Data API v3.

Authenticates with a stored OAuth refresh token, uploads the video as a
resumable upload, then sets the custom thumbnail. A thumbnail failure is
logged and ignored; the video is already live by then.
"""

import asyncio
import logging
import os

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

from models.content import PublishReceipt, Script

logger = logging.getLogger(__name__)

YOUTUBE_CLIENT_ID: str = os.getenv("YOUTUBE_CLIENT_ID", "")
YOUTUBE_CLIENT_SECRET: str = os.getenv("YOUTUBE_CLIENT_SECRET", "")
YOUTUBE_REFRESH_TOKEN: str = os.getenv("YOUTUBE_REFRESH_TOKEN", "")
YOUTUBE_PRIVACY_STATUS: str = os.getenv("YOUTUBE_PRIVACY_STATUS", "public")
YOUTUBE_CATEGORY_ID: str = os.getenv("YOUTUBE_CATEGORY_ID", "28")  # Science & Technology

SCOPES = [
    "https://www.googleapis.com/auth/youtube.upload",
    "https://www.googleapis.com/auth/youtube",
]
_TOKEN_URI = "https://oauth2.googleapis.com/token"


class UploadError(Exception):
    """Upload could not be completed."""


def watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def _credentials() -> Credentials:
    missing = [
        name for name, value in (
            ("YOUTUBE_CLIENT_ID", YOUTUBE_CLIENT_ID),
            ("YOUTUBE_CLIENT_SECRET", YOUTUBE_CLIENT_SECRET),
            ("YOUTUBE_REFRESH_TOKEN", YOUTUBE_REFRESH_TOKEN),
        ) if not value
    ]
    if missing:
        raise UploadError(f"YouTube credentials not configured: {', '.join(missing)}")

    creds = Credentials(
        token=None,
        refresh_token=YOUTUBE_REFRESH_TOKEN,
        client_id=YOUTUBE_CLIENT_ID,
        client_secret=YOUTUBE_CLIENT_SECRET,
        token_uri=_TOKEN_URI,
        scopes=SCOPES,
    )
    creds.refresh(Request())
    return creds


def video_body(script: Script) -> dict:
    return {
        "snippet": {
            "title": script.title[:100],
            "description": script.description,
            "tags": script.tags,
            "categoryId": YOUTUBE_CATEGORY_ID,
            "defaultLanguage": "en",
            "defaultAudioLanguage": "en",
        },
        "status": {
            "privacyStatus": YOUTUBE_PRIVACY_STATUS,
            "selfDeclaredMadeForKids": False,
        },
    }


def _upload_sync(video_path: str, thumbnail_path: str, script: Script) -> PublishReceipt:
    if not os.path.exists(video_path):
        raise UploadError(f"Video file not found: {video_path}")

    youtube = build("youtube", "v3", credentials=_credentials(), cache_discovery=False)

    media = MediaFileUpload(video_path, chunksize=-1, resumable=True, mimetype="video/*")
    request = youtube.videos().insert(part="snippet,status", body=video_body(script), media_body=media)

    logger.info("Uploading video to YouTube", extra={"path": video_path, "title": script.title})
    try:
        response = None
        while response is None:
            status, response = request.next_chunk()
            if status:
                logger.debug("Upload progress", extra={"pct": int(status.progress() * 100)})
    except HttpError as exc:
        raise UploadError(f"YouTube rejected the upload: {exc}") from exc

    video_id = (response or {}).get("id")
    if not video_id:
        raise UploadError("Failed to get video ID from upload")

    if thumbnail_path and os.path.exists(thumbnail_path):
        try:
            youtube.thumbnails().set(
                videoId=video_id,
                media_body=MediaFileUpload(thumbnail_path, mimetype="image/png"),
            ).execute()
        except Exception as exc:
            logger.warning("Thumbnail upload failed; video is still published",
                           extra={"video_id": video_id, "error": str(exc)})

    return PublishReceipt(platform_video_id=video_id, public_url=watch_url(video_id))


async def publish(video_path: str, thumbnail_path: str, script: Script) -> PublishReceipt:
    receipt = await asyncio.to_thread(_upload_sync, video_path, thumbnail_path, script)
    logger.info("Video published", extra={"video_id": receipt.platform_video_id,
                "url": receipt.public_url})
    return receipt
