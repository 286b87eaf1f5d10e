"""Inbound attachment download and outbound media upload."""

import asyncio
import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlsplit

from loguru import logger

from team9link.errors import ApiError, DeliveryError
from team9link.transport.models import MessageAttachment, OutboundAttachment
from team9link.transport.rest import RestClient

DEFAULT_MAX_BYTES = 5 * 1024 * 1024


@dataclass
class MediaInfo:
    """A downloaded attachment saved on local disk."""

    path: str
    content_type: str | None
    placeholder: str


def infer_placeholder(mime_type: str | None) -> str:
    """Placeholder tag for a MIME type."""
    mime = mime_type or ""
    if mime.startswith("image/"):
        return "<media:image>"
    if mime.startswith("video/"):
        return "<media:video>"
    if mime.startswith("audio/"):
        return "<media:audio>"
    return "<media:document>"


def build_attachment_placeholder(attachments: list[MessageAttachment]) -> str:
    """
    Fallback body for attachment-only messages.

    ``<media:image> (2 images)`` when every attachment is an image,
    otherwise ``<media:document> (3 files)``.
    """
    if not attachments:
        return ""
    all_images = all(a.is_image for a in attachments)
    label = "image" if all_images else "file"
    count = len(attachments)
    suffix = label if count == 1 else f"{label}s"
    tag = "<media:image>" if all_images else "<media:document>"
    return f"{tag} ({count} {suffix})"


def build_media_payload(media: list[MediaInfo]) -> dict[str, object]:
    """Media fields for the turn context: first item plus full lists."""
    if not media:
        return {}
    paths = [m.path for m in media]
    types = [m.content_type for m in media if m.content_type]
    return {
        "media_path": media[0].path,
        "media_url": media[0].path,
        "media_type": media[0].content_type,
        "media_paths": paths,
        "media_urls": paths,
        "media_types": types,
    }


def _guess_type(name: str, preferred: str | None = None) -> str:
    guessed, _ = mimetypes.guess_type(name)
    return preferred or guessed or "application/octet-stream"


class MediaClient:
    """Moves files between Team9 storage and local disk for one account."""

    def __init__(self, rest: RestClient, media_dir: Path, max_bytes: int = DEFAULT_MAX_BYTES):
        self.rest = rest
        self.media_dir = media_dir
        self.max_bytes = max_bytes

    async def resolve_attachment_url(self, attachment: MessageAttachment) -> str:
        # Presigned URLs work with private buckets, so prefer the file key.
        if attachment.file_key:
            return await self.rest.get_file_download_url(attachment.file_key)
        if attachment.file_url:
            return attachment.file_url
        if attachment.url:
            return attachment.url
        raise ApiError(f"Attachment {attachment.id} has no downloadable URL")

    async def download_attachments(self, attachments: list[MessageAttachment]) -> list[MediaInfo]:
        """Download and save every attachment; failures are logged and skipped."""
        results: list[MediaInfo] = []
        for attachment in attachments:
            try:
                url = await self.resolve_attachment_url(attachment)
                data, content_type = await self.rest.fetch_bytes(url, self.max_bytes)
                content_type = attachment.mime_type or content_type
                path = await asyncio.to_thread(self.save_inbound, data, content_type, attachment.file_name or url)
                results.append(
                    MediaInfo(
                        path=str(path),
                        content_type=content_type,
                        placeholder=infer_placeholder(content_type),
                    )
                )
                logger.debug(f"Saved attachment {attachment.id} to {path}")
            except Exception as e:
                logger.error(f"Failed to download attachment {attachment.id} ({attachment.file_name}): {e}")
        return results

    def save_inbound(self, data: bytes, content_type: str | None, name_hint: str) -> Path:
        inbound = self.media_dir / "inbound"
        inbound.mkdir(parents=True, exist_ok=True)
        name = Path(unquote(urlsplit(name_hint).path or name_hint)).name or "file"
        suffix = Path(name).suffix or (mimetypes.guess_extension(content_type or "") or "")
        path = inbound / f"{uuid.uuid4().hex[:12]}-{Path(name).stem}{suffix}"
        path.write_bytes(data)
        return path

    async def load(self, source: str) -> tuple[bytes, str, str]:
        """Read a remote URL or local path. Returns (data, filename, content_type)."""
        parts = urlsplit(source)
        if parts.scheme in ("http", "https"):
            data, content_type = await self.rest.fetch_bytes(source, self.max_bytes)
            filename = Path(unquote(parts.path)).name or "file"
            return data, filename, _guess_type(filename, (content_type or "").split(";")[0] or None)

        path = Path(unquote(parts.path) if parts.scheme == "file" else source).expanduser()
        if not path.is_file():
            raise DeliveryError(f"Media file not found: {source}")
        if path.stat().st_size > self.max_bytes:
            raise DeliveryError(f"Media file {path} exceeds {self.max_bytes} bytes")
        data = await asyncio.to_thread(path.read_bytes)
        return data, path.name, _guess_type(path.name)

    async def upload(
        self,
        data: bytes,
        filename: str,
        content_type: str,
        channel_id: str | None = None,
    ) -> OutboundAttachment:
        """Presign, upload to storage, then confirm."""
        presigned = await self.rest.create_presigned_upload(filename, content_type, len(data), channel_id)
        await self.rest.upload_to_storage(presigned, data, filename, content_type)
        confirmed = await self.rest.confirm_upload(presigned.key, filename, channel_id)
        return OutboundAttachment(
            file_key=presigned.key,
            file_name=str(confirmed.get("fileName") or filename),
            mime_type=str(confirmed.get("mimeType") or content_type),
            file_size=int(confirmed.get("fileSize") or len(data)),
        )

    async def upload_from_source(self, source: str, channel_id: str | None = None) -> OutboundAttachment:
        try:
            data, filename, content_type = await self.load(source)
            return await self.upload(data, filename, content_type, channel_id)
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"Failed to upload media {source}: {e}") from e
