"""Team9 REST API client."""

import time
from typing import Any
from urllib.parse import quote, urlsplit

import httpx
from loguru import logger
from pydantic import ValidationError

from team9link.errors import ApiError, AuthenticationError, ConfigurationError
from team9link.transport.models import (
    OutboundAttachment,
    PresignedUpload,
    Team9Channel,
    Team9Message,
    Team9User,
)


class RestClient:
    """
    Thin async client for the Team9 HTTP API.

    All requests go to ``{base_url}/api/v1`` with bearer authentication.
    401/403 responses raise AuthenticationError so callers can tell a revoked
    token apart from a flaky server.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not token:
            raise ConfigurationError("Team9 bot token is required")
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/api/v1",
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )
        self.last_success_at: float | None = None

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            raise ApiError(f"Team9 API request {method} {path} failed: {e}") from e

        if response.status_code in (401, 403):
            detail = response.text.strip() or "Authentication failed"
            raise AuthenticationError(
                f"Team9 auth error ({response.status_code}): {detail[:200]}",
                status_code=response.status_code,
            )
        if not response.is_success:
            raise ApiError(
                f"Team9 API error: {response.status_code} {response.reason_phrase} - {response.text[:200]}",
                status_code=response.status_code,
            )

        self.last_success_at = time.monotonic()
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # Users

    async def get_me(self) -> Team9User:
        return Team9User.model_validate(await self._request("GET", "/users/me"))

    # Channels

    async def get_user_channels(self) -> list[Team9Channel]:
        data = await self._request("GET", "/im/channels")
        channels: list[Team9Channel] = []
        for item in data or []:
            try:
                channels.append(Team9Channel.model_validate(item))
            except ValidationError as e:
                # Unknown channel kinds and partial rows are skipped, not fatal.
                row_id = item.get("id") if isinstance(item, dict) else None
                logger.warning(f"Skipping unreadable channel {row_id or '?'}: {e.error_count()} errors")
        return channels

    async def get_channel(self, channel_id: str) -> Team9Channel:
        return Team9Channel.model_validate(await self._request("GET", f"/im/channels/{channel_id}"))

    async def get_or_create_dm_channel(self, user_id: str) -> Team9Channel:
        """Get or create a direct message channel with a user."""
        return Team9Channel.model_validate(await self._request("POST", f"/im/channels/dm/{user_id}"))

    # Messages

    async def send_message(
        self,
        channel_id: str,
        content: str,
        *,
        parent_id: str | None = None,
        attachments: list[OutboundAttachment] | None = None,
    ) -> Team9Message:
        body: dict[str, Any] = {"content": content}
        if parent_id:
            body["parentId"] = parent_id
        if attachments:
            body["attachments"] = [a.model_dump(by_alias=True) for a in attachments]
        data = await self._request("POST", f"/im/channels/{channel_id}/messages", json=body)
        return Team9Message.model_validate(data)

    async def update_message(self, message_id: str, content: str) -> Team9Message:
        data = await self._request("PATCH", f"/im/messages/{message_id}", json={"content": content})
        return Team9Message.model_validate(data)

    async def delete_message(self, message_id: str) -> None:
        await self._request("DELETE", f"/im/messages/{message_id}")

    async def add_reaction(self, message_id: str, emoji: str) -> None:
        await self._request("POST", f"/im/messages/{message_id}/reactions", json={"emoji": emoji})

    async def remove_reaction(self, message_id: str, emoji: str) -> None:
        await self._request("DELETE", f"/im/messages/{message_id}/reactions/{quote(emoji, safe='')}")

    # Files

    async def create_presigned_upload(
        self,
        filename: str,
        content_type: str,
        file_size: int,
        channel_id: str | None = None,
    ) -> PresignedUpload:
        body: dict[str, Any] = {"filename": filename, "contentType": content_type, "fileSize": file_size}
        if channel_id:
            body["channelId"] = channel_id
        return PresignedUpload.model_validate(await self._request("POST", "/files/presign", json=body))

    async def upload_to_storage(
        self,
        upload: PresignedUpload,
        data: bytes,
        filename: str,
        content_type: str,
    ) -> None:
        """POST the file to the presigned storage URL (no bearer token)."""
        request = self._client.build_request(
            "POST",
            upload.url,
            data=dict(upload.fields),
            files={"file": (filename, data, content_type)},
        )
        request.headers.pop("Authorization", None)
        try:
            response = await self._client.send(request)
        except httpx.HTTPError as e:
            raise ApiError(f"Storage upload failed: {e}") from e
        if not response.is_success:
            raise ApiError(
                f"Storage upload failed: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

    async def confirm_upload(
        self,
        key: str,
        file_name: str,
        channel_id: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"key": key, "fileName": file_name}
        if channel_id:
            body["channelId"] = channel_id
        data = await self._request("POST", "/files/confirm", json=body)
        return data if isinstance(data, dict) else {}

    async def get_file_download_url(self, key: str) -> str:
        data = await self._request("GET", "/files/download-url", params={"key": key})
        if isinstance(data, dict) and data.get("url"):
            return str(data["url"])
        raise ApiError(f"No download URL returned for file {key}")

    async def fetch_bytes(self, url: str, max_bytes: int) -> tuple[bytes, str | None]:
        """
        Download a remote file, refusing anything larger than max_bytes.

        The bearer token is only sent to the Team9 host itself.
        """
        request = self._client.build_request("GET", url)
        if urlsplit(url).netloc != urlsplit(self.base_url).netloc:
            request.headers.pop("Authorization", None)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise ApiError(f"Download failed for {url}: {e}") from e
        try:
            if not response.is_success:
                raise ApiError(f"Download failed for {url}: {response.status_code}", status_code=response.status_code)
            chunks: list[bytes] = []
            total = 0
            async for chunk in response.aiter_bytes():
                total += len(chunk)
                if total > max_bytes:
                    raise ApiError(f"Download from {url} exceeds {max_bytes} bytes")
                chunks.append(chunk)
        finally:
            await response.aclose()
        logger.debug(f"Downloaded {total} bytes from {url}")
        return b"".join(chunks), response.headers.get("content-type")
