"""Wire models shared by the REST client and the realtime socket."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ChannelType = Literal["direct", "public", "private"]


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Team9User(_WireModel):
    id: str
    username: str = ""
    display_name: str | None = None
    email: str | None = None
    avatar_url: str | None = None
    is_online: bool | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.username or self.id


class Team9Channel(_WireModel):
    id: str
    name: str = ""
    type: ChannelType = "public"
    description: str | None = None
    tenant_id: str | None = None

    @property
    def is_direct(self) -> bool:
        return self.type == "direct"


class MessageAttachment(_WireModel):
    id: str = ""
    file_name: str = ""
    file_size: int = 0
    mime_type: str = ""
    url: str = ""
    file_key: str | None = None
    file_url: str | None = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


class Team9Message(_WireModel):
    id: str
    channel_id: str
    sender_id: str = ""
    content: str = ""
    type: Literal["text", "file", "system"] = "text"
    parent_id: str | None = None
    is_pinned: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    sender: Team9User | None = None
    attachments: list[MessageAttachment] = Field(default_factory=list)


class OutboundAttachment(_WireModel):
    """Attachment reference returned by a confirmed upload."""

    file_key: str
    file_name: str
    mime_type: str = "application/octet-stream"
    file_size: int = 0


class PresignedUpload(_WireModel):
    url: str
    key: str
    fields: dict[str, str] = Field(default_factory=dict)
