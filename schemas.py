from typing import Annotated, Any, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

# WebSocket event names
SET_NAME = "user:setName"
CHAT_MESSAGE = "chat:message"
USERS_UPDATE = "users:update"
ERROR = "error"

MediaKind = Literal["image", "audio", "video", "file"]


# Frame: every WebSocket text frame in either direction
class Envelope(BaseModel):
    event: str = Field(..., description="Event name, e.g. user:setName or chat:message")
    data: Any = None


# Chat message variants as sent by clients (the server adds `time`).
# Extra keys are kept so a message is relayed exactly as it was sent.
class _MessageBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = Field(..., description="Sender name as declared by the client")


class TextMessage(_MessageBase):
    type: Literal["text"]
    text: str


class ImageMessage(_MessageBase):
    type: Literal["image"]
    url: str


class AudioMessage(_MessageBase):
    type: Literal["audio"]
    url: str


class VideoMessage(_MessageBase):
    type: Literal["video"]
    url: str


ChatMessage = Annotated[
    Union[TextMessage, ImageMessage, AudioMessage, VideoMessage],
    Field(discriminator="type"),
]

chat_message_adapter: TypeAdapter = TypeAdapter(ChatMessage)


# Media ingest
class MediaReference(BaseModel):
    url: str
    kind: MediaKind


class UploadResponse(BaseModel):
    ok: bool = True
    url: str
    type: MediaKind

    @classmethod
    def from_reference(cls, ref: MediaReference) -> "UploadResponse":
        return cls(url=ref.url, type=ref.kind)


class ServerStatus(BaseModel):
    message: str
    online: int = Field(..., description="Number of open WebSocket connections")
    users: List[str] = Field(default_factory=list)
