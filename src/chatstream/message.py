from enum import Enum
from pydantic import BaseModel, Field, field_serializer


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"


class Message(BaseModel):
    role: MessageRole
    content: str

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value


class DrawingRequest(BaseModel):
    """An image generation request sent as a streamed chat completion.

    The backend reads the quantity and aspect ratio from the user
    message, and answers with ``![image](<url>)`` references in the
    streamed content.
    """

    model: str
    prompt: str
    quantity: int = Field(default=1, ge=1)
    ratio: str = "1:1"

    def to_messages(self) -> list[Message]:
        return [
            Message(role=MessageRole.SYSTEM, content=" "),
            Message(
                role=MessageRole.USER,
                content=f"{self.prompt};{self.quantity} image, ratio {self.ratio}",
            ),
        ]

    def request_body(self) -> dict:
        return {
            "model": self.model,
            "temperature": 1,
            "messages": [m.model_dump() for m in self.to_messages()],
            "stream": True,
            "stream_options": {"include_usage": True},
        }
