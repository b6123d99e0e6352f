from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProcessMessageRequest(_CamelModel):
    user_id: str = Field(min_length=1)
    message: str
    timestamp: Optional[float] = None


class ProcessMessageResult(_CamelModel):
    success: bool
    response_text: str
    response_type: Optional[str] = None
    confidence: Optional[float] = None
    actions_executed_count: Optional[int] = None
    trace_id: Optional[str] = None


class MessengerEvent(_CamelModel):
    sender_id: str = Field(min_length=1)
    text: str
    timestamp: Optional[float] = None


class MessengerReply(_CamelModel):
    recipient_id: str
    text: str
    linked: bool = False
