"""
Request and response bodies for the HTTP API.
Fields are camelCase on the wire and snake_case in Python.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class TodoIn(ApiModel):
    id: Optional[int] = None
    title: str = Field(..., min_length=1, max_length=200)
    done: bool = False
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=100)
    priority: int = Field(1, ge=1, le=5)

    def fields(self) -> dict[str, Any]:
        return self.model_dump(exclude={"id"})


class TodoOut(ApiModel):
    id: int
    title: str
    done: bool
    created_at: datetime
    updated_at: Optional[datetime] = None
    description: Optional[str] = None
    category: Optional[str] = None
    priority: int


class DocumentIn(ApiModel):
    name: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)


class DocumentOut(ApiModel):
    id: str
    name: str
    content: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)


class MessageRequest(ApiModel):
    content: str = Field(..., min_length=1)
    queue_name: Optional[str] = None
    message_type: Optional[str] = None


class MessageIn(ApiModel):
    id: Optional[str] = None
    content: str = Field(..., min_length=1)
    type: str = Field("info", min_length=1)
    created_at: Optional[datetime] = None
    source: Optional[str] = None
    properties: dict[str, Any] = Field(default_factory=dict)


class PublishResponse(ApiModel):
    message: str
    message_id: Optional[str] = None


class QueueHealth(ApiModel):
    healthy: bool
    timestamp: datetime
