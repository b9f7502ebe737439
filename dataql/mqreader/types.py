"""Message-queue reader types.

Readers peek at messages without consuming them: nothing is deleted,
acknowledged or committed, so inspecting a queue never disturbs the real
consumers of it.
"""

import re
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

DEFAULT_MAX_MESSAGES = 10
DEFAULT_WAIT_TIME_SECONDS = 0
MAX_MESSAGES_PER_SQS_REQUEST = 10


class QueueType(str, Enum):
    """Message-queue backends known to DataQL."""

    SQS = "sqs"
    KAFKA = "kafka"
    RABBITMQ = "rabbitmq"
    PULSAR = "pulsar"
    PUBSUB = "pubsub"


class Message(BaseModel):
    """A message read from any queue backend."""

    id: str
    body: str = ""
    timestamp: Optional[datetime] = None
    metadata: Dict[str, str] = Field(
        default_factory=dict,
        description="Backend-specific attributes (headers, offsets, receipt handles)",
    )
    source: str = Field(default="", description="Queue, topic or exchange the message came from")
    receive_count: int = Field(default=0, ge=0)


class QueueMetadata(BaseModel):
    """Information about a queue or topic."""

    name: str
    type: str
    approx_msg_count: int = Field(default=0, ge=0)
    additional_info: Dict[str, str] = Field(default_factory=dict)


class MQConfig(BaseModel):
    """Parsed connection descriptor for a queue."""

    type: str
    url: str = ""
    region: str = ""
    queue_name: str = ""
    max_messages: int = Field(default=DEFAULT_MAX_MESSAGES, gt=0)
    wait_time_seconds: int = Field(default=DEFAULT_WAIT_TIME_SECONDS, ge=0)
    credentials: Dict[str, str] = Field(default_factory=dict)
    options: Dict[str, str] = Field(default_factory=dict)

    def table_name(self) -> str:
        """Derive a SQL-safe table name from the queue name."""
        name = self.queue_name.replace("-", "_").replace(".", "_")
        name = re.sub(r"[^a-zA-Z0-9_]", "", name)

        if name and name[0].isdigit():
            name = "mq_" + name

        return name or "messages"


class MessageQueueReader(ABC):
    """Non-destructive reader over a queue or topic."""

    @abstractmethod
    def connect(self) -> None:
        """Establish the connection. Calling it twice is a no-op."""
        pass

    @abstractmethod
    def peek(self, max_messages: int = 0) -> List[Message]:
        """Read up to ``max_messages`` messages without consuming them.

        Args:
            max_messages: Upper bound; 0 or less uses the configured default

        Returns:
            Messages in the order they were received
        """
        pass

    @abstractmethod
    def get_metadata(self) -> QueueMetadata:
        """Describe the queue or topic."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the connection."""
        pass

    def __enter__(self) -> "MessageQueueReader":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
