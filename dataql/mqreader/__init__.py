"""Message-queue peek readers.

Readers are built through a ReaderRegistry; the SQS and Kafka backends are
registered by ``ReaderRegistry.with_defaults()``.
"""

from .config import is_mq_url, parse_mq_url
from .registry import ReaderFactory, ReaderRegistry
from .types import (
    DEFAULT_MAX_MESSAGES,
    Message,
    MessageQueueReader,
    MQConfig,
    QueueMetadata,
    QueueType,
)

__all__ = [
    "DEFAULT_MAX_MESSAGES",
    "Message",
    "MessageQueueReader",
    "MQConfig",
    "QueueMetadata",
    "QueueType",
    "ReaderFactory",
    "ReaderRegistry",
    "is_mq_url",
    "parse_mq_url",
]
