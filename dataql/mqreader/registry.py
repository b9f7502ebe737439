"""Message-queue reader registry.

Backends plug in by registering a factory for their queue type; dispatch is
a dictionary lookup, so adding a backend never touches this module.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from ..utils.error_handling import (
    BackendNotImplementedError,
    ReaderNotRegisteredError,
    UnsupportedQueueTypeError,
)
from .config import parse_mq_url
from .types import MessageQueueReader, MQConfig, QueueType

logger = logging.getLogger(__name__)

ReaderFactory = Callable[[MQConfig], MessageQueueReader]


def _normalize_type(queue_type) -> str:
    return str(getattr(queue_type, "value", queue_type)).lower()


# Queue types that have no registered factory yet, and the error to report
_UNAVAILABLE: Dict[str, Tuple[type, str, Optional[str]]] = {
    QueueType.SQS.value: (
        ReaderNotRegisteredError,
        "SQS reader not registered. Register dataql.mqreader.sqs "
        "(ReaderRegistry.with_defaults() does this)",
        "dataql.mqreader.sqs",
    ),
    QueueType.KAFKA.value: (
        ReaderNotRegisteredError,
        "Kafka reader not registered. Register dataql.mqreader.kafka "
        "(ReaderRegistry.with_defaults() does this)",
        "dataql.mqreader.kafka",
    ),
    QueueType.RABBITMQ.value: (
        BackendNotImplementedError,
        "rabbitmq support coming soon",
        None,
    ),
    QueueType.PULSAR.value: (
        BackendNotImplementedError,
        "pulsar support coming soon",
        None,
    ),
    QueueType.PUBSUB.value: (
        BackendNotImplementedError,
        "google pub/sub support coming soon",
        None,
    ),
}


class ReaderRegistry:
    """Maps queue types to reader factories.

    Build one at startup and hand it to whatever needs readers; registries
    are independent of each other.
    """

    def __init__(self):
        self._factories: Dict[str, ReaderFactory] = {}

    @classmethod
    def with_defaults(cls) -> "ReaderRegistry":
        """Registry with the SQS and Kafka backends registered."""
        from . import kafka, sqs

        registry = cls()
        sqs.register(registry)
        kafka.register(registry)
        return registry

    def register(self, queue_type: str, factory: ReaderFactory) -> None:
        """Associate a queue type with a reader factory.

        Registering the same type twice replaces the earlier factory.
        """
        queue_type = _normalize_type(queue_type)
        if queue_type in self._factories:
            logger.debug("Replacing reader factory for %s", queue_type)
        self._factories[queue_type] = factory

    def unregister(self, queue_type: str) -> None:
        """Remove a factory; unknown types are ignored."""
        self._factories.pop(_normalize_type(queue_type), None)

    def registered_types(self) -> List[str]:
        """Queue types with a registered factory, sorted."""
        return sorted(self._factories)

    def is_registered(self, queue_type: str) -> bool:
        return _normalize_type(queue_type) in self._factories

    def new_reader(self, config: Optional[MQConfig]) -> MessageQueueReader:
        """Construct a reader for a parsed config.

        Raises:
            ValueError: If config is None
            ReaderNotRegisteredError: Backend exists but was not registered
            BackendNotImplementedError: Backend is recognized but unavailable
            UnsupportedQueueTypeError: Queue type is unknown
        """
        if config is None:
            raise ValueError("config cannot be None")

        queue_type = config.type.lower()
        factory = self._factories.get(queue_type)
        if factory is not None:
            return factory(config)

        unavailable = _UNAVAILABLE.get(queue_type)
        if unavailable is None:
            raise UnsupportedQueueTypeError(
                f"unsupported message queue type: {config.type}", queue_type=queue_type
            )

        error_cls, message, module = unavailable
        if error_cls is ReaderNotRegisteredError:
            raise ReaderNotRegisteredError(message, queue_type=queue_type, module=module)
        raise error_cls(message, queue_type=queue_type)

    def new_reader_from_url(self, url: str) -> MessageQueueReader:
        """Parse a connection URL and construct its reader."""
        return self.new_reader(parse_mq_url(url))
