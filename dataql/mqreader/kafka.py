"""Apache Kafka peek reader.

Uses a throwaway consumer group with auto-commit disabled and never commits
offsets, so real consumer groups are not moved.
"""

import threading
import time
from datetime import datetime, timezone
from typing import Any, List, Optional

from kafka import KafkaConsumer, TopicPartition
from kafka.errors import KafkaError

from ..utils.error_handling import DataQLError, InvalidSourceError
from .types import (
    DEFAULT_MAX_MESSAGES,
    Message,
    MessageQueueReader,
    MQConfig,
    QueueMetadata,
    QueueType,
)

DEFAULT_WAIT_SECONDS = 5
MAX_FETCH_BYTES = 10 * 1024 * 1024


def peek_group_id(topic: str, consumer_group: str = "") -> str:
    """Consumer group used for peeking.

    A configured group gets a ``-dataql-peek`` suffix; otherwise a unique
    group is generated per reader.
    """
    if consumer_group:
        return f"{consumer_group}-dataql-peek"
    return f"dataql-peek-{topic}-{time.time_ns()}"


class KafkaReader(MessageQueueReader):
    """Reads Kafka records without committing offsets."""

    def __init__(self, config: MQConfig, consumer: Optional[Any] = None):
        """Initialize Kafka reader.

        Args:
            config: Parsed config; ``url`` holds comma-separated brokers
            consumer: Pre-built consumer (built on connect when None)
        """
        if not config.url:
            raise InvalidSourceError("broker URL is required")
        if not config.queue_name:
            raise InvalidSourceError("topic name is required")

        self.brokers = [b.strip() for b in config.url.split(",") if b.strip()]
        self.topic = config.queue_name
        self.consumer_group = config.options.get("group_id", "")
        self.max_messages = config.max_messages or DEFAULT_MAX_MESSAGES
        self.wait_seconds = config.wait_time_seconds or DEFAULT_WAIT_SECONDS

        self._consumer = consumer
        self._connected = False
        self._lock = threading.Lock()

    def connect(self) -> None:
        with self._lock:
            if self._connected:
                return

            if self._consumer is None:
                try:
                    self._consumer = KafkaConsumer(
                        self.topic,
                        bootstrap_servers=self.brokers,
                        group_id=peek_group_id(self.topic, self.consumer_group),
                        enable_auto_commit=False,
                        auto_offset_reset="earliest",
                        fetch_max_bytes=MAX_FETCH_BYTES,
                        consumer_timeout_ms=self.wait_seconds * 1000,
                    )
                except KafkaError as e:
                    raise DataQLError(
                        f"failed to connect to Kafka: {e}", source=self.topic
                    ) from e

            self._connected = True

    def peek(self, max_messages: int = 0) -> List[Message]:
        """Fetch up to ``max_messages`` records, stopping when the wait
        timeout elapses without new records."""
        self.connect()

        if max_messages <= 0:
            max_messages = self.max_messages

        messages: List[Message] = []
        seen_ids = set()
        deadline = time.monotonic() + self.wait_seconds

        while len(messages) < max_messages:
            remaining_ms = int((deadline - time.monotonic()) * 1000)
            if remaining_ms <= 0:
                break

            try:
                batches = self._consumer.poll(
                    timeout_ms=remaining_ms,
                    max_records=max_messages - len(messages),
                )
            except KafkaError as e:
                raise DataQLError(
                    f"failed to fetch message: {e}", source=self.topic
                ) from e

            if not batches:
                break

            for records in batches.values():
                for record in records:
                    record_id = f"{record.partition}:{record.offset}"
                    if record_id in seen_ids:
                        continue
                    seen_ids.add(record_id)
                    messages.append(convert_kafka_record(record, self.topic))

        return messages[:max_messages]

    def get_metadata(self) -> QueueMetadata:
        self.connect()

        try:
            partition_ids = self._consumer.partitions_for_topic(self.topic) or set()
            partitions = [TopicPartition(self.topic, p) for p in sorted(partition_ids)]
            beginning = self._consumer.beginning_offsets(partitions) if partitions else {}
            end = self._consumer.end_offsets(partitions) if partitions else {}
        except KafkaError as e:
            raise DataQLError(
                f"failed to read partitions: {e}", source=self.topic
            ) from e

        total = 0
        for tp in partitions:
            first = beginning.get(tp, 0)
            last = end.get(tp, 0)
            if last > first:
                total += last - first

        info = {
            "partitions": str(len(partitions)),
            "brokers": ",".join(self.brokers),
        }
        if self.consumer_group:
            info["consumer_group"] = self.consumer_group

        return QueueMetadata(
            name=self.topic,
            type=QueueType.KAFKA.value,
            approx_msg_count=total,
            additional_info=info,
        )

    def close(self) -> None:
        with self._lock:
            if self._consumer is not None:
                # autocommit=False: closing must not commit the peeked offsets
                self._consumer.close(autocommit=False)
                self._consumer = None
            self._connected = False


def convert_kafka_record(record: Any, topic: str) -> Message:
    """Convert a kafka-python ConsumerRecord to a Message."""
    metadata = {
        "partition": str(record.partition),
        "offset": str(record.offset),
    }

    if record.key:
        metadata["key"] = _decode(record.key)

    for header_key, header_value in record.headers or []:
        metadata[f"header_{header_key}"] = _decode(header_value)

    timestamp = None
    if record.timestamp and record.timestamp > 0:
        timestamp = datetime.fromtimestamp(record.timestamp / 1000, tz=timezone.utc)

    return Message(
        id=f"{record.partition}:{record.offset}",
        body=_decode(record.value),
        timestamp=timestamp,
        metadata=metadata,
        source=topic,
    )


def _decode(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def register(registry) -> None:
    """Register the Kafka factory on a ReaderRegistry."""
    registry.register(QueueType.KAFKA.value, KafkaReader)
