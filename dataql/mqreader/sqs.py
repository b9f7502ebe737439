"""AWS SQS peek reader.

Messages are received with ``VisibilityTimeout=0`` and never deleted, so
they become visible to other consumers again immediately.
"""

import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..utils.error_handling import DataQLError, InvalidSourceError
from .types import (
    DEFAULT_MAX_MESSAGES,
    MAX_MESSAGES_PER_SQS_REQUEST,
    Message,
    MessageQueueReader,
    MQConfig,
    QueueMetadata,
    QueueType,
)

SQS_MAX_WAIT_SECONDS = 20

METADATA_ATTRIBUTES = [
    "ApproximateNumberOfMessages",
    "ApproximateNumberOfMessagesNotVisible",
    "ApproximateNumberOfMessagesDelayed",
    "CreatedTimestamp",
    "LastModifiedTimestamp",
]


class SQSReader(MessageQueueReader):
    """Reads SQS messages without deleting them."""

    def __init__(self, config: MQConfig, client: Optional[Any] = None):
        """Initialize SQS reader.

        Args:
            config: Parsed queue config (needs queue_name or url)
            client: Pre-built boto3 SQS client (built on connect when None)
        """
        if not config.queue_name and not config.url:
            raise InvalidSourceError("queue name or URL is required")

        self.queue_url = config.url
        self.queue_name = config.queue_name
        self.region = config.region
        self.endpoint = config.options.get("endpoint", "")
        self.max_messages = config.max_messages or DEFAULT_MAX_MESSAGES
        self.wait_time_seconds = min(max(config.wait_time_seconds, 0), SQS_MAX_WAIT_SECONDS)

        self._client = client
        self._connected = False
        self._lock = threading.Lock()

    def connect(self) -> None:
        with self._lock:
            if self._connected:
                return

            try:
                if self._client is None:
                    self._client = self._build_client()

                if not self.queue_url:
                    response = self._client.get_queue_url(QueueName=self.queue_name)
                    self.queue_url = response["QueueUrl"]
            except (BotoCoreError, ClientError) as e:
                raise DataQLError(
                    f"failed to connect to SQS queue: {e}",
                    source=self.queue_name or self.queue_url,
                ) from e

            self._connected = True

    def _build_client(self) -> Any:
        region = self.region or os.environ.get("AWS_REGION") or os.environ.get(
            "AWS_DEFAULT_REGION"
        )
        endpoint = (
            self.endpoint
            or os.environ.get("AWS_ENDPOINT_URL_SQS")
            or os.environ.get("AWS_ENDPOINT_URL")
        )
        return boto3.client(
            "sqs",
            region_name=region or None,
            endpoint_url=endpoint or None,
        )

    def peek(self, max_messages: int = 0) -> List[Message]:
        """Receive up to ``max_messages`` messages, leaving them on the queue.

        SQS caps a receive call at 10 messages, so larger peeks are split
        into several calls. Duplicates across calls are dropped.
        """
        self.connect()

        if max_messages <= 0:
            max_messages = self.max_messages

        messages: List[Message] = []
        seen_ids = set()
        remaining = max_messages

        while remaining > 0:
            batch_size = min(remaining, MAX_MESSAGES_PER_SQS_REQUEST)
            try:
                response = self._client.receive_message(
                    QueueUrl=self.queue_url,
                    MaxNumberOfMessages=batch_size,
                    VisibilityTimeout=0,
                    WaitTimeSeconds=self.wait_time_seconds,
                    AttributeNames=["All"],
                    MessageAttributeNames=["All"],
                )
            except (BotoCoreError, ClientError) as e:
                raise DataQLError(
                    f"failed to receive messages: {e}", source=self.queue_url
                ) from e

            batch = response.get("Messages", [])
            if not batch:
                break

            for raw in batch:
                message_id = raw.get("MessageId", "")
                if message_id in seen_ids:
                    continue
                seen_ids.add(message_id)
                messages.append(convert_sqs_message(raw, self.queue_url))

            remaining -= len(batch)
            if len(batch) < batch_size:
                break

        return messages

    def get_metadata(self) -> QueueMetadata:
        self.connect()

        try:
            response = self._client.get_queue_attributes(
                QueueUrl=self.queue_url,
                AttributeNames=METADATA_ATTRIBUTES,
            )
        except (BotoCoreError, ClientError) as e:
            raise DataQLError(
                f"failed to get queue attributes: {e}", source=self.queue_url
            ) from e

        attributes: Dict[str, str] = response.get("Attributes", {})
        count = attributes.get("ApproximateNumberOfMessages", "0")

        return QueueMetadata(
            name=self.queue_name,
            type=QueueType.SQS.value,
            approx_msg_count=int(count) if count.isdigit() else 0,
            additional_info=dict(attributes),
        )

    def close(self) -> None:
        """Drop the client; SQS keeps no persistent connection."""
        with self._lock:
            self._connected = False
            self._client = None


def convert_sqs_message(raw: Dict[str, Any], queue_url: str) -> Message:
    """Convert a boto3 ``receive_message`` entry to a Message."""
    metadata: Dict[str, str] = {}
    timestamp = None
    receive_count = 0

    if raw.get("ReceiptHandle"):
        metadata["receipt_handle"] = raw["ReceiptHandle"]
    if raw.get("MD5OfBody"):
        metadata["md5_of_body"] = raw["MD5OfBody"]

    for key, value in raw.get("Attributes", {}).items():
        metadata[key] = value
        if key == "SentTimestamp" and value.isdigit():
            timestamp = datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
        elif key == "ApproximateReceiveCount" and value.isdigit():
            receive_count = int(value)

    for key, attr in raw.get("MessageAttributes", {}).items():
        if "StringValue" in attr:
            metadata[f"attr_{key}"] = attr["StringValue"]

    return Message(
        id=raw.get("MessageId", ""),
        body=raw.get("Body", ""),
        timestamp=timestamp,
        metadata=metadata,
        source=queue_url,
        receive_count=receive_count,
    )


def register(registry) -> None:
    """Register the SQS factory on a ReaderRegistry."""
    registry.register(QueueType.SQS.value, SQSReader)
