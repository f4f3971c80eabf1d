"""
Echo detection.

An echo is a frame on the publish topic whose raw payload equals the last
published payload. Comparison is on raw wire text, never on the transformed
value: transforms are one-way (e.g. extracting a sub-field).
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class PublishRecord:
    """Last successful publish, used as the echo comparison key."""

    topic: str
    raw_payload: str
    timestamp: datetime

    @classmethod
    def now(cls, topic: str, raw_payload: str) -> "PublishRecord":
        return cls(topic=topic, raw_payload=raw_payload, timestamp=datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            'topic': self.topic,
            'raw_payload': self.raw_payload,
            'timestamp': self.timestamp.isoformat(),
        }


def is_echo(
    topic: str,
    raw: str,
    publish_topic: str,
    last_publish: Optional[PublishRecord],
) -> bool:
    """Pure echo predicate."""
    return (
        bool(publish_topic)
        and topic == publish_topic
        and last_publish is not None
        and raw == last_publish.raw_payload
    )


class EchoDetector:
    """
    Tracks echo status across frames.

    Only frames on the publish topic are relevant: they set the status to
    the predicate's result. Frames on other topics leave it unchanged.
    """

    def __init__(self):
        self.echoed = False

    def observe(
        self,
        topic: str,
        raw: str,
        publish_topic: str,
        last_publish: Optional[PublishRecord],
    ) -> bool:
        """Returns True if this frame is an echo."""
        if not publish_topic or topic != publish_topic:
            return False
        self.echoed = is_echo(topic, raw, publish_topic, last_publish)
        return self.echoed

    def reset(self) -> None:
        self.echoed = False
