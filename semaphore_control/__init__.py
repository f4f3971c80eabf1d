"""
semaphore_control - Staged publish/subscribe control bridge

Bounded Context: One panel control bound to one broker connection
Responsibilities:
  - Staged, user-edited value per control mode (PublishStaging)
  - Incoming frame decoding and optional JSONata transform (MessageProcessor)
  - Echo detection against the last published raw payload (EchoDetector)
  - Composition and publish preconditions (ControlBridge)

Design Philosophy:
  - Staged value is never overwritten by traffic (unless follow_incoming)
  - Publishing is always an explicit action, in every mode
  - Stale transport events are rejected by connection handle identity
  - Transform failures degrade to raw passthrough, never to user errors
"""

from .bridge import ControlBridge, PublishOutcome
from .config import PanelConfig
from .echo import EchoDetector, PublishRecord, is_echo
from .processor import (
    JsonataEvaluator,
    LastReceived,
    MessageProcessor,
    TransformError,
    TransformEvaluator,
)
from .staging import (
    Boolean,
    ControlMode,
    ControlModel,
    Fixed,
    Numeric,
    PublishStaging,
    StagedValue,
    StagingError,
    Text,
)

__all__ = [
    "ControlBridge",
    "PublishOutcome",
    "PanelConfig",
    "EchoDetector",
    "PublishRecord",
    "is_echo",
    "JsonataEvaluator",
    "LastReceived",
    "MessageProcessor",
    "TransformError",
    "TransformEvaluator",
    "Boolean",
    "ControlMode",
    "ControlModel",
    "Fixed",
    "Numeric",
    "PublishStaging",
    "StagedValue",
    "StagingError",
    "Text",
]
