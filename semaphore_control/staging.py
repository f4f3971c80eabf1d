"""
PublishStaging - per-mode staged value
======================================

Bounded Context: User-edited value pending publish

The staged value is what the user is about to send. It is seeded from the
control model, edited only through ``edit()``, and encoded to a wire payload
only when the bridge publishes. Incoming messages never touch it (the
opt-in ``follow()`` path is the single exception, see ControlBridge).

Mode table:

    Mode    Seed                      Encode
    ------  ------------------------  ---------------------------------
    Text    ""                        value verbatim
    Slider  default_value or min      number as string ("5", "2.5")
    Switch  default_on                on_value if True else off_value
    Button  button_payload            button_payload (not user-editable)
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from semaphore_mqtt.config import ConfigError


class ControlMode(str, Enum):
    """Control rendered by the panel."""

    TEXT = "Text"
    SLIDER = "Slider"
    SWITCH = "Switch"
    BUTTON = "Button"


class StagingError(ValueError):
    """Raised when an edit does not fit the active control mode."""
    pass


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Numeric:
    value: float


@dataclass(frozen=True)
class Boolean:
    value: bool


@dataclass(frozen=True)
class Fixed:
    value: str


StagedValue = Union[Text, Numeric, Boolean, Fixed]

MODE_VARIANTS = {
    ControlMode.TEXT: Text,
    ControlMode.SLIDER: Numeric,
    ControlMode.SWITCH: Boolean,
    ControlMode.BUTTON: Fixed,
}


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, float):
        return format_number(value)
    return str(value)


@dataclass(frozen=True)
class ControlModel:
    """
    Mode-specific defaults.

    Only the fields of the active mode matter; the rest keep their defaults.
    """

    label: str = "Send"
    min_value: float = 0
    max_value: float = 100
    step: float = 1
    default_value: Optional[float] = None
    on_value: str = "true"
    off_value: str = "false"
    default_on: bool = False
    button_payload: str = ""

    def __post_init__(self):
        # YAML turns unquoted literals into numbers or bools; payloads are text
        for name in ("on_value", "off_value", "button_payload"):
            object.__setattr__(self, name, _literal(getattr(self, name)))

        if self.min_value > self.max_value:
            raise ConfigError(
                f"min_value ({self.min_value}) must be <= max_value ({self.max_value})"
            )
        if self.step <= 0:
            raise ConfigError(f"step must be positive, got {self.step}")
        if self.default_value is not None and not (
            self.min_value <= self.default_value <= self.max_value
        ):
            raise ConfigError(
                f"default_value {self.default_value} outside "
                f"[{self.min_value}, {self.max_value}]"
            )


def format_number(value: float) -> str:
    """Render a slider value the way a user typed it: 5 -> "5", 2.5 -> "2.5"."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


class PublishStaging:
    """
    State machine over the four control modes.

    Example:
        >>> staging = PublishStaging(ControlMode.SWITCH,
        ...                          ControlModel(on_value="1", off_value="0"))
        >>> staging.edit(Boolean(True))
        >>> staging.encode()
        '1'
    """

    def __init__(self, mode: ControlMode = ControlMode.TEXT, model: Optional[ControlModel] = None):
        self.mode = ControlMode(mode)
        self.model = model or ControlModel()
        self.value: StagedValue = self.seed()

    def seed(self) -> StagedValue:
        """Initial staged value for the active mode."""
        if self.mode is ControlMode.TEXT:
            return Text("")
        if self.mode is ControlMode.SLIDER:
            start = self.model.default_value
            return Numeric(float(self.model.min_value if start is None else start))
        if self.mode is ControlMode.SWITCH:
            return Boolean(bool(self.model.default_on))
        return Fixed(self.model.button_payload)

    def configure(self, mode: ControlMode, model: ControlModel) -> bool:
        """
        Apply mode/defaults. Reseeds (dropping any unpublished edit) when
        either changed.

        Returns:
            True if the staged value was reseeded
        """
        mode = ControlMode(mode)
        if mode is self.mode and model == self.model:
            return False
        self.mode = mode
        self.model = model
        self.value = self.seed()
        return True

    def edit(self, value: StagedValue) -> None:
        """
        Replace the staged value.

        Raises:
            StagingError: If the variant does not match the mode, the mode is
                not user-editable, or a slider value is out of range
        """
        expected = MODE_VARIANTS[self.mode]
        if self.mode is ControlMode.BUTTON:
            raise StagingError("Button payload is fixed and cannot be edited")
        if type(value) is not expected:
            raise StagingError(
                f"{self.mode.value} mode expects {expected.__name__}, "
                f"got {type(value).__name__}"
            )

        if isinstance(value, Text) and not isinstance(value.value, str):
            raise StagingError(f"Text value must be a string, got {value.value!r}")
        if isinstance(value, Boolean) and not isinstance(value.value, bool):
            raise StagingError(f"Switch value must be a bool, got {value.value!r}")
        if isinstance(value, Numeric):
            value = Numeric(self._check_number(value.value))

        self.value = value

    def encode(self) -> str:
        """Wire payload for the current staged value."""
        value = self.value
        if isinstance(value, Numeric):
            return format_number(value.value)
        if isinstance(value, Boolean):
            return self.model.on_value if value.value else self.model.off_value
        return value.value

    def parse(self, text: str) -> StagedValue:
        """
        Convert user text into the active mode's variant (CLI input).

        Raises:
            StagingError: If the text cannot represent a value for the mode
        """
        if self.mode is ControlMode.TEXT:
            return Text(text)
        if self.mode is ControlMode.SLIDER:
            try:
                return Numeric(self._check_number(float(text)))
            except ValueError as e:
                raise StagingError(f"Invalid slider value {text!r}: {e}")
        if self.mode is ControlMode.SWITCH:
            # Configured literals win over the generic aliases
            if text == self.model.on_value:
                return Boolean(True)
            if text == self.model.off_value:
                return Boolean(False)
            lowered = text.strip().lower()
            if lowered in {"on", "true", "1", "yes"}:
                return Boolean(True)
            if lowered in {"off", "false", "0", "no"}:
                return Boolean(False)
            raise StagingError(
                f"Invalid switch value {text!r}, expected "
                f"{self.model.on_value!r} or {self.model.off_value!r}"
            )
        raise StagingError("Button payload is fixed and cannot be edited")

    def follow(self, raw: str) -> bool:
        """
        Legacy live update: mirror an incoming value into Slider/Switch.

        Returns:
            True if the staged value changed
        """
        if self.mode is ControlMode.SWITCH:
            updated: StagedValue = Boolean(raw == self.model.on_value)
        elif self.mode is ControlMode.SLIDER:
            try:
                updated = Numeric(self._check_number(float(raw)))
            except ValueError:
                return False
        else:
            return False

        if updated == self.value:
            return False
        self.value = updated
        return True

    def _check_number(self, number) -> float:
        if isinstance(number, bool) or not isinstance(number, (int, float)):
            raise StagingError(f"Slider value must be a number, got {number!r}")
        if not math.isfinite(number):
            raise StagingError(f"Slider value must be finite, got {number!r}")
        if not self.model.min_value <= number <= self.model.max_value:
            raise StagingError(
                f"Slider value {number} outside "
                f"[{self.model.min_value}, {self.model.max_value}]"
            )
        return float(number)
