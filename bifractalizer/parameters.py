"""Automatable parameters of the processor and their saved state."""

from __future__ import annotations

import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import IntEnum

STATE_TAG = "Parameters"
_PARAM_TAG = "PARAM"


class Mode(IntEnum):
    """Direction of processing."""

    FRACTALIZER = 0
    DEFRACTALIZER = 1


def _clamp(value, low, high):
    return min(max(value, low), high)


def _round_half_up(value):
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class FloatParameter:
    """A continuous parameter with a range and a snapping interval."""

    key: str
    name: str
    minimum: float
    maximum: float
    interval: float
    default: float
    label: str = ""

    def snap(self, value):
        """Return the legal value nearest to ``value``."""
        result = _clamp(float(value), self.minimum, self.maximum)
        if self.interval > 0:
            steps = round((result - self.minimum) / self.interval)
            result = self.minimum + self.interval * steps
        return _clamp(result, self.minimum, self.maximum)


@dataclass(frozen=True)
class IntParameter:
    """An integer parameter with an inclusive range."""

    key: str
    name: str
    minimum: int
    maximum: int
    default: int
    label: str = ""

    def snap(self, value):
        """Return the legal integer nearest to ``value``."""
        return _round_half_up(_clamp(float(value), self.minimum, self.maximum))


@dataclass(frozen=True)
class ChoiceParameter:
    """A parameter that selects one of several named choices by index."""

    key: str
    name: str
    choices: tuple
    default: int = 0
    label: str = ""

    def snap(self, value):
        """Return the legal choice index nearest to ``value``."""
        return _round_half_up(_clamp(float(value), 0, len(self.choices) - 1))


def _bounds(spec):
    if isinstance(spec, ChoiceParameter):
        return 0, len(spec.choices) - 1
    return spec.minimum, spec.maximum


def create_parameters():
    """Return the processor's parameter definitions in host order."""
    return (
        FloatParameter("frequency", "Frequency", 20.0, 350.0, 0.1, 93.8, "frequency"),
        FloatParameter("blockOffset", "Block Offset", 0.0, 1.0, 0.001, 0.0, "fraction"),
        ChoiceParameter("mode", "Mode", ("Fractalizer", "Defractalizer"), 0),
        FloatParameter("gain", "Gain", -24.0, 24.0, 0.1, 0.0, "dB"),
        FloatParameter("alpha", "Alpha", 0.0, 0.9, 0.01, 0.5),
        IntParameter("beta", "Beta", 2, 8, 2),
    )


class Parameters:
    """Current raw values of all parameters, keyed by parameter id."""

    def __init__(self):
        self._specs = {spec.key: spec for spec in create_parameters()}
        self._values = {key: float(spec.default) for key, spec in self._specs.items()}

    def __getitem__(self, key):
        return self._values[key]

    def __setitem__(self, key, value):
        """Store a raw value, kept inside the parameter's range."""
        spec = self._specs[key]
        number = float(value)
        if math.isnan(number):
            raise ValueError(f"parameter {key!r} cannot be NaN")
        low, high = _bounds(spec)
        self._values[key] = float(_clamp(number, low, high))

    def __iter__(self):
        return iter(self._values)

    def __len__(self):
        return len(self._values)

    def to_xml(self):
        """Serialize the current values as an XML document."""
        root = ET.Element(STATE_TAG)
        for key, value in self._values.items():
            ET.SubElement(root, _PARAM_TAG, id=key, value=repr(value))
        return ET.tostring(root, encoding="unicode")

    def load_xml(self, text):
        """Restore values from a document made by :meth:`to_xml`.

        Values are snapped to their legal grid; unknown ids are ignored and
        parameters missing from the document keep their current value.
        """
        try:
            root = ET.fromstring(text)
        except ET.ParseError as exc:
            raise ValueError(f"malformed parameter state: {exc}") from exc
        if root.tag != STATE_TAG:
            raise ValueError(f"expected <{STATE_TAG}> state, got <{root.tag}>")
        for element in root.findall(_PARAM_TAG):
            spec = self._specs.get(element.get("id"))
            if spec is None:
                continue
            try:
                number = float(element.get("value", ""))
            except ValueError:
                continue
            if math.isnan(number):
                continue
            self._values[spec.key] = float(spec.snap(number))