"""
Live acquisition for the ERT meter.

The subpackage turns the meter's stream of text frames into an ordered,
operator-confirmed list of measurements: transport adapters, position
sources, the capture latch, the live stability flag, the per-line session,
and the interactive host that ties them together.
"""

from .capture import AdvanceOutcome, CaptureLatch, LatchState
from .config import HostRuntime, LinkSettings, LocatorSettings, SurveyConfig, load_config
from .frames import FrameSplitter
from .link import Link, LinkWriteError, MemoryLink, SerialLink, StreamLink
from .locator import FixedLocator, Locator, NmeaSerialLocator, NullLocator, lookup_position
from .session import SurveyLineSession
from .stability import StabilityIndicator, StabilityStatus

__all__ = [
    "AdvanceOutcome",
    "CaptureLatch",
    "LatchState",
    "HostRuntime",
    "LinkSettings",
    "LocatorSettings",
    "SurveyConfig",
    "load_config",
    "FrameSplitter",
    "Link",
    "LinkWriteError",
    "MemoryLink",
    "SerialLink",
    "StreamLink",
    "FixedLocator",
    "Locator",
    "NmeaSerialLocator",
    "NullLocator",
    "lookup_position",
    "SurveyLineSession",
    "StabilityIndicator",
    "StabilityStatus",
]
