"""Typed PHD2 event notifications.

PHD2 pushes events as JSON objects carrying an "Event" name. Each known
name is decoded once into its own dataclass; names we do not act on are
kept as UnknownEvent so listeners can still see them.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional


@dataclass(frozen=True)
class GuiderEvent:
    """Base class for decoded events."""


@dataclass(frozen=True)
class AppStateEvent(GuiderEvent):
    state: str


@dataclass(frozen=True)
class VersionEvent(GuiderEvent):
    phd_version: Optional[str]
    phd_subver: Optional[str]
    msg_version: Optional[int] = None


@dataclass(frozen=True)
class StartGuidingEvent(GuiderEvent):
    pass


@dataclass(frozen=True)
class GuideStepEvent(GuiderEvent):
    frame: Optional[int]
    ra_distance_raw: float
    dec_distance_raw: float
    avg_dist: float


@dataclass(frozen=True)
class GuidingStoppedEvent(GuiderEvent):
    pass


@dataclass(frozen=True)
class PausedEvent(GuiderEvent):
    pass


@dataclass(frozen=True)
class ResumedEvent(GuiderEvent):
    pass


@dataclass(frozen=True)
class StarLostEvent(GuiderEvent):
    frame: int
    time: float
    star_mass: float
    snr: float
    avg_dist: float
    error_code: int
    status: Optional[str]


@dataclass(frozen=True)
class SettleBeginEvent(GuiderEvent):
    pass


@dataclass(frozen=True)
class SettlingEvent(GuiderEvent):
    distance: float
    time: float
    settle_time: float
    star_locked: bool = False


@dataclass(frozen=True)
class SettleDoneEvent(GuiderEvent):
    status: int
    error: Optional[str]
    total_frames: int = 0
    dropped_frames: int = 0


@dataclass(frozen=True)
class LoopingExposuresEvent(GuiderEvent):
    frame: Optional[int]


@dataclass(frozen=True)
class CalibratingEvent(GuiderEvent):
    """StartCalibration and Calibrating both decode to this."""

    direction: Optional[str] = None
    step: Optional[int] = None


@dataclass(frozen=True)
class StarSelectedEvent(GuiderEvent):
    x: float
    y: float


@dataclass(frozen=True)
class UnknownEvent(GuiderEvent):
    name: str
    data: Dict[str, Any] = field(default_factory=dict)


def _opt_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


_DECODERS: Dict[str, Callable[[Dict[str, Any]], GuiderEvent]] = {
    "AppState": lambda m: AppStateEvent(state=str(m["State"])),
    "Version": lambda m: VersionEvent(
        phd_version=m.get("PHDVersion"),
        phd_subver=m.get("PHDSubver"),
        msg_version=_opt_int(m.get("MsgVersion")),
    ),
    "StartGuiding": lambda m: StartGuidingEvent(),
    "GuideStep": lambda m: GuideStepEvent(
        frame=_opt_int(m.get("Frame")),
        ra_distance_raw=float(m["RADistanceRaw"]),
        dec_distance_raw=float(m["DECDistanceRaw"]),
        avg_dist=float(m["AvgDist"]),
    ),
    "GuidingStopped": lambda m: GuidingStoppedEvent(),
    "Paused": lambda m: PausedEvent(),
    "Resumed": lambda m: ResumedEvent(),
    "StarLost": lambda m: StarLostEvent(
        frame=int(m["Frame"]),
        time=float(m["Time"]),
        star_mass=float(m["StarMass"]),
        snr=float(m["SNR"]),
        avg_dist=float(m["AvgDist"]),
        error_code=int(m["ErrorCode"]),
        status=m.get("Status"),
    ),
    "SettleBegin": lambda m: SettleBeginEvent(),
    "Settling": lambda m: SettlingEvent(
        distance=float(m["Distance"]),
        time=float(m["Time"]),
        settle_time=float(m["SettleTime"]),
        star_locked=bool(m.get("StarLocked", False)),
    ),
    "SettleDone": lambda m: SettleDoneEvent(
        status=int(m["Status"]),
        error=m.get("Error"),
        total_frames=int(m.get("TotalFrames", 0)),
        dropped_frames=int(m.get("DroppedFrames", 0)),
    ),
    "LoopingExposures": lambda m: LoopingExposuresEvent(frame=_opt_int(m.get("Frame"))),
    "StartCalibration": lambda m: CalibratingEvent(),
    "Calibrating": lambda m: CalibratingEvent(direction=m.get("dir"), step=_opt_int(m.get("step"))),
    "StarSelected": lambda m: StarSelectedEvent(x=float(m["X"]), y=float(m["Y"])),
}


def parse_event(message: Dict[str, Any]) -> GuiderEvent:
    """Decode an event notification.

    Args:
        message: Parsed JSON object without a "jsonrpc" member

    Returns:
        The decoded event; UnknownEvent for names without a decoder

    Raises:
        ValueError: If the message has no Event name or a known event is
            missing a field or carries a field of the wrong type
    """
    name = message.get("Event")
    if not isinstance(name, str):
        raise ValueError(f"Message has no Event name: {message}")

    decoder = _DECODERS.get(name)
    if decoder is None:
        return UnknownEvent(name=name, data=dict(message))

    try:
        return decoder(message)
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Malformed {name} event ({e!r}): {message}") from e
