"""Guider status models.

All models are frozen so a status snapshot can be handed to other tasks
(or serialized with ``model_dump()``) while the client keeps updating its
own state.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class AppState(str, Enum):
    """PHD2 application states."""

    STOPPED = "Stopped"
    SELECTED = "Selected"
    CALIBRATING = "Calibrating"
    GUIDING = "Guiding"
    LOST_LOCK = "LostLock"
    PAUSED = "Paused"
    LOOPING = "Looping"


class GuideStats(BaseModel):
    """Running guide error statistics (pixels)."""

    model_config = ConfigDict(frozen=True)

    rms_total: float = 0.0
    rms_ra: float = 0.0
    rms_dec: float = 0.0
    peak_ra: float = 0.0
    peak_dec: float = 0.0


class SettleProgress(BaseModel):
    """Settling progress, as reported by check_settling()."""

    model_config = ConfigDict(frozen=True)

    done: bool = False
    distance: float = 0.0
    settle_px: float = 0.0
    time: float = 0.0
    settle_time: float = 0.0
    status: int = 0
    error: Optional[str] = None


class StarLostInfo(BaseModel):
    """Details of the most recent StarLost event."""

    model_config = ConfigDict(frozen=True)

    frame: int
    time: float
    star_mass: float
    snr: float
    avg_dist: float
    error_code: int
    status: Optional[str] = None
    timestamp: datetime


class PHD2Status(BaseModel):
    """Point-in-time snapshot of the guider state."""

    model_config = ConfigDict(frozen=True)

    # Plain string so the service layer can report "Disconnected" / "Error"
    app_state: str
    avg_dist: float = 0.0
    stats: Optional[GuideStats] = None
    version: Optional[str] = None
    phd_subver: Optional[str] = None
    is_connected: bool = False
    is_guiding: bool = False
    is_settling: bool = False
    settle_progress: Optional[SettleProgress] = None
    last_star_lost: Optional[StarLostInfo] = None
