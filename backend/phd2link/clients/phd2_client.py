"""PHD2 guiding client.

Talks to PHD2's event-monitoring / remote-control server: newline
delimited JSON over TCP, carrying JSON-RPC replies and unsolicited event
notifications on the same stream. A single receive task per connection
routes replies to the call awaiting them and folds events into a live
guider status that callers can poll with get_status().

Example usage:
    client = PHD2Client("localhost")
    await client.connect()
    await client.connect_equipment("Simulator")
    await client.guide(settle_pixels=2.0, settle_time=10.0, settle_timeout=100.0)
    await client.wait_for_settle()
    print(client.get_status())
    await client.stop_capture()
    await client.disconnect()
"""

import asyncio
import json
import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from phd2link.clients.accumulator import Accumulator
from phd2link.clients.connection import PHD2Connection, port_for_instance
from phd2link.clients.events import (
    AppStateEvent,
    CalibratingEvent,
    GuiderEvent,
    GuideStepEvent,
    GuidingStoppedEvent,
    LoopingExposuresEvent,
    PausedEvent,
    SettleBeginEvent,
    SettleDoneEvent,
    SettlingEvent,
    StarLostEvent,
    StarSelectedEvent,
    StartGuidingEvent,
    VersionEvent,
    parse_event,
)
from phd2link.clients.exceptions import (
    PHD2CommandError,
    PHD2ConnectionError,
    PHD2Error,
    PHD2NotConnectedError,
    PHD2SettleError,
    PHD2TimeoutError,
)
from phd2link.core.config import Settings, get_settings
from phd2link.models.guider_models import AppState, GuideStats, PHD2Status, SettleProgress, StarLostInfo

DEC_GUIDE_MODES = ("Off", "Auto", "North", "South")
LOCK_SHIFT_UNITS = ("arcsec/hr", "pixels/hr")
LOCK_SHIFT_AXES = ("RA/Dec", "X/Y")
ALGO_AXES = ("ra", "x", "dec", "y")


def make_jsonrpc(method: str, params: Any = None, request_id: int = 1) -> str:
    """Serialize a JSON-RPC request line.

    Args:
        method: RPC method name
        params: None (omitted), a list/tuple/dict (passed through) or a
            scalar (wrapped in a one-element list)
        request_id: Correlation id echoed back in the reply

    Returns:
        Compact JSON text without line terminator
    """
    request: Dict[str, Any] = {"method": method, "id": request_id}

    if params is not None:
        if isinstance(params, (list, dict)):
            request["params"] = params
        elif isinstance(params, tuple):
            request["params"] = list(params)
        else:
            request["params"] = [params]

    return json.dumps(request, separators=(",", ":"))


def _error_message(response: Dict[str, Any]) -> str:
    error = response.get("error")
    if isinstance(error, dict):
        return str(error.get("message", "Unknown error"))
    return str(error)


class PHD2Client:
    """asyncio client for the PHD2 remote-control protocol.

    All status fields are written only by the receive task, which runs on
    the same event loop as the callers, so get_status() always sees a
    consistent state. Calls carry distinct ids and may be awaited
    concurrently.
    """

    STOP_CAPTURE_DELAY = 0.1

    def __init__(
        self,
        host: Optional[str] = None,
        instance: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize PHD2 client.

        Args:
            host: PHD2 host. If None, uses the phd2_host setting.
            instance: PHD2 instance number (1-based). If None, uses the phd2_instance setting.
            logger: Optional logger instance. If None, creates default logger.
            settings: Optional settings. If None, uses get_settings().
        """
        self.logger = logger or logging.getLogger(__name__)

        settings = settings or get_settings()
        self._host = host or settings.phd2_host
        self._instance = settings.phd2_instance if instance is None else instance
        self._connect_timeout = settings.phd2_connect_timeout
        self._command_timeout = settings.phd2_command_timeout
        self._disconnect_timeout = settings.phd2_disconnect_timeout
        self._settle_poll_interval = settings.phd2_settle_poll_interval

        # Connection state
        self._connection = PHD2Connection(self._connect_timeout, logger=self.logger)
        self._receive_task: Optional[asyncio.Task] = None
        self._terminate = False

        # Message handling
        self._request_id = 0
        self._pending_responses: Dict[int, asyncio.Future] = {}

        # Guide statistics
        self._accum_ra = Accumulator()
        self._accum_dec = Accumulator()
        self._accum_active = False
        self._settle_px = 0.0

        # Guider status
        self._app_state = AppState.STOPPED
        self._avg_dist = 0.0
        self._stats = GuideStats()
        self._version: Optional[str] = None
        self._phd_subver: Optional[str] = None
        self._last_star_lost: Optional[StarLostInfo] = None
        self._settle: Optional[SettleProgress] = None

        self._event_callbacks: List[Callable[[GuiderEvent], None]] = []
        self._event_handlers: Dict[type, Callable[[Any], None]] = {
            AppStateEvent: self._on_app_state,
            VersionEvent: self._on_version,
            StartGuidingEvent: self._on_start_guiding,
            GuideStepEvent: self._on_guide_step,
            GuidingStoppedEvent: self._on_guiding_stopped,
            PausedEvent: self._on_paused,
            StarLostEvent: self._on_star_lost,
            SettleBeginEvent: self._on_settle_begin,
            SettlingEvent: self._on_settling,
            SettleDoneEvent: self._on_settle_done,
            LoopingExposuresEvent: self._on_looping,
            CalibratingEvent: self._on_calibrating,
            StarSelectedEvent: self._on_star_selected,
        }

    async def __aenter__(self) -> "PHD2Client":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    @property
    def connected(self) -> bool:
        """True while the socket is open and the receive task is running."""
        return (
            self._connection.is_connected and self._receive_task is not None and not self._receive_task.done()
        )

    @property
    def host(self) -> str:
        return self._host

    @property
    def instance(self) -> int:
        return self._instance

    @property
    def port(self) -> int:
        return port_for_instance(self._instance)

    @property
    def app_state(self) -> AppState:
        return self._app_state

    @property
    def stats(self) -> GuideStats:
        return self._stats

    def subscribe_events(self, callback: Callable[[GuiderEvent], None]) -> None:
        """Receive every decoded event after it has been applied to the status.

        Args:
            callback: Function to call for each event
        """
        if callback not in self._event_callbacks:
            self._event_callbacks.append(callback)

    def unsubscribe_events(self, callback: Callable[[GuiderEvent], None]) -> None:
        if callback in self._event_callbacks:
            self._event_callbacks.remove(callback)

    # ========================================================================
    # Connection lifecycle
    # ========================================================================

    async def connect(self, host: Optional[str] = None, instance: Optional[int] = None) -> bool:
        """Connect to a PHD2 instance, replacing any existing session.

        Args:
            host: Hostname or IP address. If None, keeps the current host.
            instance: PHD2 instance number. If None, keeps the current instance.

        Returns:
            True if connection successful

        Raises:
            ValueError: If instance is less than 1
            PHD2ConnectionError: If the socket cannot be opened
        """
        instance = self._instance if instance is None else instance
        port = port_for_instance(instance)

        await self.disconnect()

        if host is not None:
            self._host = host
        self._instance = instance

        self.logger.info(f"Connecting to PHD2 instance {self._instance} at {self._host}:{port}")

        if not await self._connection.connect(self._host, port):
            raise PHD2ConnectionError(f"Could not connect to PHD2 instance {self._instance} on {self._host}")

        self._terminate = False
        self._pending_responses = {}
        self._receive_task = asyncio.create_task(self._receive_loop(self._connection, self._pending_responses))

        self.logger.info("Connected to PHD2")
        return True

    async def disconnect(self) -> None:
        """Close the session.

        Stops the receive task (bounded wait), fails any outstanding calls
        and discards the connection. Guider status is kept.
        """
        task = self._receive_task
        if task is not None:
            self.logger.info("Disconnecting from PHD2")
            self._terminate = True
            self._connection.terminate()
            task.cancel()

            _, still_running = await asyncio.wait({task}, timeout=self._disconnect_timeout)
            if still_running:
                self.logger.warning(f"Receive task did not stop within {self._disconnect_timeout}s, abandoning it")
            self._receive_task = None

        await self._connection.close()
        self._fail_pending(self._pending_responses, PHD2ConnectionError("Disconnected from PHD2"))
        self._connection = PHD2Connection(self._connect_timeout, logger=self.logger)

    def _check_connected(self) -> None:
        if not self.connected:
            raise PHD2NotConnectedError("PHD2 server disconnected")

    # ========================================================================
    # Receive side
    # ========================================================================

    async def _receive_loop(self, connection: PHD2Connection, pending: Dict[int, asyncio.Future]) -> None:
        """Background task reading lines until end-of-stream or disconnect()."""
        try:
            while not self._terminate:
                line = await connection.read_line()
                if line is None:
                    if not self._terminate:
                        self.logger.error("Connection closed by PHD2")
                    break

                line = line.strip()
                if not line:
                    continue

                self.logger.debug(f"Received: {line}")

                try:
                    self._handle_line(line, pending)
                except Exception as e:
                    self.logger.error(f"Error handling PHD2 message: {e!r}: {line}")

        except asyncio.CancelledError:
            self.logger.debug("Receive loop cancelled")
        finally:
            self._fail_pending(pending, PHD2ConnectionError("Connection to PHD2 lost"))

    def _handle_line(self, line: str, pending: Optional[Dict[int, asyncio.Future]] = None) -> None:
        """Route one line to the awaiting call or to the event handler."""
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            self.logger.warning(f"Invalid JSON from PHD2: {e}: {line}")
            return

        if not isinstance(message, dict):
            self.logger.warning(f"Ignoring non-object message from PHD2: {line}")
            return

        if "jsonrpc" in message:
            self._resolve_response(message, self._pending_responses if pending is None else pending)
            return

        try:
            event = parse_event(message)
        except ValueError as e:
            self.logger.warning(f"Ignoring PHD2 event: {e}")
            return

        self._apply_event(event)

    def _resolve_response(self, message: Dict[str, Any], pending: Dict[int, asyncio.Future]) -> None:
        msg_id = message.get("id")
        future = pending.pop(msg_id, None)
        if future is None:
            self.logger.warning(f"Dropping PHD2 reply with unknown id {msg_id}: {message}")
            return

        if not future.done():
            future.set_result(message)

    def _fail_pending(self, pending: Dict[int, asyncio.Future], error: Exception) -> None:
        for future in pending.values():
            if not future.done():
                future.set_exception(error)
        pending.clear()

    # ========================================================================
    # Event handling
    # ========================================================================

    def _apply_event(self, event: GuiderEvent) -> None:
        handler = self._event_handlers.get(type(event))
        if handler is None:
            self.logger.debug(f"Unhandled PHD2 event: {event}")
        else:
            handler(event)

        for callback in self._event_callbacks:
            try:
                callback(event)
            except Exception as e:
                self.logger.error(f"Error in event callback: {e}")

    def _on_app_state(self, event: AppStateEvent) -> None:
        try:
            self._app_state = AppState(event.state)
        except ValueError:
            self.logger.warning(f"Unknown PHD2 app state: {event.state}")

    def _on_version(self, event: VersionEvent) -> None:
        self._version = event.phd_version
        self._phd_subver = event.phd_subver
        self.logger.info(f"PHD2 version {event.phd_version} {event.phd_subver or ''}".rstrip())

    def _on_start_guiding(self, event: StartGuidingEvent) -> None:
        self._app_state = AppState.GUIDING
        self._accum_ra.reset()
        self._accum_dec.reset()
        self._accum_active = True

    def _on_guide_step(self, event: GuideStepEvent) -> None:
        if self._accum_active:
            self._accum_ra.add(event.ra_distance_raw)
            self._accum_dec.add(event.dec_distance_raw)
            self._stats = self._accumulated_stats()
        self._app_state = AppState.GUIDING
        self._avg_dist = event.avg_dist

    def _on_guiding_stopped(self, event: GuidingStoppedEvent) -> None:
        self._app_state = AppState.STOPPED

    def _on_paused(self, event: PausedEvent) -> None:
        self._app_state = AppState.PAUSED

    def _on_star_lost(self, event: StarLostEvent) -> None:
        self._app_state = AppState.LOST_LOCK
        self._avg_dist = event.avg_dist
        self._last_star_lost = StarLostInfo(
            frame=event.frame,
            time=event.time,
            star_mass=event.star_mass,
            snr=event.snr,
            avg_dist=event.avg_dist,
            error_code=event.error_code,
            status=event.status,
            timestamp=datetime.now(),
        )
        self.logger.warning(f"PHD2 star lost: frame {event.frame}, SNR {event.snr}, {event.status}")

    def _on_settle_begin(self, event: SettleBeginEvent) -> None:
        self._accum_active = False

    def _on_settling(self, event: SettlingEvent) -> None:
        self._settle = SettleProgress(
            done=False,
            distance=event.distance,
            settle_px=self._settle_px,
            time=event.time,
            settle_time=event.settle_time,
            status=0,
        )

    def _on_settle_done(self, event: SettleDoneEvent) -> None:
        self._settle = SettleProgress(done=True, status=event.status, error=event.error)
        self._accum_active = True
        if event.status != 0:
            self.logger.warning(f"PHD2 settle failed: {event.error}")

    def _on_looping(self, event: LoopingExposuresEvent) -> None:
        self._app_state = AppState.LOOPING

    def _on_calibrating(self, event: CalibratingEvent) -> None:
        self._app_state = AppState.CALIBRATING

    def _on_star_selected(self, event: StarSelectedEvent) -> None:
        self._app_state = AppState.SELECTED

    def _accumulated_stats(self) -> GuideStats:
        rms_ra = self._accum_ra.stdev()
        rms_dec = self._accum_dec.stdev()
        return GuideStats(
            rms_ra=rms_ra,
            rms_dec=rms_dec,
            rms_total=math.sqrt(rms_ra * rms_ra + rms_dec * rms_dec),
            peak_ra=self._accum_ra.peak(),
            peak_dec=self._accum_dec.peak(),
        )

    # ========================================================================
    # Call side
    # ========================================================================

    async def call(self, method: str, params: Any = None, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Send a JSON-RPC call and wait for its reply.

        Args:
            method: RPC method name
            params: Call parameters (see make_jsonrpc)
            timeout: Reply timeout in seconds (default: phd2_command_timeout)

        Returns:
            Reply message dict

        Raises:
            PHD2NotConnectedError: If not connected
            PHD2ConnectionError: If the write fails or the connection drops before the reply
            PHD2TimeoutError: If no reply arrives in time
            PHD2CommandError: If PHD2 returns an error reply
        """
        self._check_connected()

        self._request_id += 1
        request_id = self._request_id
        request = make_jsonrpc(method, params, request_id)

        pending = self._pending_responses
        future = asyncio.get_running_loop().create_future()
        pending[request_id] = future

        self.logger.debug(f"Sending: {request}")

        try:
            await self._connection.write_line(request)
            response = await asyncio.wait_for(future, timeout=self._command_timeout if timeout is None else timeout)
        except asyncio.TimeoutError:
            raise PHD2TimeoutError(f"PHD2 call timed out: {method}") from None
        finally:
            pending.pop(request_id, None)

        if "error" in response:
            error = response["error"]
            code = error.get("code", 0) if isinstance(error, dict) else 0
            raise PHD2CommandError(_error_message(response), code)

        return response

    # ========================================================================
    # Guiding
    # ========================================================================

    async def guide(
        self,
        settle_pixels: float,
        settle_time: float,
        settle_timeout: float,
        recalibrate: bool = False,
        roi: Optional[Sequence[int]] = None,
    ) -> None:
        """Start guiding; settle progress follows as events.

        Args:
            settle_pixels: Maximum guide distance for guiding to be considered stable
            settle_time: Seconds the distance must stay below settle_pixels
            settle_timeout: Seconds to wait before giving up on settling
            recalibrate: Force calibration before guiding
            roi: Optional [x, y, width, height] star selection region
        """
        params: List[Any] = [self._settle_param(settle_pixels, settle_time, settle_timeout), recalibrate]
        if roi is not None:
            params.append(list(roi))

        await self._settle_call("guide", params, settle_pixels)

    async def dither(
        self,
        dither_pixels: float,
        settle_pixels: float,
        settle_time: float,
        settle_timeout: float,
        ra_only: bool = False,
    ) -> None:
        """Dither the lock position and settle."""
        params = [dither_pixels, ra_only, self._settle_param(settle_pixels, settle_time, settle_timeout)]
        await self._settle_call("dither", params, settle_pixels)

    @staticmethod
    def _settle_param(settle_pixels: float, settle_time: float, settle_timeout: float) -> Dict[str, float]:
        return {"pixels": settle_pixels, "time": settle_time, "timeout": settle_timeout}

    async def _settle_call(self, method: str, params: List[Any], settle_pixels: float) -> None:
        # Recorded before the call: Settling events can arrive ahead of the reply
        self._settle_px = settle_pixels
        try:
            await self.call(method, params)
        except Exception:
            self._settle = None
            raise

    async def is_settling(self) -> bool:
        """Check whether a settle is in progress (or finished and not yet consumed)."""
        self._check_connected()
        if self._settle is not None:
            return True

        response = await self.call("get_settling")
        settling = bool(response.get("result"))

        # Distance -1 marks "settling, no progress event seen yet"
        if settling and self._settle is None:
            self._settle = SettleProgress(done=False, distance=-1.0)

        return settling

    def check_settling(self) -> SettleProgress:
        """Return settle progress; a finished settle is returned once and then cleared.

        Raises:
            PHD2Error: If no settle is in progress
        """
        self._check_connected()
        settle = self._settle
        if settle is None:
            raise PHD2Error("Not settling")

        if settle.done:
            self._settle = None
            return SettleProgress(done=True, status=settle.status, error=settle.error)

        return SettleProgress(
            done=False,
            distance=settle.distance,
            settle_px=self._settle_px,
            time=settle.time,
            settle_time=settle.settle_time,
        )

    async def wait_for_settle(
        self, poll_interval: Optional[float] = None, timeout: Optional[float] = None
    ) -> SettleProgress:
        """Poll check_settling() until the settle finishes.

        Args:
            poll_interval: Seconds between polls (default: phd2_settle_poll_interval)
            timeout: Maximum seconds to wait; None waits for PHD2's own settle timeout

        Returns:
            The terminal settle snapshot (done=True, status 0)

        Raises:
            PHD2SettleError: If settling failed
            PHD2TimeoutError: If timeout expires first
        """
        interval = self._settle_poll_interval if poll_interval is None else poll_interval

        async def poll() -> SettleProgress:
            if not await self.is_settling():
                return SettleProgress(done=True)
            while True:
                progress = self.check_settling()
                if progress.done:
                    return progress
                self.logger.debug(
                    f"Settling dist {progress.distance:.1f}/{progress.settle_px:.1f} "
                    f"time {progress.time:.1f}/{progress.settle_time:.1f}"
                )
                await asyncio.sleep(interval)

        try:
            progress = await asyncio.wait_for(poll(), timeout=timeout)
        except asyncio.TimeoutError:
            raise PHD2TimeoutError(f"Settling did not finish within {timeout}s") from None

        if progress.status != 0:
            raise PHD2SettleError(progress.error or f"Settling failed with status {progress.status}", progress.status)

        return progress

    async def stop_capture(self) -> None:
        """Stop looping and guiding."""
        await self.call("stop_capture")
        # Give PHD2 a moment to stop the capture loop
        await asyncio.sleep(self.STOP_CAPTURE_DELAY)

    async def loop(self) -> None:
        """Start looping exposures."""
        await self.call("loop")

    async def pause(self, full: bool = False) -> None:
        """Pause guiding; full=True also pauses looping exposures."""
        await self.call("set_paused", [True, "full"] if full else True)

    async def unpause(self) -> None:
        await self.call("set_paused", False)

    async def get_paused(self) -> bool:
        response = await self.call("get_paused")
        return bool(response["result"])

    # ========================================================================
    # Equipment
    # ========================================================================

    async def get_equipment_profiles(self) -> List[str]:
        """Return the names of all equipment profiles."""
        response = await self.call("get_profiles")
        return [profile["name"] for profile in response.get("result") or []]

    async def connect_equipment(self, profile_name: str) -> None:
        """Select an equipment profile by exact name and connect its devices.

        Raises:
            PHD2Error: If no profile has that name
        """
        response = await self.call("get_profiles")
        profile_id = None
        for profile in response.get("result") or []:
            if profile.get("name") == profile_name:
                profile_id = int(profile["id"])
                break

        if profile_id is None:
            raise PHD2Error(f"Invalid PHD2 profile name: {profile_name}")

        self.logger.info(f"Connecting PHD2 equipment profile {profile_name} (id {profile_id})")
        await self.stop_capture()
        await self.call("set_connected", False)
        await self.call("set_profile", profile_id)
        await self.call("set_connected", True)

    async def disconnect_equipment(self) -> None:
        await self.stop_capture()
        await self.call("set_connected", False)

    async def set_connected_equipment(self, connected: bool) -> None:
        await self.call("set_connected", connected)

    async def get_connected(self) -> bool:
        """Whether all equipment in the current profile is connected."""
        response = await self.call("get_connected")
        return bool(response["result"])

    async def set_profile(self, profile_id: int) -> None:
        await self.call("set_profile", profile_id)

    async def get_profile(self) -> Dict[str, Any]:
        """Return the current profile as {"id", "name"} (or just {"name"})."""
        response = await self.call("get_profile")
        result = response.get("result")

        if isinstance(result, str):
            try:
                result = json.loads(result)
            except json.JSONDecodeError:
                return {"name": result}

        if isinstance(result, dict):
            return {"id": int(result.get("id") or 0), "name": str(result.get("name") or "")}

        return {"name": str(result)}

    async def get_current_equipment(self) -> Dict[str, Dict[str, Any]]:
        """Return devices of the current profile as {device_type: {"name", "connected"}}."""
        response = await self.call("get_current_equipment")
        result = response.get("result")
        equipment: Dict[str, Dict[str, Any]] = {}

        if isinstance(result, dict):
            for device_type, info in result.items():
                if isinstance(info, dict):
                    name = info.get("name")
                    connected = info.get("connected")
                    if connected is None:
                        connected = bool(name)
                    equipment[device_type.lower()] = {"name": name, "connected": bool(connected)}
                else:
                    name = "" if info is None else str(info)
                    equipment[device_type.lower()] = {"name": name, "connected": bool(name)}

        elif isinstance(result, list):
            # Older PHD2 releases: [["Camera", "name"], ...]
            for item in result:
                if isinstance(item, list) and len(item) >= 2:
                    name = str(item[1])
                    equipment[str(item[0]).lower()] = {"name": name, "connected": bool(name)}

        else:
            self.logger.warning(f"Unknown PHD2 equipment format: {result!r}")

        return equipment

    async def get_pixel_scale(self) -> float:
        """Return the guide camera pixel scale in arc-seconds per pixel."""
        response = await self.call("get_pixel_scale")
        return float(response["result"])

    # ========================================================================
    # Guide settings
    # ========================================================================

    async def set_exposure(self, exposure_ms: int) -> None:
        await self.call("set_exposure", int(exposure_ms))

    async def get_exposure(self) -> int:
        response = await self.call("get_exposure")
        return int(response["result"])

    async def set_dec_guide_mode(self, mode: str) -> None:
        self._check_connected()
        if mode not in DEC_GUIDE_MODES:
            raise PHD2Error(f"Invalid Dec guide mode: {mode}. Valid modes are: {', '.join(DEC_GUIDE_MODES)}")
        await self.call("set_dec_guide_mode", mode)

    async def get_dec_guide_mode(self) -> str:
        response = await self.call("get_dec_guide_mode")
        return str(response["result"])

    async def set_guide_output_enabled(self, enabled: bool) -> None:
        await self.call("set_guide_output_enabled", enabled)

    async def get_guide_output_enabled(self) -> bool:
        response = await self.call("get_guide_output_enabled")
        return bool(response["result"])

    async def set_lock_position(self, x: float, y: float, exact: bool = True) -> None:
        await self.call("set_lock_position", [x, y, exact])

    async def get_lock_position(self) -> Optional[List[float]]:
        """Return [x, y], or None when no lock position is set."""
        response = await self.call("get_lock_position")
        position = response.get("result")
        if position is None:
            return None
        return [float(position[0]), float(position[1])]

    async def find_star(self, roi: Optional[Sequence[int]] = None) -> List[float]:
        """Auto-select a star, optionally inside roi = [x, y, width, height].

        Returns:
            Lock position [x, y] of the selected star
        """
        self._check_connected()
        if roi is not None:
            if len(roi) != 4:
                raise PHD2Error("ROI must be an array of 4 integers: [x, y, width, height]")
            response = await self.call("find_star", {"roi": [int(v) for v in roi]})
        else:
            response = await self.call("find_star")

        position = response.get("result")
        if isinstance(position, list) and len(position) == 2:
            return [float(position[0]), float(position[1])]

        raise PHD2Error("find_star did not return valid coordinates")

    async def set_lock_shift_enabled(self, enabled: bool) -> None:
        await self.call("set_lock_shift_enabled", enabled)

    async def get_lock_shift_enabled(self) -> bool:
        response = await self.call("get_lock_shift_enabled")
        return bool(response["result"])

    async def set_lock_shift_params(
        self, x_rate: float, y_rate: float, units: str = "arcsec/hr", axes: str = "RA/Dec"
    ) -> None:
        self._check_connected()
        if units not in LOCK_SHIFT_UNITS:
            raise PHD2Error(f"Invalid units: {units}. Valid units are: {', '.join(LOCK_SHIFT_UNITS)}")
        if axes not in LOCK_SHIFT_AXES:
            raise PHD2Error(f"Invalid axes: {axes}. Valid axes are: {', '.join(LOCK_SHIFT_AXES)}")

        await self.call("set_lock_shift_params", {"rate": [x_rate, y_rate], "units": units, "axes": axes})

    async def get_lock_shift_params(self) -> Dict[str, Any]:
        response = await self.call("get_lock_shift_params")
        return response.get("result") or {}

    def _algo_axis(self, axis: str) -> str:
        self._check_connected()
        axis = axis.lower()
        if axis not in ALGO_AXES:
            raise PHD2Error(f"Invalid axis: {axis}. Valid axes are: {', '.join(ALGO_AXES)}")
        return axis

    async def set_algo_param(self, axis: str, name: str, value: float) -> None:
        """Set a guide algorithm parameter; value is rounded to 3 decimals."""
        axis = self._algo_axis(axis)
        rounded = round(value, 3)
        self.logger.debug(f"set_algo_param {axis}.{name}: {value!r} -> {rounded!r}")
        await self.call("set_algo_param", [axis, name, rounded])

    async def get_algo_param(self, axis: str, name: str) -> float:
        axis = self._algo_axis(axis)
        response = await self.call("get_algo_param", [axis, name])
        return float(response["result"])

    async def get_algo_param_names(self, axis: str) -> List[str]:
        axis = self._algo_axis(axis)
        response = await self.call("get_algo_param_names", axis)
        return [str(name) for name in response.get("result") or []]

    async def set_variable_delay_settings(self, enabled: bool, short_delay_seconds: int, long_delay_seconds: int) -> None:
        await self.call(
            "set_variable_delay_settings",
            {"Enabled": enabled, "ShortDelaySeconds": short_delay_seconds, "LongDelaySeconds": long_delay_seconds},
        )

    async def get_variable_delay_settings(self) -> Dict[str, Any]:
        response = await self.call("get_variable_delay_settings")
        return response.get("result") or {}

    # ========================================================================
    # Status
    # ========================================================================

    def is_guiding(self) -> bool:
        return self._app_state in (AppState.GUIDING, AppState.LOST_LOCK)

    def get_status(self) -> PHD2Status:
        """Return an immutable snapshot of the guider status."""
        return PHD2Status(
            app_state=self._app_state.value,
            avg_dist=self._avg_dist,
            stats=self._stats.model_copy(deep=True),
            version=self._version,
            phd_subver=self._phd_subver,
            is_connected=self.connected,
            is_guiding=self.is_guiding(),
            is_settling=self._settle is not None,
            settle_progress=self._settle,
            last_star_lost=self._last_star_lost,
        )
