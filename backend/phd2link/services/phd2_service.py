"""PHD2 guiding service.

Owns a single PHD2Client, serializes access to it and converts failures
into return values plus last_error, which is what request handlers want.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from phd2link.clients.connection import port_for_instance
from phd2link.clients.exceptions import PHD2Error, PHD2NotConnectedError
from phd2link.clients.phd2_client import PHD2Client
from phd2link.core.config import Settings, get_settings
from phd2link.models.guider_models import PHD2Status, SettleProgress

logger = logging.getLogger(__name__)

NOT_CONNECTED = "PHD2 is not connected"


class PHD2Service:
    """Serialized, non-raising front end for PHD2Client."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client_factory: Optional[Callable[..., PHD2Client]] = None,
    ):
        """Initialize PHD2 service.

        Args:
            settings: Optional settings. If None, uses get_settings().
            client_factory: Builds a client for (host, instance). If None, uses PHD2Client.
        """
        self._settings = settings or get_settings()
        self._client_factory = client_factory or PHD2Client
        self._client: Optional[PHD2Client] = None
        self._lock = asyncio.Lock()
        self.last_error: Optional[str] = None

    @property
    def client(self) -> Optional[PHD2Client]:
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.connected

    def _connected_client(self) -> Optional[PHD2Client]:
        if not self.is_connected:
            self.last_error = NOT_CONNECTED
            return None
        return self._client

    async def connect(self, host: Optional[str] = None, instance: Optional[int] = None) -> bool:
        """Connect to PHD2, replacing any existing client."""
        host = host or self._settings.phd2_host
        instance = self._settings.phd2_instance if instance is None else instance

        async with self._lock:
            try:
                port = port_for_instance(instance)
                logger.info(f"Attempting to connect to PHD2 at {host}, instance {instance}")

                if self._client is not None:
                    logger.info("Disconnecting existing PHD2 client")
                    await self._client.disconnect()

                self._client = self._client_factory(host, instance, settings=self._settings)
                await self._client.connect()

                logger.info(f"PHD2 connection successful ({host}:{port})")
                self.last_error = None
                return True
            except (PHD2Error, ValueError) as e:
                self.last_error = f"Failed to connect to PHD2 at {host} (instance {instance}): {e}"
                logger.error(self.last_error)
                return False

    async def disconnect(self) -> None:
        async with self._lock:
            if self._client is not None:
                await self._client.disconnect()
            self.last_error = None

    async def _run(self, description: str, operation) -> bool:
        """Run operation(client) under the lock; True on success."""
        async with self._lock:
            client = self._connected_client()
            if client is None:
                return False
            try:
                await operation(client)
            except PHD2Error as e:
                self.last_error = str(e)
                logger.error(f"Failed to {description}: {e}")
                return False

            self.last_error = None
            return True

    async def _call(self, description: str, operation) -> Any:
        """Run operation(client) under the lock; errors are recorded and re-raised."""
        async with self._lock:
            client = self._connected_client()
            if client is None:
                raise PHD2NotConnectedError(NOT_CONNECTED)
            try:
                result = await operation(client)
            except PHD2Error as e:
                self.last_error = str(e)
                logger.error(f"Failed to {description}: {e}")
                raise

            self.last_error = None
            return result

    async def _query(self, description: str, operation, default: Any) -> Any:
        """Run operation(client) under the lock; default on any failure."""
        async with self._lock:
            client = self._connected_client()
            if client is None:
                return default
            try:
                result = await operation(client)
            except PHD2Error as e:
                self.last_error = str(e)
                logger.error(f"Failed to {description}: {e}")
                return default

            self.last_error = None
            return result

    async def start_guiding(
        self, settle_pixels: float = 2.0, settle_time: float = 10.0, settle_timeout: float = 100.0
    ) -> bool:
        return await self._run(
            "start guiding", lambda client: client.guide(settle_pixels, settle_time, settle_timeout)
        )

    async def stop_guiding(self) -> bool:
        return await self._run("stop guiding", lambda client: client.stop_capture())

    async def dither(
        self,
        dither_pixels: float = 3.0,
        settle_pixels: float = 2.0,
        settle_time: float = 10.0,
        settle_timeout: float = 100.0,
    ) -> bool:
        return await self._run(
            "dither", lambda client: client.dither(dither_pixels, settle_pixels, settle_time, settle_timeout)
        )

    async def pause_guiding(self) -> bool:
        return await self._run("pause guiding", lambda client: client.pause())

    async def unpause_guiding(self) -> bool:
        return await self._run("unpause guiding", lambda client: client.unpause())

    async def start_looping(self) -> bool:
        return await self._run("start looping", lambda client: client.loop())

    async def connect_equipment(self, profile_name: str) -> bool:
        return await self._run("connect equipment", lambda client: client.connect_equipment(profile_name))

    async def disconnect_equipment(self) -> bool:
        return await self._run("disconnect equipment", lambda client: client.disconnect_equipment())

    async def get_equipment_profiles(self) -> List[str]:
        return await self._query("get equipment profiles", lambda client: client.get_equipment_profiles(), [])

    async def get_status(self) -> PHD2Status:
        """Return the guider status; app_state is "Disconnected" when there is no session."""
        if not self.is_connected:
            return PHD2Status(app_state="Disconnected", is_connected=False)

        self.last_error = None
        return self._client.get_status()

    async def check_settling(self) -> Optional[SettleProgress]:
        """Return settle progress; done=True when nothing is settling, None on error."""
        async with self._lock:
            client = self._connected_client()
            if client is None:
                return None
            try:
                if not await client.is_settling():
                    return SettleProgress(done=True)
                progress = client.check_settling()
            except PHD2Error as e:
                self.last_error = str(e)
                logger.error(f"Failed to check settling: {e}")
                return None

            self.last_error = None
            return progress

    async def get_pixel_scale(self) -> float:
        """Return the pixel scale, 0.0 on error."""
        return await self._query("get pixel scale", lambda client: client.get_pixel_scale(), 0.0)

    async def set_algo_param(self, axis: str, name: str, value: float) -> bool:
        """Set an algorithm parameter and log if PHD2 reads back a different value."""
        async with self._lock:
            client = self._connected_client()
            if client is None:
                return False
            try:
                await client.set_algo_param(axis, name, value)
            except PHD2Error as e:
                self.last_error = str(e)
                logger.error(f"Failed to set algorithm parameter {axis}.{name}: {e}")
                return False

            try:
                actual = await client.get_algo_param(axis, name)
            except PHD2Error as e:
                logger.warning(f"Could not read back parameter {axis}.{name}: {e}")
            else:
                if abs(actual - round(value, 3)) > 0.001:
                    logger.warning(f"Value mismatch for {axis}.{name}: sent {value}, PHD2 reports {actual}")

            self.last_error = None
            return True

    # Settings. Setters raise after recording last_error; getters return a default.

    async def set_exposure(self, exposure_ms: int) -> None:
        await self._call("set exposure", lambda client: client.set_exposure(exposure_ms))

    async def get_exposure(self) -> int:
        return await self._query("get exposure", lambda client: client.get_exposure(), 0)

    async def set_dec_guide_mode(self, mode: str) -> None:
        await self._call("set Dec guide mode", lambda client: client.set_dec_guide_mode(mode))

    async def get_dec_guide_mode(self) -> Optional[str]:
        return await self._query("get Dec guide mode", lambda client: client.get_dec_guide_mode(), None)

    async def set_guide_output_enabled(self, enabled: bool) -> None:
        await self._call("set guide output enabled", lambda client: client.set_guide_output_enabled(enabled))

    async def get_guide_output_enabled(self) -> bool:
        return await self._query("get guide output enabled", lambda client: client.get_guide_output_enabled(), False)

    async def set_lock_position(self, x: float, y: float, exact: bool = True) -> None:
        await self._call("set lock position", lambda client: client.set_lock_position(x, y, exact))

    async def get_lock_position(self) -> Optional[List[float]]:
        return await self._query("get lock position", lambda client: client.get_lock_position(), None)

    async def find_star(self, roi: Optional[List[int]] = None) -> List[float]:
        """Auto-select a star; returns its lock position [x, y]."""
        return await self._call("find star", lambda client: client.find_star(roi))

    async def set_lock_shift_enabled(self, enabled: bool) -> None:
        await self._call("set lock shift enabled", lambda client: client.set_lock_shift_enabled(enabled))

    async def get_lock_shift_enabled(self) -> bool:
        return await self._query("get lock shift enabled", lambda client: client.get_lock_shift_enabled(), False)

    async def set_lock_shift_params(
        self, x_rate: float, y_rate: float, units: str = "arcsec/hr", axes: str = "RA/Dec"
    ) -> None:
        await self._call(
            "set lock shift params", lambda client: client.set_lock_shift_params(x_rate, y_rate, units, axes)
        )

    async def get_lock_shift_params(self) -> Dict[str, Any]:
        return await self._query("get lock shift params", lambda client: client.get_lock_shift_params(), {})

    async def get_algo_param(self, axis: str, name: str) -> Optional[float]:
        return await self._query(
            f"get algorithm parameter {axis}.{name}", lambda client: client.get_algo_param(axis, name), None
        )

    async def get_algo_param_names(self, axis: str) -> List[str]:
        return await self._query(
            "get algorithm parameter names", lambda client: client.get_algo_param_names(axis), []
        )

    async def set_variable_delay_settings(
        self, enabled: bool, short_delay_seconds: int, long_delay_seconds: int
    ) -> None:
        await self._call(
            "set variable delay settings",
            lambda client: client.set_variable_delay_settings(enabled, short_delay_seconds, long_delay_seconds),
        )

    async def get_variable_delay_settings(self) -> Dict[str, Any]:
        return await self._query(
            "get variable delay settings", lambda client: client.get_variable_delay_settings(), {}
        )

    async def get_connected(self) -> bool:
        """Whether PHD2's equipment is connected; False when PHD2 itself is not."""
        return await self._query("get connected status", lambda client: client.get_connected(), False)

    async def get_paused(self) -> bool:
        return await self._query("get paused status", lambda client: client.get_paused(), False)
