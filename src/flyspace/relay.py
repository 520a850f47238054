# relay.py
# Screencast frame relay.
#
# The browser sends Page.screencastFrame events and will not send the next
# frame until the previous one is acknowledged. Each frame is therefore acked
# first and only then republished on the bus as FrameRelayed.
#
# Frame session ids grow monotonically within one screencast, so anything at
# or below the last acked id is a duplicate and is dropped.

from typing import Any

from flyspace import display
from flyspace.bus import CommandBus, FrameRelayed
from flyspace.models import ScreencastFrame

FRAME_EVENT = "Page.screencastFrame"


class FrameRelay:
    def __init__(self, session: Any, bus: CommandBus, image_format: str = "jpeg", quality: int = 100) -> None:
        self._session = session
        self._bus = bus
        self._format = image_format
        self._quality = quality
        self._last_acked: int | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._last_acked = None
        self._session.on(FRAME_EVENT, self.handle_frame)
        await self._session.send(
            "Page.startScreencast",
            {"format": self._format, "quality": self._quality},
        )
        self._running = True
        display.relay_started(self._format, self._quality)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._session.remove_listener(FRAME_EVENT, self.handle_frame)
        await self._session.send("Page.stopScreencast")
        display.relay_stopped()

    async def handle_frame(self, params: dict[str, Any]) -> None:
        frame = ScreencastFrame.model_validate(params)
        if self._last_acked is not None and frame.session_id <= self._last_acked:
            return

        self._last_acked = frame.session_id
        await self._session.send("Page.screencastFrameAck", {"sessionId": frame.session_id})
        self._bus.publish(FrameRelayed(frame=frame))
