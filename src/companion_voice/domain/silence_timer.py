import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class SilenceTimer:
    """Single outstanding endpointing timer.

    Arming always cancels the previous instance. The generation passed to
    ``arm`` is handed back to ``on_silence`` so the owner can tell a firing
    from a superseded turn apart from a current one.
    """

    def __init__(
        self,
        threshold_seconds: float,
        on_silence: Callable[[int], Awaitable[None]],
    ) -> None:
        self._threshold_seconds = threshold_seconds
        self._on_silence = on_silence
        self._task: asyncio.Task | None = None

    @property
    def threshold_seconds(self) -> float:
        return self._threshold_seconds

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self, generation: int) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._wait_then_fire(generation))

    def cancel(self) -> None:
        if self._task and not self._task.done():
            if self._task is not asyncio.current_task():
                self._task.cancel()
        self._task = None

    async def _wait_then_fire(self, generation: int) -> None:
        try:
            await asyncio.sleep(self._threshold_seconds)
        except asyncio.CancelledError:
            return
        logger.debug("Silence timer fired (generation=%d)", generation)
        await self._on_silence(generation)
