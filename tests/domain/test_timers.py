import asyncio

import pytest

from companion_voice.domain.deaf_window import DeafWindow
from companion_voice.domain.silence_timer import SilenceTimer
from tests.conftest import FakeClock


class TestSilenceTimer:
    @pytest.mark.asyncio
    async def test_fires_once_with_generation(self):
        fired = []

        async def on_silence(generation: int) -> None:
            fired.append(generation)

        timer = SilenceTimer(0.02, on_silence)
        timer.arm(7)
        assert timer.armed
        await asyncio.sleep(0.06)

        assert fired == [7]
        assert not timer.armed

    @pytest.mark.asyncio
    async def test_rearm_replaces_previous(self):
        fired = []

        async def on_silence(generation: int) -> None:
            fired.append(generation)

        timer = SilenceTimer(0.05, on_silence)
        timer.arm(1)
        await asyncio.sleep(0.03)
        timer.arm(2)
        await asyncio.sleep(0.03)
        assert fired == []

        await asyncio.sleep(0.05)
        assert fired == [2]

    @pytest.mark.asyncio
    async def test_cancel_prevents_firing(self):
        fired = []

        async def on_silence(generation: int) -> None:
            fired.append(generation)

        timer = SilenceTimer(0.02, on_silence)
        timer.arm(1)
        timer.cancel()
        await asyncio.sleep(0.05)

        assert fired == []
        assert not timer.armed

    @pytest.mark.asyncio
    async def test_cancel_from_inside_callback_is_safe(self):
        fired = []
        timer = None

        async def on_silence(generation: int) -> None:
            timer.cancel()
            await asyncio.sleep(0)
            fired.append(generation)

        timer = SilenceTimer(0.01, on_silence)
        timer.arm(3)
        await asyncio.sleep(0.05)

        assert fired == [3]


class TestDeafWindow:
    def test_not_deaf_until_armed(self):
        window = DeafWindow(0.5, clock=FakeClock())
        assert not window.is_deaf()
        assert window.remaining_seconds() == 0.0

    def test_deaf_for_duration_after_arm(self):
        clock = FakeClock()
        window = DeafWindow(0.5, clock=clock)
        window.arm()

        assert window.is_deaf()
        assert window.deaf_until == clock.now + 0.5
        clock.advance(0.3)
        assert window.is_deaf()
        assert window.remaining_seconds() == pytest.approx(0.2)
        clock.advance(0.25)
        assert not window.is_deaf()

    def test_rearm_moves_deadline(self):
        clock = FakeClock()
        window = DeafWindow(0.5, clock=clock)
        window.arm()
        clock.advance(0.4)
        window.arm()
        clock.advance(0.4)
        assert window.is_deaf()

    def test_clear(self):
        window = DeafWindow(0.5, clock=FakeClock())
        window.arm()
        window.clear()
        assert not window.is_deaf()
        assert window.deaf_until is None
