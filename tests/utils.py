import asyncio
import json


class DummyConnection:
    def __init__(self):
        self.frames: list[dict] = []

    async def send_text(self, data: str) -> None:
        self.frames.append(json.loads(data))

    def of_type(self, frame_type: str) -> list[dict]:
        return [f for f in self.frames if f['type'] == frame_type]

    def counts(self) -> list[int]:
        return [f['count'] for f in self.of_type('viewer_count')]


class BrokenConnection:
    async def send_text(self, data: str) -> None:
        raise RuntimeError('socket already closed')


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StalledConnection:
    """Accepts the first `ok_sends` frames, then never completes a write."""

    def __init__(self, ok_sends: int = 0):
        self.ok_sends = ok_sends
        self.frames: list[str] = []

    async def send_text(self, data: str) -> None:
        if len(self.frames) >= self.ok_sends:
            await asyncio.Event().wait()
        self.frames.append(data)
