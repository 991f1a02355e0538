"""Shared fixtures: image records and a scripted vision/edit adapter."""

import asyncio
import io
from collections.abc import Callable

import pytest
from PIL import Image

from ex_remover.credits import CreditLedger, MemoryCreditStore
from ex_remover.errors import AdapterError
from ex_remover.orchestrator import BatchOrchestrator
from ex_remover.records import ImageRecord, ImageStore, Point
from ex_remover.reverify import ReverifyCoordinator

EDITED_PREFIX = b"\x89PNG\r\n\x1a\nedited:"


def png_bytes(width: int = 64, height: int = 48, color: str = "red") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(buffer, format="PNG")
    return buffer.getvalue()


class ScriptedAdapter:
    """Adapter whose answers are scripted per image.

    ``presence`` maps source bytes to a list of verify outcomes consumed in
    order (bool, or an exception to raise). ``edit_errors`` maps source bytes
    to an exception raised by edit. ``identify_results`` maps a point to a
    description or exception. ``gates`` maps source bytes to an event that
    verify waits on, so a test can hold an image in flight.
    """

    def __init__(self) -> None:
        self.presence: dict[bytes, list[bool | Exception]] = {}
        self.edit_errors: dict[bytes, Exception] = {}
        self.identify_results: dict[Point, str | Exception] = {}
        self.calls: list[tuple[str, bytes, str]] = []
        self.gates: dict[bytes, asyncio.Event] = {}

    async def identify(self, image: bytes, mime_type: str, point: Point) -> str:
        self.calls.append(("identify", image, str(point)))
        await asyncio.sleep(0)
        result = self.identify_results.get(point, f"person at {point.x},{point.y}")
        if isinstance(result, Exception):
            raise result
        return result

    async def verify(self, image: bytes, mime_type: str, description: str) -> bool:
        self.calls.append(("verify", image, description))
        gate = self.gates.get(image)
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)
        outcomes = self.presence.get(image)
        if not outcomes:
            raise AdapterError("Unexpected response from AI when verifying person's presence.")
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def edit(self, image: bytes, mime_type: str, description: str) -> bytes:
        self.calls.append(("edit", image, description))
        await asyncio.sleep(0)
        if image in self.edit_errors:
            raise self.edit_errors[image]
        return EDITED_PREFIX + image

    def count(self, kind: str) -> int:
        return sum(1 for call in self.calls if call[0] == kind)


@pytest.fixture
def make_record() -> Callable[..., ImageRecord]:
    def _make(name: str, mtime: float = 1700000000.0) -> ImageRecord:
        return ImageRecord(
            id=f"{name}-{int(mtime * 1000)}",
            filename=name,
            source_image=f"source:{name}".encode(),
            mime_type="image/jpeg",
        )

    return _make


@pytest.fixture
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter()


@pytest.fixture
def make_batch(
    make_record: Callable[..., ImageRecord], adapter: ScriptedAdapter
) -> Callable[..., tuple[BatchOrchestrator, ReverifyCoordinator]]:
    """Build an orchestrator over named images with a given credit balance."""

    def _make(
        names: list[str], balance: int, description: str = "oval face"
    ) -> tuple[BatchOrchestrator, ReverifyCoordinator]:
        store = ImageStore([make_record(name) for name in names])
        ledger = CreditLedger(MemoryCreditStore(), balance)
        orchestrator = BatchOrchestrator(store, ledger, adapter)
        if description:
            orchestrator.set_description(description)
        return orchestrator, ReverifyCoordinator(orchestrator)

    return _make
