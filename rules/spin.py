"""
Server-side spin wheel.

The outcome is drawn here, never on the client; the client only receives the
segment index and the rotation to animate to.
"""

import bisect
import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence


@dataclass(frozen=True)
class WheelSegment:
    label: str
    amount: Decimal
    weight: int


DEFAULT_SEGMENTS = (
    WheelSegment("৫০ টাকা", Decimal("50.00"), 20),
    WheelSegment("১০০ টাকা", Decimal("100.00"), 10),
    WheelSegment("২৫ টাকা", Decimal("25.00"), 25),
    WheelSegment("২০০ টাকা", Decimal("200.00"), 4),
    WheelSegment("৭৫ টাকা", Decimal("75.00"), 12),
    WheelSegment("৫০০ টাকা", Decimal("500.00"), 1),
    WheelSegment("১০ টাকা", Decimal("10.00"), 22),
    WheelSegment("১৫০ টাকা", Decimal("150.00"), 6),
)


class SpinWheel:
    def __init__(self, segments: Sequence[WheelSegment] = DEFAULT_SEGMENTS, rng: Optional[secrets.SystemRandom] = None):
        if not segments:
            raise ValueError("A wheel needs at least one segment")
        if any(s.weight <= 0 for s in segments):
            raise ValueError("Segment weights must be positive")
        self.segments = tuple(segments)
        self.rng = rng or secrets.SystemRandom()
        total = sum(s.weight for s in self.segments)
        running = 0
        self._bounds = []
        for segment in self.segments:
            running += segment.weight
            self._bounds.append(running / total)

    def segment_for(self, draw: float) -> int:
        """Map a draw in [0, 1) to a segment index. A draw exactly on a boundary belongs to the next segment."""
        if not 0 <= draw < 1:
            raise ValueError(f"Draw must be in [0, 1), got {draw}")
        index = bisect.bisect_right(self._bounds, draw)
        return min(index, len(self.segments) - 1)

    def draw(self) -> int:
        return self.segment_for(self.rng.random())

    def rotation_for(self, index: int, full_turns: int = 4) -> float:
        """Clockwise rotation in degrees that leaves the pointer over the centre of the segment."""
        if not 0 <= index < len(self.segments):
            raise IndexError(index)
        width = 360 / len(self.segments)
        centre = index * width + width / 2
        return full_turns * 360 + (360 - centre) % 360

    def probability(self, index: int) -> float:
        lower = self._bounds[index - 1] if index else 0.0
        return self._bounds[index] - lower
