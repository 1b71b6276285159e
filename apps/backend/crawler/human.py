"""
Human-like interaction helpers.

Pointer paths follow cubic Bezier curves with eased speed and micro-jitter;
scrolling happens in uneven bursts with reading pauses. All pauses go through
``page.wait`` so a page double can run them instantly.

Every routine here is best effort: interaction failures are logged at debug
level and never interrupt the crawl.
"""
import math
import random
import logging
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

Point = Tuple[float, float]

POINTER_MOVES = 3
MATERIALIZE_SCROLLS = 5
MATERIALIZE_SCROLL_PX = 500


def jittered_delay_ms(low: int, high: int, rng: Optional[random.Random] = None) -> int:
    """Uniform delay in ``[low, high]`` milliseconds."""
    rng = rng or random
    if high < low:
        low, high = high, low
    return int(rng.uniform(low, high))


def ease_in_out_sine(t: float) -> float:
    """Sinusoidal ease-in-out: smooth acceleration and deceleration."""
    return -(math.cos(math.pi * t) - 1) / 2


def bezier_point(p0: Point, p1: Point, p2: Point, p3: Point, t: float) -> Point:
    """Point on a cubic Bezier curve at parameter ``t``."""
    u = 1 - t
    x = u ** 3 * p0[0] + 3 * u * u * t * p1[0] + 3 * u * t * t * p2[0] + t ** 3 * p3[0]
    y = u ** 3 * p0[1] + 3 * u * u * t * p1[1] + 3 * u * t * t * p2[1] + t ** 3 * p3[1]
    return (x, y)


def generate_mouse_path(start: Point, end: Point, steps: Optional[int] = None,
                        rng: Optional[random.Random] = None) -> List[Point]:
    """
    Curved pointer path from ``start`` to ``end``.

    The first and last points are exact; intermediate points carry a little
    Gaussian jitter and a slight overshoot tendency near the end.
    """
    rng = rng or random
    dx = end[0] - start[0]
    dy = end[1] - start[1]
    distance = math.sqrt(dx * dx + dy * dy)

    if steps is None:
        steps = max(10, min(50, int(distance / 20)))

    ctrl1_offset = rng.uniform(0.2, 0.4)
    ctrl1_perp = rng.gauss(0, distance * 0.1)
    ctrl1 = (
        start[0] + dx * ctrl1_offset + ctrl1_perp * (-dy / (distance + 1)),
        start[1] + dy * ctrl1_offset + ctrl1_perp * (dx / (distance + 1)),
    )

    ctrl2_offset = rng.uniform(0.6, 0.9) + rng.uniform(-0.05, 0.15)
    ctrl2_perp = rng.gauss(0, distance * 0.05)
    ctrl2 = (
        start[0] + dx * ctrl2_offset + ctrl2_perp * (-dy / (distance + 1)),
        start[1] + dy * ctrl2_offset + ctrl2_perp * (dx / (distance + 1)),
    )

    path = []
    for i in range(steps + 1):
        point = bezier_point(start, ctrl1, ctrl2, end, ease_in_out_sine(i / steps))
        if 0 < i < steps:
            point = (point[0] + rng.gauss(0, 1.5), point[1] + rng.gauss(0, 1.5))
        path.append(point)
    path[-1] = end
    return path


async def move_pointer_naturally(page, target: Point, start: Point = (0, 0),
                                 rng: Optional[random.Random] = None) -> Point:
    """Move the pointer along a curved path; returns the final position."""
    rng = rng or random
    for x, y in generate_mouse_path(start, target, rng=rng):
        await page.move_pointer(x, y)
        await page.wait(rng.uniform(5, 20))
    return target


async def scroll_in_bursts(page, amount: int, rng: Optional[random.Random] = None):
    """Scroll ``amount`` pixels in uneven chunks with occasional reading pauses."""
    rng = rng or random
    scrolled = 0
    target = abs(amount)
    sign = 1 if amount >= 0 else -1
    while scrolled < target:
        chunk = min(rng.randint(50, 200), target - scrolled)
        await page.scroll_by(chunk * sign)
        scrolled += chunk
        if rng.random() < 0.3:
            await page.wait(rng.uniform(300, 1200))
        else:
            await page.wait(rng.uniform(30, 100))


async def simulate_human_behavior(page, rng: Optional[random.Random] = None):
    """A few pointer moves inside the viewport followed by a short scroll."""
    rng = rng or random
    try:
        width, height = await page.viewport()
        position: Point = (rng.uniform(0, width), rng.uniform(0, height))
        for _ in range(POINTER_MOVES):
            target = (rng.uniform(50, max(width - 50, 51)), rng.uniform(50, max(height - 50, 51)))
            position = await move_pointer_naturally(page, target, start=position, rng=rng)
            await page.wait(rng.uniform(100, 300))
        await scroll_in_bursts(page, rng.randint(100, 400), rng=rng)
        await page.wait(rng.uniform(500, 1000))
    except Exception as e:
        logger.debug(f"[human] Interaction simulation failed: {e}")


async def materialize_lazy_content(page, scrolls: int = MATERIALIZE_SCROLLS,
                                   step_px: int = MATERIALIZE_SCROLL_PX,
                                   rng: Optional[random.Random] = None):
    """Scroll down in steps so lazily rendered cards get attached to the DOM."""
    rng = rng or random
    try:
        for _ in range(scrolls):
            await page.scroll_by(step_px)
            await page.wait(rng.uniform(300, 700))
    except Exception as e:
        logger.debug(f"[human] Scroll materialization failed: {e}")
