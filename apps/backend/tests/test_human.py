"""
Tests for human-like interaction helpers.
"""
import random

import pytest

from crawler.human import (
    generate_mouse_path,
    jittered_delay_ms,
    materialize_lazy_content,
    simulate_human_behavior,
)

from conftest import FakePage


def test_mouse_path_endpoints_exact():
    rng = random.Random(1)
    path = generate_mouse_path((0, 0), (400, 300), rng=rng)
    assert path[0] == (0, 0)
    assert path[-1] == (400, 300)
    assert 11 <= len(path) <= 51


def test_mouse_path_fixed_steps():
    path = generate_mouse_path((10, 10), (20, 20), steps=5, rng=random.Random(2))
    assert len(path) == 6


def test_jittered_delay_bounds():
    rng = random.Random(3)
    values = [jittered_delay_ms(3000, 6000, rng=rng) for _ in range(50)]
    assert all(3000 <= v <= 6000 for v in values)
    assert jittered_delay_ms(0, 0) == 0


@pytest.mark.asyncio
async def test_materialize_scrolls_five_times():
    page = FakePage()
    await materialize_lazy_content(page, rng=random.Random(4))
    assert page.scrolls == 5


@pytest.mark.asyncio
async def test_simulation_errors_are_swallowed():
    class BrokenPage(FakePage):
        async def viewport(self):
            raise RuntimeError("page closed")

    # Must not raise
    await simulate_human_behavior(BrokenPage(), rng=random.Random(5))
