"""
Anti-bot interstitial detection and resolution.

Detection works on the page title and markup: phrase signatures plus marker
elements that challenge pages carry. Resolution is a bounded wait loop with
human-like interaction and a best-effort click on the challenge checkbox.
"""
import logging
import random
from typing import Dict, Optional, Tuple

from bs4 import BeautifulSoup

from core.models import ChallengeState
from .human import jittered_delay_ms, simulate_human_behavior

logger = logging.getLogger(__name__)

TITLE_SIGNATURES = {
    'title_just_a_moment': 'just a moment',
    'title_attention_required': 'attention required',
}

BODY_SIGNATURES = {
    'body_checking_browser': 'checking your browser',
    'body_verify_human': 'verify you are human',
    'body_connection_secure': 'checking if the site connection is secure',
    'body_enable_cookies': 'enable javascript and cookies to continue',
}

MARKER_SELECTORS = {
    'marker_challenge_running': '#challenge-running',
    'marker_challenge_form': '#challenge-form',
    'marker_cf_challenge_running': '#cf-challenge-running',
    'marker_cf_challenge': '.cf-challenge',
    'marker_challenge_iframe': (
        'iframe[src*="challenges.cloudflare.com"], iframe[src*="turnstile"], '
        'iframe[title*="challenge"], .cf-turnstile iframe'
    ),
}

# Hard blocks: the session is burned, waiting will not help
BLOCK_TITLE_PHRASES = ('Access Denied', 'Blocked')
BLOCK_BODY_PHRASES = ('Access Denied', 'Error 403')

CHALLENGE_FRAME_PATTERN = r'challenges\.cloudflare\.com|turnstile|captcha'
FRAME_CHECKBOX_SELECTORS = (
    'input[type="checkbox"]',
    '.ctp-checkbox-label',
    '.cb-lb',
    'label',
)
GENERIC_VERIFY_SELECTORS = (
    '#challenge-stage input[type="button"]',
    '[data-testid="challenge-checkbox"]',
    'button:has-text("Verify")',
    'input[type="checkbox"][name*="challenge"]',
)

# Allowed state transitions within one resolve() call
TRANSITIONS = {
    ChallengeState.CLEAN: {ChallengeState.CHALLENGED},
    ChallengeState.CHALLENGED: {ChallengeState.CHALLENGED, ChallengeState.BYPASSED, ChallengeState.FAILED},
    ChallengeState.BYPASSED: set(),
    ChallengeState.FAILED: set(),
}


def detect_challenge(html: str, title: Optional[str] = None) -> Dict[str, bool]:
    """
    Evaluate every challenge signature against a page.

    Returns:
        Mapping of signature name to whether it matched
    """
    soup = BeautifulSoup(html or "", 'lxml')
    if title is None and soup.title:
        title = soup.title.get_text()
    title_lower = (title or '').lower()
    body_lower = soup.get_text(' ').lower()

    flags = {name: phrase in title_lower for name, phrase in TITLE_SIGNATURES.items()}
    flags.update({name: phrase in body_lower for name, phrase in BODY_SIGNATURES.items()})
    flags.update({name: soup.select_one(sel) is not None for name, sel in MARKER_SELECTORS.items()})
    return flags


def is_challenged(flags: Dict[str, bool]) -> bool:
    return any(flags.values())


def detect_block(html: str, title: Optional[str] = None) -> Optional[str]:
    """Return a short reason if the page is an access-denied page, else None."""
    title = title or ''
    for phrase in BLOCK_TITLE_PHRASES:
        if phrase in title:
            return f"title contains {phrase!r}"
    for phrase in BLOCK_BODY_PHRASES:
        if phrase in (html or ''):
            return f"content contains {phrase!r}"
    return None


class ChallengeResult:
    """Outcome of one resolve() call."""

    def __init__(self, state: ChallengeState, cycles: int = 0, flags: Optional[Dict[str, bool]] = None):
        self.state = state
        self.cycles = cycles
        self.flags = flags or {}

    @property
    def cleared(self) -> bool:
        return self.state in (ChallengeState.CLEAN, ChallengeState.BYPASSED)

    @property
    def seen(self) -> bool:
        return self.state != ChallengeState.CLEAN

    def __repr__(self):
        return f"<ChallengeResult(state={self.state.value}, cycles={self.cycles})>"


class ChallengeResolver:
    """Waits out (or clicks through) anti-bot interstitials."""

    def __init__(self, max_cycles: int = 6, delay_ms: Tuple[int, int] = (1000, 3000),
                 humanize: bool = True, idle_timeout_ms: int = 10000,
                 rng: Optional[random.Random] = None):
        self.max_cycles = max_cycles
        self.delay_ms = delay_ms
        self.humanize = humanize
        self.idle_timeout_ms = idle_timeout_ms
        self.rng = rng or random.Random()

    @classmethod
    def from_config(cls, config) -> "ChallengeResolver":
        return cls(
            max_cycles=config.challenge_max_cycles,
            delay_ms=config.challenge_delay_ms,
            humanize=config.humanize,
        )

    @staticmethod
    def _transition(current: ChallengeState, target: ChallengeState) -> ChallengeState:
        if target not in TRANSITIONS[current]:
            raise RuntimeError(f"Illegal challenge transition {current.value} -> {target.value}")
        return target

    async def inspect(self, page) -> Dict[str, bool]:
        """Evaluate challenge signatures on the live page."""
        try:
            title = await page.title()
            html = await page.content()
        except Exception as e:
            # Content is unreadable while the interstitial reloads the page
            logger.debug(f"[challenge] Page not readable yet: {e}")
            return {'page_unreadable': True}
        return detect_challenge(html, title)

    async def attempt_bypass(self, page) -> bool:
        """Click a challenge checkbox in its frame, else a generic verify control."""
        for selector in FRAME_CHECKBOX_SELECTORS:
            if await page.click(selector, frame_pattern=CHALLENGE_FRAME_PATTERN):
                logger.info(f"[challenge] Clicked {selector!r} inside challenge frame")
                return True
        for selector in GENERIC_VERIFY_SELECTORS:
            if await page.click(selector):
                logger.info(f"[challenge] Clicked verification control {selector!r}")
                return True
        return False

    async def resolve(self, page) -> ChallengeResult:
        """
        Detect and try to clear a challenge on ``page``.

        Runs at most ``max_cycles`` wait cycles and re-checks signatures after
        each one.

        Returns:
            ChallengeResult with CLEAN, BYPASSED or FAILED
        """
        flags = await self.inspect(page)
        if not is_challenged(flags):
            return ChallengeResult(ChallengeState.CLEAN, 0, flags)

        matched = [name for name, hit in flags.items() if hit]
        logger.warning(f"[challenge] Challenge detected on {page.url}: {', '.join(matched)}")
        state = self._transition(ChallengeState.CLEAN, ChallengeState.CHALLENGED)

        cycles = 0
        while cycles < self.max_cycles:
            cycles += 1
            await page.wait(jittered_delay_ms(*self.delay_ms, rng=self.rng))
            if self.humanize:
                await simulate_human_behavior(page, rng=self.rng)
            await self.attempt_bypass(page)
            await page.wait_for_idle(self.idle_timeout_ms)

            flags = await self.inspect(page)
            if not is_challenged(flags):
                state = self._transition(state, ChallengeState.BYPASSED)
                logger.info(f"[challenge] Cleared after {cycles} cycle(s) on {page.url}")
                return ChallengeResult(state, cycles, flags)
            state = self._transition(state, ChallengeState.CHALLENGED)
            logger.debug(f"[challenge] Still challenged after cycle {cycles}/{self.max_cycles}")

        state = self._transition(state, ChallengeState.FAILED)
        logger.error(f"[challenge] Not cleared after {cycles} cycles on {page.url}")
        return ChallengeResult(state, cycles, flags)
