"""Incremental scroll-and-capture collector for lazily rendered thread lists."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
from typing import Any, Protocol

from thread_relay.collectors.base import (
    CollectionBatch,
    CollectionStats,
    DomDetector,
    ScrollContainer,
    TextExtractor,
    TranscriptProcessor,
)
from thread_relay.config import CollectionConfig
from thread_relay.errors import (
    CollectionTimeout,
    ContainerNotFound,
    ExtractionError,
    StoreUnavailable,
)
from thread_relay.models import Message, ScrollSettings, Transcript, is_scrollable
from thread_relay.timing import ms_to_seconds, with_timeout

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
SleepFn = Callable[[float], Awaitable[None]]


class ScrollSettingsSource(Protocol):
    def get_scroll_settings(self) -> ScrollSettings:
        """Load persisted settings."""

    def update_scroll_settings(self, changes: dict[str, Any]) -> ScrollSettings:
        """Merge and persist settings."""

    def reset_scroll_settings(self) -> ScrollSettings:
        """Persist and return defaults."""


@dataclass
class _RunState:
    attempts: int = 0
    no_progress_streak: int = 0
    last_scroll_top: float = -1.0
    stuck_streak: int = 0
    stuck_escalations: int = 0
    captures: int = 0
    stop_reason: str = "max_attempts"


class IncrementalCollector:
    """Collect a complete, de-duplicated transcript from a virtualized list.

    Each ``collect`` call owns a fresh ``Transcript`` and run state. The loop stops on
    a no-progress streak, a confirmed immovable bottom, the attempt cap or the
    wall-clock budget; whichever comes first. Failures never leave this class: they
    degrade to a single capture of whatever is currently rendered.
    """

    def __init__(
        self,
        detector: DomDetector,
        extractor: TextExtractor,
        *,
        processor: TranscriptProcessor | None = None,
        settings_source: ScrollSettingsSource | None = None,
        tuning: CollectionConfig | None = None,
        progress_callback: ProgressCallback | None = None,
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        self._detector = detector
        self._extractor = extractor
        self._processor = processor
        self._settings_source = settings_source
        self._tuning = tuning or CollectionConfig()
        self._progress_callback = progress_callback
        self._sleep = sleep_fn
        self._settings = self._load_settings()

    def get_scroll_settings(self) -> ScrollSettings:
        return self._settings

    def update_scroll_settings(self, changes: dict[str, Any]) -> ScrollSettings:
        """Apply changes in memory and persist them; store failures propagate."""
        updated = self._settings.merged(changes)
        if self._settings_source is not None:
            updated = self._settings_source.update_scroll_settings(changes)
        self._settings = updated
        return updated

    def reset_scroll_settings(self) -> ScrollSettings:
        if self._settings_source is not None:
            self._settings = self._settings_source.reset_scroll_settings()
        else:
            self._settings = ScrollSettings()
        return self._settings

    async def collect(self) -> list[Message]:
        batch = await self.collect_with_stats()
        return list(batch.messages)

    async def collect_with_stats(self) -> CollectionBatch:
        transcript = Transcript()
        state = _RunState()
        logger.info("Starting thread collection with settings %s", self._settings.to_store())

        try:
            root = await self._detector.find_thread_container()
            if root is None:
                raise ContainerNotFound("No thread container is rendered on the page.")
            container = await self._find_scroll_container(root)
            if container is None:
                raise ContainerNotFound("Neither a scroll candidate nor the thread root can scroll.")

            await self._scroll_to_top(container)
            await with_timeout(
                self._scroll_loop(container, transcript, state),
                self._tuning.timeout_seconds,
                lambda: CollectionTimeout(
                    f"Collection exceeded {self._tuning.timeout_seconds:.0f}s; keeping partial transcript."
                ),
            )
        except CollectionTimeout as exc:
            logger.warning("%s", exc)
            state.stop_reason = "timeout"
        except ContainerNotFound as exc:
            logger.warning("%s Using currently rendered messages.", exc)
            state.stop_reason = "no_scroll_container"
        except Exception as exc:
            logger.error("Scroll collection failed, using currently rendered messages: %s", exc)
            state.stop_reason = "error"

        degraded = state.stop_reason in {"no_scroll_container", "error"}
        if not degraded and len(transcript) == 0:
            logger.warning("Scroll collection captured nothing; falling back to a direct capture.")
        if degraded or len(transcript) == 0:
            await self._direct_capture(transcript, state)

        messages = self._finalize(transcript)
        stats = CollectionStats(
            captures=state.captures,
            observed_messages=len(transcript),
            scroll_rounds=state.attempts,
            stagnation_rounds=state.no_progress_streak,
            stuck_escalations=state.stuck_escalations,
            stop_reason=state.stop_reason,
        )
        logger.info(
            "Thread collection finished: %s raw, %s processed, %s scroll rounds, stop_reason=%s",
            len(transcript),
            len(messages),
            state.attempts,
            state.stop_reason,
        )
        return CollectionBatch(messages=tuple(messages), raw_count=len(transcript), stats=stats)

    async def _scroll_loop(
        self,
        container: ScrollContainer,
        transcript: Transcript,
        state: _RunState,
    ) -> None:
        settings = self._settings
        tuning = self._tuning

        while state.attempts < settings.max_scroll_attempts:
            metrics = await container.metrics()
            top = metrics.scroll_top
            max_top = metrics.max_scroll_top

            before = len(transcript)
            await self._capture_into(transcript, state)
            added = len(transcript) - before
            self._report_progress(top, max_top, len(transcript))
            logger.debug(
                "Scroll round %s: +%s messages, %s total, top=%s height=%s",
                state.attempts + 1,
                added,
                len(transcript),
                top,
                metrics.scroll_height,
            )

            if abs(top - state.last_scroll_top) < tuning.stuck_delta_px:
                state.stuck_streak += 1
            else:
                state.stuck_streak = 0
            state.last_scroll_top = top

            if added == 0:
                state.no_progress_streak += 1
                if state.no_progress_streak >= self._no_progress_threshold(len(transcript)):
                    state.stop_reason = "no_progress"
                    return
            else:
                state.no_progress_streak = 0

            if state.stuck_streak >= tuning.stuck_streak:
                logger.debug("Scroll offset stalled near %s; escalating step", top)
                step = self._scroll_amount(metrics.client_height) * tuning.stuck_step_multiplier
                await container.scroll_to(top + step)
                state.stuck_streak = 0
                state.stuck_escalations += 1
            else:
                await container.scroll_to(top + self._scroll_amount(metrics.client_height))
            await self._settle()

            near_bottom = top >= max_top - tuning.bottom_margin_px
            reached_bottom = top + metrics.client_height >= metrics.scroll_height - tuning.bottom_edge_px
            if near_bottom or reached_bottom:
                before_jump = (await container.metrics()).scroll_top
                await container.scroll_to_bottom()
                await self._settle()
                await self._capture_into(transcript, state)
                after_jump = (await container.metrics()).scroll_top
                if abs(after_jump - before_jump) < tuning.bottom_confirm_delta_px:
                    state.stop_reason = "bottom_confirmed"
                    return

            state.attempts += 1

        state.stop_reason = "max_attempts"

    async def _find_scroll_container(self, root: ScrollContainer) -> ScrollContainer | None:
        for candidate in await self._detector.scroll_candidates(root):
            if is_scrollable(await candidate.metrics()):
                return candidate
        if is_scrollable(await root.metrics()):
            logger.debug("Using the thread root as scroll container")
            return root
        return None

    async def _scroll_to_top(self, container: ScrollContainer) -> None:
        await container.scroll_to(0)
        await self._settle()

    async def _settle(self) -> None:
        await self._sleep(ms_to_seconds(self._settings.scroll_delay))
        await self._sleep(ms_to_seconds(self._tuning.virtual_list_grace_ms))

    async def _capture_into(self, transcript: Transcript, state: _RunState, *, verbose: bool = False) -> int:
        state.captures += 1
        added = 0
        elements = await self._detector.find_message_elements(verbose)
        for index, element in enumerate(elements):
            try:
                box = await element.bounding_box()
                if not box or box.get("width", 0) <= 0 or box.get("height", 0) <= 0:
                    continue
                message = await self._extractor.extract_single_message(element)
            except ExtractionError as exc:
                logger.debug("Skipping message element %s: %s", index + 1, exc)
                continue
            except Exception as exc:
                logger.debug("Skipping message element %s after unexpected error: %s", index + 1, exc)
                continue
            if message is None or not message.text.strip():
                continue
            if transcript.add(message):
                added += 1
        if verbose:
            logger.info("Direct capture found %s elements, %s new messages", len(elements), added)
        return added

    async def _direct_capture(self, transcript: Transcript, state: _RunState) -> None:
        try:
            await self._capture_into(transcript, state, verbose=True)
        except Exception as exc:
            logger.error("Direct capture failed: %s", exc)

    def _finalize(self, transcript: Transcript) -> list[Message]:
        raw = transcript.messages()
        if self._processor is None:
            return raw
        try:
            return self._processor.process_messages(raw)
        except Exception as exc:
            logger.error("Message post-processing failed, returning raw transcript: %s", exc)
            return raw

    def _no_progress_threshold(self, transcript_size: int) -> int:
        threshold = self._settings.no_max_new_messages_count
        if transcript_size > self._tuning.long_thread_threshold:
            return max(threshold, self._tuning.long_thread_min_no_progress)
        return threshold

    def _scroll_amount(self, client_height: float) -> float:
        amount = float(max(self._settings.scroll_step, self._settings.min_scroll_amount))
        if client_height > self._tuning.tall_viewport_px:
            amount = max(amount, client_height * self._tuning.tall_viewport_ratio)
        return amount

    def _report_progress(self, top: float, max_top: float, count: int) -> None:
        if self._progress_callback is None:
            return
        progress = min(top / max_top, 1.0) if max_top > 0 else 0.0
        self._progress_callback(round(progress * 100), count)

    def _load_settings(self) -> ScrollSettings:
        if self._settings_source is None:
            return ScrollSettings()
        try:
            return self._settings_source.get_scroll_settings()
        except StoreUnavailable as exc:
            logger.warning("Could not load scroll settings, using defaults: %s", exc)
            return ScrollSettings()
