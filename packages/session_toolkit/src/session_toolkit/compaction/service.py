"""Compaction orchestration for a live session."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from session_toolkit.compaction.branch_summarization import (
    collect_entries_for_branch_summary,
    generate_branch_summary,
)
from session_toolkit.compaction.compaction import compact, prepare_compaction
from session_toolkit.compaction.models import (
    DEFAULT_COMPACTION_SETTINGS,
    BranchSummaryResult,
    CompactionResult,
    CompactionSettings,
)
from session_toolkit.compaction.token_estimation import estimate_context_tokens, should_compact
from session_toolkit.logging_utils import session_log_context
from session_toolkit.session.manager import entry_not_found

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from strands.models.model import Model

    from session_toolkit.config.settings import CompactionMode, Settings
    from session_toolkit.session.manager import SessionManager

logger = logging.getLogger(__name__)

COMPACTION_NOT_CONFIGURED = "Compaction not configured"
COMPACTION_IN_PROGRESS = "Compaction already in progress"
STALE_COMPACTION = "Session branch moved during compaction; result discarded"


class StaleCompactionError(RuntimeError):
    """The leaf moved while a compaction summary was being generated."""


@dataclass
class CompactionConfig:
    """When and how a session is compacted.

    ``mode="auto"`` checks the threshold after every turn via ``auto_compact``;
    ``mode="manual"`` compacts only on an explicit ``compact`` call.
    """

    context_window: int
    mode: CompactionMode = "auto"
    model: Model | None = None
    settings: CompactionSettings | None = None
    on_compaction_start: Callable[[], None] | None = None
    on_compaction_complete: Callable[[CompactionResult], None] | None = None
    on_compaction_error: Callable[[BaseException], None] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> CompactionConfig:
        """Build a config from application settings."""
        return cls(
            context_window=settings.context_window,
            mode=settings.compaction_mode,
            settings=CompactionSettings(
                enabled=settings.compaction_enabled,
                reserve_tokens=settings.compaction_reserve_tokens,
                keep_recent_tokens=settings.compaction_keep_recent_tokens,
            ),
        )

    def resolved_settings(self) -> CompactionSettings:
        """Return the effective settings, falling back to the defaults."""
        return self.settings or DEFAULT_COMPACTION_SETTINGS


class CompactionService:
    """Run compaction and branch navigation against one session.

    At most one compaction is in flight per service. The leaf is snapshotted when
    a compaction is planned and re-checked before the entry is appended, so a
    result computed for a branch that has since moved is discarded.
    """

    def __init__(
        self,
        session: SessionManager,
        model: Model,
        config: CompactionConfig | None = None,
        provider_options: Mapping[str, Any] | None = None,
    ) -> None:
        self._session = session
        self._model = model
        self._config = config
        self._provider_options = provider_options
        self._compacting = False

    @property
    def session(self) -> SessionManager:
        """Return the session this service writes to."""
        return self._session

    @property
    def config(self) -> CompactionConfig | None:
        """Return the current compaction configuration."""
        return self._config

    @config.setter
    def config(self, config: CompactionConfig | None) -> None:
        self._config = config

    @property
    def is_compacting(self) -> bool:
        """Return whether a compaction is in flight."""
        return self._compacting

    async def compact(self, signal: asyncio.Event | None = None) -> CompactionResult | None:
        """Compact now, skipping the threshold check.

        Returns ``None`` when there is nothing old enough to summarize.

        Raises:
            RuntimeError: No configuration is set, or another compaction is in flight.
            StaleCompactionError: The leaf moved before the summary could be committed.
            SummarizationAbortedError: ``signal`` was set during the model call.
        """
        if self._config is None:
            raise RuntimeError(COMPACTION_NOT_CONFIGURED)
        if self._compacting:
            raise RuntimeError(COMPACTION_IN_PROGRESS)
        return await self._run_compaction(self._config, signal, skip_threshold_check=True)

    async def auto_compact(self, signal: asyncio.Event | None = None) -> CompactionResult | None:
        """Compact if auto mode is on and the context is over threshold.

        Failures are reported through ``on_compaction_error`` and swallowed; task
        cancellation still propagates.
        """
        config = self._config
        if config is None or config.mode != "auto" or self._compacting:
            return None
        try:
            return await self._run_compaction(config, signal, skip_threshold_check=False)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.debug("Auto-compaction failed; error reported via callback", exc_info=True)
            return None

    async def _run_compaction(
        self,
        config: CompactionConfig,
        signal: asyncio.Event | None,
        *,
        skip_threshold_check: bool,
    ) -> CompactionResult | None:
        settings = config.resolved_settings()
        if skip_threshold_check:
            settings = replace(settings, enabled=True)

        with session_log_context(self._session.session_id):
            if not skip_threshold_check:
                context_tokens = estimate_context_tokens(self._session.build_session_context().messages)
                if not should_compact(context_tokens, config.context_window, settings):
                    return None

            leaf_id = self._session.get_leaf_id()
            preparation = prepare_compaction(self._session.get_branch(), settings)
            if preparation is None:
                logger.debug("Nothing to compact")
                return None

            logger.info(
                "Compacting session: %d messages to summarize, %d tokens before",
                len(preparation.messages_to_summarize),
                preparation.tokens_before,
            )
            self._compacting = True
            try:
                if config.on_compaction_start is not None:
                    config.on_compaction_start()
                result = await compact(
                    preparation,
                    config.model or self._model,
                    self._provider_options,
                    signal,
                )
                if self._session.get_leaf_id() != leaf_id:
                    raise StaleCompactionError(STALE_COMPACTION)
                self._session.append_compaction(
                    result.summary,
                    result.first_kept_entry_id,
                    result.tokens_before,
                    result.details.to_dict() if result.details is not None else None,
                )
            except BaseException as exc:
                logger.warning("Compaction failed: %s", str(exc) or type(exc).__name__)
                if config.on_compaction_error is not None:
                    config.on_compaction_error(exc)
                raise
            finally:
                self._compacting = False

            logger.info("Compaction complete; first kept entry %s", result.first_kept_entry_id)
            if config.on_compaction_complete is not None:
                config.on_compaction_complete(result)
            return result

    async def navigate_to(
        self,
        target_id: str,
        *,
        summarize: bool = True,
        signal: asyncio.Event | None = None,
    ) -> BranchSummaryResult | None:
        """Move the leaf to ``target_id``, optionally summarizing the abandoned entries.

        Returns the summary result when one was attempted. A failed or aborted
        summary leaves the session untouched.

        Raises:
            ValueError: ``target_id`` is not an entry of this session.
        """
        if self._session.get_entry(target_id) is None:
            raise ValueError(entry_not_found(target_id))

        old_leaf_id = self._session.get_leaf_id()
        collected = collect_entries_for_branch_summary(self._session, old_leaf_id, target_id)
        if not summarize or not collected.entries:
            self._session.branch(target_id)
            return None

        settings = self._config.resolved_settings() if self._config else DEFAULT_COMPACTION_SETTINGS
        context_window = self._config.context_window if self._config else 128000
        with session_log_context(self._session.session_id):
            result = await generate_branch_summary(
                collected.entries,
                self._model,
                signal=signal,
                provider_options=self._provider_options,
                reserve_tokens=settings.reserve_tokens,
                context_window=context_window,
            )
            if result.aborted or result.error or result.summary is None:
                logger.info("Branch summary not committed (aborted=%s)", result.aborted)
                return result
            if self._session.get_leaf_id() != old_leaf_id:
                logger.warning(STALE_COMPACTION)
                return replace(result, error=STALE_COMPACTION)

            self._session.branch_with_summary(target_id, result.summary, result.details.to_dict())
        return result
