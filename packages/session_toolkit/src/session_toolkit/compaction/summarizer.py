"""Text generation against a strands model for summarization calls."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from strands.models.model import Model
    from strands.types.content import Messages

logger = logging.getLogger(__name__)


class SummarizationAbortedError(Exception):
    """Raised when the cancellation signal fires during a summarization call."""


def _text_from_event(event: Any) -> str:
    if not isinstance(event, dict):
        return ""
    delta = event.get("contentBlockDelta", {}).get("delta", {})
    text = delta.get("text") if isinstance(delta, dict) else None
    return text if isinstance(text, str) else ""


async def _stream_text(
    model: Model,
    messages: Messages,
    system_prompt: str,
    provider_options: Mapping[str, Any] | None,
) -> str:
    chunks: list[str] = []
    async for event in model.stream(messages, system_prompt=system_prompt, **(provider_options or {})):
        chunks.append(_text_from_event(event))
    return "".join(chunks)


async def generate_text(
    model: Model,
    prompt: str,
    *,
    system_prompt: str,
    provider_options: Mapping[str, Any] | None = None,
    signal: asyncio.Event | None = None,
) -> str:
    """Send a single user prompt to ``model`` and return the streamed text.

    Args:
        model: Strands model used for the call.
        prompt: User prompt text.
        system_prompt: System prompt for the call.
        provider_options: Forwarded unchanged to ``model.stream``.
        signal: Optional cancellation signal. Setting it cancels the call.

    Raises:
        SummarizationAbortedError: The signal was set before the call finished.
    """
    messages: Messages = [{"role": "user", "content": [{"text": prompt}]}]

    if signal is None:
        return await _stream_text(model, messages, system_prompt, provider_options)
    if signal.is_set():
        raise SummarizationAbortedError

    call = asyncio.ensure_future(_stream_text(model, messages, system_prompt, provider_options))
    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (call, waiter):
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    if call in done:
        return call.result()
    logger.debug("Summarization call cancelled by signal")
    raise SummarizationAbortedError
