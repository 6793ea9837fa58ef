from __future__ import annotations

import asyncio

import pytest

from session_toolkit.compaction import SummarizationAbortedError, generate_text
from utilities import FakeModel


class ChunkedModel:
    def __init__(self, events: list) -> None:
        self.events = events

    async def stream(self, messages, tool_specs=None, system_prompt=None, **kwargs):
        for event in self.events:
            yield event


@pytest.mark.asyncio
async def test_generate_text_joins_text_deltas() -> None:
    model = ChunkedModel(
        [
            {"messageStart": {"role": "assistant"}},
            {"contentBlockDelta": {"delta": {"text": "Hello, "}}},
            {"contentBlockDelta": {"delta": {"reasoningContent": {"text": "hidden"}}}},
            {"contentBlockDelta": {"delta": {"text": "world"}}},
            {"metadata": {"usage": {"inputTokens": 3}}},
        ]
    )

    text = await generate_text(model, "prompt", system_prompt="system")

    assert text == "Hello, world"


@pytest.mark.asyncio
async def test_generate_text_sends_single_user_message() -> None:
    model = FakeModel("ok")

    await generate_text(model, "summarize this", system_prompt="be brief", provider_options={"max_tokens": 10})

    call = model.calls[0]
    assert call["messages"] == [{"role": "user", "content": [{"text": "summarize this"}]}]
    assert call["system_prompt"] == "be brief"
    assert call["kwargs"] == {"max_tokens": 10}


@pytest.mark.asyncio
async def test_generate_text_with_unset_signal_completes() -> None:
    model = FakeModel("done")

    text = await generate_text(model, "p", system_prompt="s", signal=asyncio.Event())

    assert text == "done"


@pytest.mark.asyncio
async def test_signal_cancels_inflight_call() -> None:
    gate = asyncio.Event()
    model = FakeModel("never", gate=gate)
    signal = asyncio.Event()

    task = asyncio.create_task(generate_text(model, "p", system_prompt="s", signal=signal))
    await model.started.wait()
    signal.set()

    with pytest.raises(SummarizationAbortedError):
        await task
    assert not gate.is_set()


@pytest.mark.asyncio
async def test_model_errors_propagate() -> None:
    model = FakeModel(error=RuntimeError("provider down"))

    with pytest.raises(RuntimeError, match="provider down"):
        await generate_text(model, "p", system_prompt="s", signal=asyncio.Event())
