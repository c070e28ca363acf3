"""Bounded tool-use loop over the model gateway."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from agent_orchestrator.core.models import ToolCallLogEntry, ToolResult
from agent_orchestrator.llm.types import CompletionRequest, CompletionResponse, TokenUsage, ToolCall
from agent_orchestrator.log import get_logger

if TYPE_CHECKING:
    from agent_orchestrator.llm.gateway import ModelGateway

logger = get_logger(__name__)

MAX_TOOL_ROUNDS = 10

EXHAUSTED_REPLY = (
    "I'm sorry, I wasn't able to finish that request. "
    "Could you rephrase it, or would you like me to connect you with a human agent?"
)

# (tool call) -> (log entry, result)
ToolDispatch = Callable[[ToolCall], Awaitable[tuple[ToolCallLogEntry, ToolResult]]]
# (response that asked for tools, the calls, their results) -> None
RoundRecorder = Callable[[CompletionResponse, list[ToolCall], list[ToolResult]], Awaitable[None]]

_SURFACED_METADATA = ("forbidden", "consent_required", "approval_required", "approval_id", "error_code")


def tool_result_content(result: ToolResult) -> str:
    """JSON text handed back to the model as a ``tool_result`` block."""
    if result.success:
        return json.dumps(result.data, default=str)
    payload: dict[str, Any] = {"error": result.error}
    for key in _SURFACED_METADATA:
        if key in result.metadata:
            payload[key] = result.metadata[key]
    return json.dumps(payload, default=str)


def _assistant_blocks(response: CompletionResponse) -> list[dict[str, Any]]:
    if response.content_blocks:
        return list(response.content_blocks)
    blocks: list[dict[str, Any]] = [{"type": "text", "text": response.content}] if response.content else []
    blocks.extend(
        {"type": "tool_use", "id": c.id, "name": c.name, "input": c.arguments} for c in response.tool_calls
    )
    return blocks


@dataclass
class ToolLoopOutcome:
    response: CompletionResponse
    text: str
    tool_calls: list[ToolCallLogEntry] = field(default_factory=list)
    rounds: int = 0
    exhausted: bool = False
    usage: TokenUsage = field(default_factory=TokenUsage)


async def run_tool_loop(
    gateway: ModelGateway,
    request: CompletionRequest,
    first: CompletionResponse,
    dispatch: ToolDispatch,
    on_round: RoundRecorder | None = None,
    max_rounds: int = MAX_TOOL_ROUNDS,
) -> ToolLoopOutcome:
    """Execute requested tools and continue the completion until the model stops asking.

    At most ``max_rounds`` continuation requests are issued after ``first``.
    When the ceiling is hit with tools still requested, the last completion's
    text is returned (or a fixed apology when it has none).
    """
    messages = list(request.messages)
    response = first
    entries: list[ToolCallLogEntry] = []
    usage = TokenUsage(
        input_tokens=first.usage.input_tokens,
        output_tokens=first.usage.output_tokens,
    )
    rounds = 0

    while response.tool_calls:
        if rounds >= max_rounds:
            logger.warning("tool_loop_exhausted", rounds=rounds, pending_calls=len(response.tool_calls))
            break

        calls = list(response.tool_calls)
        results: list[ToolResult] = []
        for call in calls:
            entry, result = await dispatch(call)
            entries.append(entry)
            results.append(result)

        messages.append({"role": "assistant", "content": _assistant_blocks(response)})
        messages.append(
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": call.id,
                        "content": tool_result_content(result),
                        "is_error": not result.success,
                    }
                    for call, result in zip(calls, results)
                ],
            }
        )
        if on_round is not None:
            await on_round(response, calls, results)

        rounds += 1
        logger.debug("tool_round_completed", round=rounds, calls=len(calls))
        response = await gateway.complete(replace(request, messages=list(messages)))
        usage.input_tokens += response.usage.input_tokens
        usage.output_tokens += response.usage.output_tokens

    exhausted = bool(response.tool_calls)
    text = response.content
    if exhausted and not text.strip():
        text = EXHAUSTED_REPLY

    return ToolLoopOutcome(
        response=response,
        text=text,
        tool_calls=entries,
        rounds=rounds,
        exhausted=exhausted,
        usage=usage,
    )
