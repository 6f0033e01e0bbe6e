"""
Agent Orchestrator.

Runs the bounded agent loop for one user turn:

    user message -> model -> (script block? execute, feed result back, repeat)
                          -> (no block? final answer)

The loop is capped at ``max_iterations`` model calls. Script failures of
any kind (validation, transport, process) are fed back to the model as a
result message so it can recover; model failures propagate to the caller.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any

import structlog

from nuagent.config import AgentConfig
from nuagent.conversation.manager import (
    ConversationManager,
    ExecutionRecord,
    MessageRole,
    estimate_tokens,
)
from nuagent.execution.base import ExecutionRequest, ExecutionResult, SessionExecutor, elapsed_ms
from nuagent.llm.provider import ChatMessage, ChatProvider
from nuagent.observability.metrics import ExecutionSample, MetricsCollector, TurnSample
from nuagent.observability.tracing import get_tracer, truncate
from nuagent.scripting.blocks import extract_script_block, format_script_block
from nuagent.scripting.registry import generate_command_reference

logger = structlog.get_logger(__name__)

RESULT_PREFIX = "[Script Result]"


@dataclass(frozen=True)
class TokenUsage:
    prompt: int = 0
    completion: int = 0

    @property
    def total(self) -> int:
        return self.prompt + self.completion

    def to_dict(self) -> dict[str, int]:
        return {"prompt": self.prompt, "completion": self.completion, "total": self.total}


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one ``process_message`` call."""

    response: str
    executions: tuple[ExecutionResult, ...] = ()
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    reasoning: str | None = None
    iterations: int = 0
    iteration_limit_reached: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "response": self.response,
            "executions": [e.to_dict() for e in self.executions],
            "token_usage": self.token_usage.to_dict(),
            "reasoning": self.reasoning,
            "iterations": self.iterations,
            "iteration_limit_reached": self.iteration_limit_reached,
        }


@dataclass
class DirectExecutionResult:
    output: str
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"output": self.output, "success": self.success, "error": self.error}


def build_system_prompt(command_reference: str, additions: str | None = None) -> str:
    """Build the fixed system prompt: capabilities, usage, guidelines and safety."""
    example = format_script_block("# Your Nushell script here\nls | where size > 1mb | sort-by size -r")
    sections = [
        "You are a helpful assistant that accomplishes tasks by running Nushell scripts.",
        "## Capabilities\n\n"
        "You can execute Nushell scripts to:\n"
        "- Work with files and directories\n"
        "- Process structured data (JSON, CSV, tables)\n"
        "- Make web requests\n"
        "- Store and recall information",
        f"## Nushell Command Reference\n\n{command_reference}",
        "## Usage\n\n"
        "When you need to perform an action, write the Nushell script in a fenced code block:\n\n"
        f"{example}\n\n"
        "Only the first script block in a reply is executed. You will receive the result "
        "and can then explain it or run another script. Reply without a script block "
        "when you have the final answer.",
        "## Guidelines\n\n"
        "1. **Prefer Nushell over text responses** when actions can accomplish the user's goal\n"
        "2. **Chain pipelines** to process data efficiently\n"
        "3. **Use structured output** (tables, JSON) for data\n"
        "4. **Explain results** after execution in natural language\n"
        "5. **Handle errors gracefully** and offer alternatives",
        "## Safety\n\n"
        "- You cannot modify system files or the environment\n"
        "- Network access is sandboxed\n"
        "- Dangerous commands are blocked before execution\n"
        "- Scripts run with a time limit",
    ]
    if additions:
        sections.append(additions.strip())
    return "\n\n".join(sections)


def format_execution_result(result: ExecutionResult) -> str:
    """Render an execution outcome for the model."""
    if result.success:
        if result.structured_data is not None:
            return json.dumps(result.structured_data, indent=2)
        return result.output or "(No output)"
    return f"Error: {result.error or 'Unknown error'}\n\nOutput:\n{result.output}"


def build_input_prelude(value: Any) -> str:
    """Nushell statement binding ``$input`` to a JSON-serializable value."""
    return f"let input = (r#'{json.dumps(value)}'# | from json)"


class Orchestrator:
    """Bounded agent loop over a chat provider, a conversation store and an executor."""

    def __init__(
        self,
        provider: ChatProvider,
        conversations: ConversationManager,
        executor: SessionExecutor,
        config: AgentConfig | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self.provider = provider
        self.conversations = conversations
        self.executor = executor
        self.config = config or AgentConfig()
        self.metrics = metrics
        self._system_prompt = build_system_prompt(
            generate_command_reference(), self.config.system_prompt_additions
        )
        self._tracer = get_tracer("orchestrator")

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    async def process_message(self, conversation_id: str, user_message: str) -> TurnResult:
        """
        Run one user turn to completion.

        Raises:
            ConversationNotFoundError: If the conversation does not exist
            ModelError: If the model call fails (history appended so far is kept)
        """
        self.conversations.require(conversation_id)
        self.conversations.add_message(conversation_id, MessageRole.USER, user_message)

        log = logger.bind(conversation_id=conversation_id)
        start = time.monotonic()
        max_iterations = self.config.max_iterations
        context_budget = self.config.max_context_tokens - estimate_tokens(self._system_prompt)

        executions: list[ExecutionResult] = []
        prompt_tokens = 0
        completion_tokens = 0
        reasoning: str | None = None
        response: str | None = None
        iterations = 0

        log.info("Turn started", max_iterations=max_iterations)

        with self._tracer.start_as_current_span("agent.turn") as span:
            span.set_attribute("conversation.id", conversation_id)
            span.set_attribute("turn.user_message", truncate(user_message))

            for iteration in range(max_iterations):
                iterations = iteration + 1
                history = self.conversations.get_messages_for_context(conversation_id, context_budget)
                messages = [ChatMessage(role="system", content=self._system_prompt), *history]

                with self._tracer.start_as_current_span("agent.model_call") as model_span:
                    model_span.set_attribute("agent.iteration", iterations)
                    model_span.set_attribute("agent.context_messages", len(messages))
                    try:
                        reply = await self.provider.chat(
                            messages,
                            reasoning=self.config.enable_reasoning,
                            reasoning_effort=self.config.reasoning_effort,
                        )
                    except Exception:
                        if self.metrics:
                            self.metrics.record_model_error()
                        log.error("Model call failed", iteration=iterations)
                        raise
                    model_span.set_attribute("llm.prompt_tokens", reply.usage.prompt_tokens)
                    model_span.set_attribute("llm.completion_tokens", reply.usage.completion_tokens)

                prompt_tokens += reply.usage.prompt_tokens
                completion_tokens += reply.usage.completion_tokens
                if self.metrics:
                    self.metrics.record_model_call(
                        reply.usage.prompt_tokens, reply.usage.completion_tokens
                    )
                if reply.reasoning:
                    reasoning = reply.reasoning

                script = extract_script_block(reply.content)
                if script is None:
                    self.conversations.add_message(
                        conversation_id,
                        MessageRole.ASSISTANT,
                        reply.content,
                        tokens=reply.usage.completion_tokens,
                    )
                    response = reply.content
                    break

                result = await self._run_script(conversation_id, script)
                executions.append(result)

                self.conversations.add_message(
                    conversation_id,
                    MessageRole.ASSISTANT,
                    reply.content,
                    tokens=reply.usage.completion_tokens,
                )
                self.conversations.add_message(
                    conversation_id,
                    MessageRole.USER,
                    f"{RESULT_PREFIX}\n{format_execution_result(result)}",
                    execution=ExecutionRecord(
                        script=script,
                        output=result.output,
                        success=result.success,
                        duration_ms=result.duration_ms,
                    ),
                )
                if not result.success:
                    log.warning(
                        "Script execution failed",
                        iteration=iterations,
                        error=result.error,
                        error_type=result.error_type,
                    )

            limit_reached = response is None
            if limit_reached:
                response = self._limit_notice(max_iterations, executions)
                self.conversations.add_message(conversation_id, MessageRole.ASSISTANT, response)
                log.warning("Iteration limit reached", iterations=iterations)

            span.set_attribute("agent.iterations", iterations)
            span.set_attribute("agent.executions", len(executions))
            span.set_attribute("agent.iteration_limit_reached", limit_reached)

        duration = elapsed_ms(start)
        if self.metrics:
            self.metrics.record_turn(
                TurnSample(
                    conversation_id=conversation_id,
                    iterations=iterations,
                    executions=len(executions),
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    duration_ms=duration,
                    iteration_limit_reached=limit_reached,
                )
            )

        log.info(
            "Turn finished",
            iterations=iterations,
            executions=len(executions),
            duration_ms=duration,
            iteration_limit_reached=limit_reached,
        )

        return TurnResult(
            response=response,
            executions=tuple(executions),
            token_usage=TokenUsage(prompt=prompt_tokens, completion=completion_tokens),
            reasoning=reasoning,
            iterations=iterations,
            iteration_limit_reached=limit_reached,
        )

    @staticmethod
    def _limit_notice(max_iterations: int, executions: list[ExecutionResult]) -> str:
        notice = (
            f"Iteration limit reached ({max_iterations}/{max_iterations}) "
            "before a final answer was produced."
        )
        if executions:
            notice += f"\n\nLast script result:\n{format_execution_result(executions[-1])}"
        return notice

    async def _run_script(
        self,
        session_id: str,
        script: str,
        timeout_ms: int | None = None,
    ) -> ExecutionResult:
        with self._tracer.start_as_current_span("executor.execute") as span:
            span.set_attribute("executor.name", self.executor.name)
            span.set_attribute("executor.session_id", session_id)
            span.set_attribute("executor.script", truncate(script))

            result = await self.executor.execute(
                ExecutionRequest(
                    script=script,
                    session_id=session_id,
                    timeout_ms=timeout_ms or self.config.execution_timeout_ms,
                )
            )

            span.set_attribute("executor.success", result.success)
            span.set_attribute("executor.duration_ms", result.duration_ms)
            if result.error_type:
                span.set_attribute("executor.error_type", result.error_type)

        if self.metrics:
            self.metrics.record_execution(
                ExecutionSample(
                    executor=self.executor.name,
                    success=result.success,
                    duration_ms=result.duration_ms,
                    validation_rejected=not result.validation.valid,
                    error_type=result.error_type,
                )
            )
        return result

    async def start_conversation(
        self,
        user_message: str,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[str, TurnResult]:
        """Create a conversation and run its first turn."""
        conversation = self.conversations.create(metadata)
        result = await self.process_message(conversation.id, user_message)
        return conversation.id, result

    async def execute_script(
        self,
        script: str,
        input: Any | None = None,
        timeout_ms: int | None = None,
    ) -> DirectExecutionResult:
        """
        Execute a script directly, bypassing the model.

        When ``input`` is given it is bound to ``$input`` ahead of the script.
        Never raises; failures are reported in the result.
        """
        logger.info(
            "Direct script execution request",
            script_length=len(script),
            has_input=input is not None,
        )
        try:
            full_script = script
            if input is not None:
                full_script = f"{build_input_prelude(input)}\n{script}"
            result = await self._run_script(
                f"direct-{int(time.time() * 1000)}", full_script, timeout_ms
            )
        except (TypeError, ValueError) as e:
            logger.error("Direct script execution error", error=str(e))
            return DirectExecutionResult(output="", success=False, error=str(e) or "Execution failed")

        return DirectExecutionResult(output=result.output, success=result.success, error=result.error)
