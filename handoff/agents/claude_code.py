"""Claude Code agent backend: invokes agents via the claude-agent-sdk.

The serialized ContextPackage is the whole prompt payload; the agent must
answer with a JSON AgentResult, which is parsed back through the same
contract every other agent implementation honours.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

# Allow nested invocation from within a Claude Code session.
# The SDK spawns claude CLI which checks for this env var.
os.environ.pop("CLAUDECODE", None)

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ResultMessage,
    TextBlock,
    query,
)

from handoff.agents.types import AgentResult, AgentStatus, ContextPackage
from handoff.workflow.exceptions import AgentInvocationFailed, MalformedAgentResult

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """\
You are the `{agent_id}` agent. {description}

You receive a context package with three parts: the original request
(requestContext), the data you are allowed to use (executionContext), and
your assignment (agentContext). Work only from that data.

```json
{package}
```

When you are done, reply with a single JSON object and nothing after it:

```json
{{"agentId": "{agent_id}", "status": "success" | "partial" | "failure",
  "deliverables": {{"summary": "<human-readable summary>", ...}},
  "diagnostics": ["<notes, or 'handoff: <instruction>' for the next agent>"]}}
```
Include every deliverable listed in agentContext.expected_output.
"""

_JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


@dataclass
class ExecutorOutput:
    text: str
    is_error: bool = False


class ClaudeCodeExecutor:
    """Executes prompts via the claude-agent-sdk.

    Uses the SDK's query() function which handles subprocess management,
    streaming, error handling, and message parsing internally.
    """

    def __init__(
        self,
        model: str = "sonnet",
        permission_mode: str = "acceptEdits",
        max_turns: int = 25,
    ) -> None:
        self._model = model
        self._permission_mode = permission_mode
        self._max_turns = max_turns

    async def run(
        self,
        prompt: str,
        working_dir: Path,
        allowed_tools: list[str] | None = None,
    ) -> ExecutorOutput:
        """Run a prompt and collect the assistant's text.

        Timeouts are enforced by the workflow engine around the whole
        invocation, so none is applied here.
        """
        options = ClaudeAgentOptions(
            model=self._model,
            cwd=working_dir,
            allowed_tools=allowed_tools or [],
            permission_mode=self._permission_mode,
            max_turns=self._max_turns,
        )

        text_parts: list[str] = []
        is_error = False
        async for message in query(prompt=prompt, options=options):
            if isinstance(message, AssistantMessage):
                for block in message.content:
                    if isinstance(block, TextBlock):
                        text_parts.append(block.text)
            elif isinstance(message, ResultMessage):
                is_error = message.is_error
                if message.result:
                    text_parts.append(message.result)

        return ExecutorOutput(text="\n".join(text_parts).strip(), is_error=is_error)


def parse_agent_reply(text: str, agent_id: str) -> AgentResult:
    """Pull the last JSON object out of an agent reply and parse it as a result."""
    blocks = _JSON_BLOCK_RE.findall(text)
    candidate = blocks[-1] if blocks else text[text.find("{"): text.rfind("}") + 1]
    if not candidate:
        raise MalformedAgentResult(agent_id, "reply contains no JSON object")
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise MalformedAgentResult(agent_id, f"reply is not valid JSON: {e}") from None
    return AgentResult.from_dict(data, agent_id=agent_id)


class ClaudeCodeAgent:
    """Agent implementation that forwards the context package to Claude."""

    ALLOWED_TOOLS = [
        "Read", "Glob", "Grep",
    ]

    def __init__(
        self,
        agent_id: str,
        executor: ClaudeCodeExecutor | None = None,
        description: str = "",
        working_dir: Path | None = None,
        allowed_tools: list[str] | None = None,
    ) -> None:
        self.name = agent_id
        self.description = description
        self._executor = executor
        self._working_dir = working_dir or Path(".")
        self._allowed_tools = allowed_tools if allowed_tools is not None else self.ALLOWED_TOOLS

    def build_prompt(self, package: ContextPackage) -> str:
        return PROMPT_TEMPLATE.format(
            agent_id=self.name,
            description=self.description,
            package=json.dumps(package.to_dict(), indent=2, sort_keys=True, default=str),
        )

    async def invoke(self, package: ContextPackage) -> AgentResult:
        if self._executor is None:
            raise RuntimeError(
                "No ClaudeCodeExecutor provided. "
                "Pass executor= to the constructor for real execution."
            )
        try:
            output = await self._executor.run(
                prompt=self.build_prompt(package),
                working_dir=self._working_dir,
                allowed_tools=self._allowed_tools,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise AgentInvocationFailed(self.name, str(e)) from e

        if output.is_error:
            logger.warning("Claude reported an error for agent %s", self.name)
            return AgentResult(
                agent_id=self.name,
                status=AgentStatus.FAILURE,
                diagnostics=[f"claude error: {output.text[:500] or '(no output)'}"],
            )
        return parse_agent_reply(output.text, self.name)
