"""Validator tools and the registry the validation executor dispatches on.

A tool is anything callable with a ValidationContext that returns a raw
result, either directly or as an awaitable. Tools are looked up by the
criterion's ``validation_method``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
from collections.abc import Awaitable, Callable
from typing import Any, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from shared.config import ValidatorToolConfig
from shared.errors import MalformedResultError, ToolUnavailable
from shared.models import (
    PassRawResult,
    PercentageRawResult,
    RawResult,
    ScoreRawResult,
    ValidationContext,
)

logger = logging.getLogger(__name__)

ToolOutput = Union[RawResult, dict[str, Any]]
ValidatorTool = Callable[[ValidationContext], Union[ToolOutput, Awaitable[ToolOutput]]]

_RAW_RESULT_ADAPTER: TypeAdapter[RawResult] = TypeAdapter(RawResult)

# Field name → result variant, for tools that report plain dicts
_SHAPES = {
    "score": ScoreRawResult,
    "passed": PassRawResult,
    "percentage": PercentageRawResult,
}


def coerce_raw_result(output: Any, method: str = "") -> RawResult:
    """Turn a tool's output into one of the tagged raw result variants.

    Accepts an already-typed variant, a dict tagged with ``kind``, or a
    dict carrying exactly one of ``score``, ``passed``, ``percentage``.

    Raises:
        MalformedResultError: For any other shape.
    """
    if isinstance(output, (ScoreRawResult, PassRawResult, PercentageRawResult)):
        return output
    if not isinstance(output, dict):
        raise MalformedResultError(
            f"Validator '{method}' returned {type(output).__name__}, expected a result mapping"
        )

    try:
        if "kind" in output:
            return _RAW_RESULT_ADAPTER.validate_python(output)

        present = [key for key in _SHAPES if key in output]
        if len(present) != 1:
            raise MalformedResultError(
                f"Validator '{method}' returned keys {sorted(output)}; "
                "expected exactly one of 'score', 'passed', 'percentage'"
            )
        return _SHAPES[present[0]].model_validate(output)
    except PydanticValidationError as e:
        raise MalformedResultError(f"Validator '{method}' returned an invalid result: {e}") from e


# --- Command Tool ---


class CommandTool:
    """Runs an external command as a read-only validator.

    Args:
        name: Validation method this tool serves.
        command: Argument list (or a string split with shlex).
        parse: ``exit-code`` or ``json``.
        cwd: Working directory; defaults to ``context.metadata["workdir"]``.
    """

    def __init__(
        self,
        name: str,
        command: list[str] | str,
        parse: str = "exit-code",
        cwd: str = "",
    ) -> None:
        if parse not in ("exit-code", "json"):
            raise ValueError(f"Unknown parse mode '{parse}' for tool '{name}'")
        self.name = name
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.command:
            raise ValueError(f"Tool '{name}' has an empty command")
        self.parse = parse
        self.cwd = cwd

    async def __call__(self, context: ValidationContext) -> RawResult:
        cwd = self.cwd or context.metadata.get("workdir") or None
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ToolUnavailable(self.name, str(e)) from e

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            # Timed out by the caller: don't leave the process running
            proc.kill()
            await proc.wait()
            raise

        out = stdout.decode(errors="replace").strip()
        err = stderr.decode(errors="replace").strip()

        if self.parse == "json":
            try:
                payload = json.loads(out)
            except json.JSONDecodeError as e:
                raise MalformedResultError(f"Validator '{self.name}' printed invalid JSON: {e}") from e
            return coerce_raw_result(payload, self.name)

        details = (err or out)[-500:]
        return PassRawResult(
            passed=proc.returncode == 0,
            details=f"exit status {proc.returncode}" + (f": {details}" if details else ""),
        )


# --- Registry ---


class ToolRegistry:
    """Maps validation methods to validator tools."""

    def __init__(self) -> None:
        self._tools: dict[str, ValidatorTool] = {}

    def register(self, name: str, tool: ValidatorTool | None = None) -> Any:
        """Register a tool. Usable directly or as a decorator.

        Example:
            @registry.register("lint")
            def lint(context): ...
        """
        if tool is None:

            def decorator(fn: ValidatorTool) -> ValidatorTool:
                self._tools[name] = fn
                return fn

            return decorator

        self._tools[name] = tool
        return tool

    def get(self, name: str) -> ValidatorTool:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolUnavailable(name, "no tool registered") from None

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return sorted(self._tools)

    @classmethod
    def from_config(cls, validators: dict[str, ValidatorToolConfig]) -> ToolRegistry:
        """Build a registry of command tools from the ``validators`` config section."""
        registry = cls()
        for name, cfg in validators.items():
            registry.register(name, CommandTool(name, cfg.command, parse=cfg.parse, cwd=cfg.cwd))
            logger.debug("Registered command validator %s: %s", name, cfg.command)
        return registry
