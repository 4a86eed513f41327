"""Tool registry - the side-effecting operations the chat model may call.

Each tool declares a Pydantic model for its arguments. Validation happens
once, here, at the registry boundary; handlers always receive a typed
argument object. The registry is built at startup and read-only after.

Tool definitions are exposed to the model in OpenAI-compatible format:
{
    "type": "function",
    "function": {
        "name": "send_link",
        "description": "Text the caller a link",
        "parameters": {"type": "object", "properties": {...}, "required": [...]}
    }
}
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Type

from loguru import logger
from pydantic import BaseModel, ValidationError

from livbridge.core.errors import ToolArgumentError, ToolExecutionError, UnknownToolError
from livbridge.core.turns import Channel, ToolInvocationRequest, ToolResult

if TYPE_CHECKING:
    from livbridge.session import Session


@dataclass
class ToolContext:
    """Per-call context handed to tool handlers."""

    session_id: str
    channel: Channel
    caller: str = ""
    session: Session | None = None


ToolHandler = Callable[[Any, ToolContext], Awaitable[str]]


@dataclass
class ToolSpec:
    """A registered tool.

    Args:
        name: Unique tool name the model calls.
        description: Shown to the model.
        args_model: Pydantic model for the arguments; its JSON schema is
            the tool's input schema (field names, types, required subset).
        handler: Async function(args, context) -> acknowledgment text.
        timeout_seconds: Upper bound on one execution.
    """

    name: str
    description: str
    args_model: Type[BaseModel]
    handler: ToolHandler
    timeout_seconds: float = 10.0

    @property
    def input_schema(self) -> dict[str, Any]:
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        schema["type"] = "object"
        return schema

    @property
    def required_fields(self) -> list[str]:
        return [name for name, f in self.args_model.model_fields.items() if f.is_required()]

    def definition(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


class ToolRegistry:
    """Named, schema-validated tools shared by all sessions.

    Args:
        degraded_text: Acknowledgment used when a tool fails or has to be
            skipped, so the caller hears a calm line instead of an error.
        default_timeout: Timeout for tools registered without one.
    """

    def __init__(
        self,
        degraded_text: str = "I had trouble with that, but I've noted it.",
        default_timeout: float = 10.0,
    ) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._degraded_text = degraded_text
        self._default_timeout = default_timeout

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, spec: ToolSpec) -> None:
        """Register a tool. Names must be unique."""
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec
        logger.debug(f"Registered tool: {spec.name}")

    def tool(
        self,
        name: str,
        args_model: Type[BaseModel],
        description: str = "",
        timeout_seconds: float | None = None,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of register()."""

        def decorator(handler: ToolHandler) -> ToolHandler:
            self.register(ToolSpec(
                name=name,
                description=description or (handler.__doc__ or "").strip(),
                args_model=args_model,
                handler=handler,
                timeout_seconds=timeout_seconds or self._default_timeout,
            ))
            return handler

        return decorator

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def names(self) -> list[str]:
        return list(self._tools.keys())

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def schemas(self) -> list[dict[str, Any]] | None:
        """Tool definitions for the model, or None if no tools are registered."""
        if not self._tools:
            return None
        return [spec.definition() for spec in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    # ------------------------------------------------------------------
    # Validation and execution
    # ------------------------------------------------------------------

    def validate(self, name: str, raw_arguments: Any) -> BaseModel:
        """Parse and validate raw model arguments into the tool's args model.

        Raises:
            UnknownToolError: If no tool has this name.
            ToolArgumentError: On malformed JSON, a non-object payload, or
                missing/invalid fields.
        """
        spec = self._tools.get(name)
        if spec is None:
            raise UnknownToolError(name)

        if raw_arguments is None or (isinstance(raw_arguments, str) and not raw_arguments.strip()):
            payload: Any = {}
        elif isinstance(raw_arguments, str):
            try:
                payload = json.loads(raw_arguments)
            except json.JSONDecodeError as e:
                raise ToolArgumentError(name, f"malformed JSON arguments: {e}") from e
        else:
            payload = raw_arguments

        if not isinstance(payload, dict):
            raise ToolArgumentError(name, f"arguments must be an object, got {type(payload).__name__}")

        try:
            return spec.args_model.model_validate(payload)
        except ValidationError as e:
            raise ToolArgumentError(name, f"invalid arguments: {e.error_count()} error(s)") from e

    async def execute(self, name: str, args: BaseModel, context: ToolContext) -> str:
        """Run a tool's handler with a timeout.

        Raises:
            UnknownToolError: If no tool has this name.
            ToolExecutionError: If the handler fails or times out.
        """
        spec = self._tools.get(name)
        if spec is None:
            raise UnknownToolError(name)

        start = time.time()
        try:
            output = await asyncio.wait_for(
                spec.handler(args, context), timeout=spec.timeout_seconds
            )
        except ToolExecutionError:
            raise
        except asyncio.TimeoutError as e:
            raise ToolExecutionError(name, f"timed out after {spec.timeout_seconds}s") from e
        except Exception as e:
            raise ToolExecutionError(name, str(e) or type(e).__name__) from e

        duration_ms = int((time.time() - start) * 1000)
        logger.info(f"Tool {name} succeeded in {duration_ms}ms")
        return output or "Done."

    async def run(self, request: ToolInvocationRequest, context: ToolContext) -> ToolResult:
        """Validate and execute one model request, never raising for tool errors.

        Bad arguments fall back to the empty argument set; if the tool
        cannot run without arguments it is skipped. Execution failures turn
        into the degraded acknowledgment.
        """
        name = request.tool_name
        try:
            args = self.validate(name, request.raw_arguments)
        except UnknownToolError:
            logger.warning(f"Model requested unknown tool: {name}")
            return self._degraded(request)
        except ToolArgumentError as e:
            logger.warning(f"Tool argument error, retrying with empty arguments: {e}")
            try:
                args = self.validate(name, {})
            except ToolArgumentError:
                logger.warning(f"Skipping tool {name}: required arguments missing")
                return self._degraded(request)

        logger.info(f"Executing tool: {name}({args.model_dump()})")
        try:
            output = await self.execute(name, args, context)
        except ToolExecutionError as e:
            logger.error(f"Tool execution error: {e}")
            return self._degraded(request)

        return ToolResult(
            invocation_id=request.invocation_id,
            tool_name=name,
            output_text=output,
        )

    def _degraded(self, request: ToolInvocationRequest) -> ToolResult:
        return ToolResult(
            invocation_id=request.invocation_id,
            tool_name=request.tool_name,
            output_text=self._degraded_text,
        )
