"""OpenAI Chat node - one chat completion per input item."""

from __future__ import annotations

from typing import Any, TYPE_CHECKING

import httpx

from ...core.config import RateLimitSettings, settings
from ...core.exceptions import NodeExecutionFailedError, ParameterValidationError
from ..base import BaseNode, NodeTypeDescription, NodeOutputDefinition, NodeProperty

if TYPE_CHECKING:
    from ...engine.types import ExecutionContext, NodeData, NodeDefinition, NodeExecutionResult

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_TOKENS = 100
DEFAULT_TEMPERATURE = 0.7


class OpenAIChatNode(BaseNode):
    """
    Calls an OpenAI compatible /chat/completions endpoint.

    The prompt is resolved per item, so "{{ $json.question }}" asks one
    question per incoming item. Each request takes its own rate limit slot.
    Transport errors, non-2xx responses and unparsable bodies fail the node
    with a retryable error.
    """

    rate_limit = RateLimitSettings(max_calls=5, period=1.0)
    limits_own_calls = True

    node_description = NodeTypeDescription(
        name="OpenAIChat",
        display_name="OpenAI Chat",
        description="Send a prompt to an OpenAI chat model",
        icon="fa:robot",
        group=["ai", "integration"],
        outputs=[
            NodeOutputDefinition(
                name="main",
                display_name="Response",
                schema={
                    "type": "object",
                    "properties": {
                        "model": {"type": "string", "description": "Model used"},
                        "response": {"type": "string", "description": "Assistant message"},
                        "usage": {"type": "object", "description": "Token usage stats"},
                    },
                },
            )
        ],
        properties=[
            NodeProperty(
                display_name="Base URL",
                name="baseUrl",
                type="string",
                default="",
                placeholder="https://api.openai.com/v1",
                description="API root, defaults to NODEFLOW_OPENAI_BASE_URL",
            ),
            NodeProperty(
                display_name="API Key",
                name="apiKey",
                type="string",
                default="",
                description="Bearer token, defaults to NODEFLOW_OPENAI_API_KEY",
            ),
            NodeProperty(display_name="Model", name="model", type="string", default=DEFAULT_MODEL),
            NodeProperty(
                display_name="Prompt",
                name="prompt",
                type="string",
                required=True,
                description="User message. Supports expressions: {{ $json.question }}",
                type_options={"rows": 5},
            ),
            NodeProperty(
                display_name="System Content",
                name="systemContent",
                type="string",
                default="",
                description="Optional system message sent before the prompt",
                type_options={"rows": 3},
            ),
            NodeProperty(display_name="Max Tokens", name="maxTokens", type="number", default=DEFAULT_MAX_TOKENS),
            NodeProperty(display_name="Temperature", name="temperature", type="number", default=DEFAULT_TEMPERATURE),
        ],
    )

    @property
    def type(self) -> str:
        return "OpenAIChat"

    @property
    def description(self) -> str:
        return "Send a prompt to an OpenAI chat model"

    def validate(self, parameters: dict[str, Any]) -> list[str]:
        problems = super().validate(parameters)
        if not _text(parameters.get("apiKey")) and not settings.openai_api_key:
            problems.append("OpenAI api key cannot be empty")
        prompt = parameters.get("prompt")
        if isinstance(prompt, str) and prompt and not prompt.strip():
            problems.append("Prompt cannot be empty")
        if not _text(parameters.get("baseUrl")) and not settings.openai_base_url:
            problems.append("Base URL cannot be empty")
        return problems

    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        from ...engine.types import NodeData

        name = node_definition.name
        params = node_definition.parameters
        base_url = (_text(params.get("baseUrl")) or settings.openai_base_url).rstrip("/")
        api_key = _text(params.get("apiKey")) or settings.openai_api_key or ""
        model = _text(params.get("model")) or DEFAULT_MODEL
        max_tokens = self.get_parameter(node_definition, "maxTokens", DEFAULT_MAX_TOKENS)
        temperature = self.get_parameter(node_definition, "temperature", DEFAULT_TEMPERATURE)

        items = input_data or [NodeData(json={})]
        results: list[NodeData] = []

        async def complete_all(client: httpx.AsyncClient) -> None:
            for idx in range(len(items)):
                prompt = context.resolve(params.get("prompt"), name, items, idx)
                if _is_blank(prompt):
                    raise ParameterValidationError(name, ["Prompt cannot be empty"])
                system = context.resolve(params.get("systemContent", ""), name, items, idx)

                body = {
                    "model": model,
                    "messages": _messages(str(prompt), _text(system)),
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                }

                await context.acquire_rate_limit(self)
                try:
                    response = await client.post(
                        f"{base_url}/chat/completions",
                        headers={"Authorization": f"Bearer {api_key}"},
                        json=body,
                        timeout=settings.openai_timeout,
                    )
                except httpx.HTTPError as e:
                    raise NodeExecutionFailedError(name, f"OpenAI request error: {e}") from e

                if not response.is_success:
                    raise NodeExecutionFailedError(
                        name,
                        f"OpenAI responded with status={response.status_code} body={response.text}",
                    )
                try:
                    data = response.json()
                except ValueError as e:
                    raise NodeExecutionFailedError(name, f"JSON parse error: {e}") from e

                results.append(NodeData(json=self._result(model, data)))

        if context.http_client is not None:
            await complete_all(context.http_client)
        else:
            async with httpx.AsyncClient(timeout=settings.http_timeout) as client:
                await complete_all(client)

        return self.output(results)

    def _result(self, model: str, data: Any) -> dict[str, Any]:
        """Pull the assistant message and token usage out of a completion."""
        choices = data.get("choices") if isinstance(data, dict) else None
        message = choices[0].get("message", {}) if choices else {}
        usage = (data.get("usage") or {}) if isinstance(data, dict) else {}
        return {
            "model": model,
            "response": message.get("content") or "",
            "usage": {
                "input_tokens": usage.get("prompt_tokens", 0),
                "output_tokens": usage.get("completion_tokens", 0),
            },
        }


def _messages(prompt: str, system: str) -> list[dict[str, str]]:
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})
    return messages


def _text(value: Any) -> str:
    """Stripped string value, empty for None and non-strings."""
    return value.strip() if isinstance(value, str) else ""


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
