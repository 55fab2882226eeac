"""HTTP Request node - makes HTTP requests to external APIs."""

from __future__ import annotations

import json
from typing import Any, TYPE_CHECKING

import httpx

from ...core.config import RateLimitSettings, settings
from ..base import (
    BaseNode,
    NodeTypeDescription,
    NodeOutputDefinition,
    NodeProperty,
    NodePropertyOption,
)

if TYPE_CHECKING:
    from ...engine.types import ExecutionContext, NodeData, NodeDefinition, NodeExecutionResult

BODY_METHODS = ("POST", "PUT", "PATCH")


class HttpRequestNode(BaseNode):
    """HTTP Request node - makes one request per input item."""

    rate_limit = RateLimitSettings(max_calls=20, period=1.0)
    limits_own_calls = True

    node_description = NodeTypeDescription(
        name="HttpRequest",
        display_name="HTTP Request",
        description="Makes HTTP requests to external APIs",
        icon="fa:globe",
        group=["integration"],
        outputs=[
            NodeOutputDefinition(
                name="main",
                display_name="Response",
                schema={
                    "type": "object",
                    "properties": {
                        "statusCode": {"type": "number", "description": "HTTP status code"},
                        "headers": {"type": "object", "description": "Response headers"},
                        "body": {"type": "unknown", "description": "Response body"},
                    },
                },
            )
        ],
        properties=[
            NodeProperty(
                display_name="Method",
                name="method",
                type="options",
                default="GET",
                required=True,
                options=[
                    NodePropertyOption(name=m, value=m)
                    for m in ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD")
                ],
            ),
            NodeProperty(
                display_name="URL",
                name="url",
                type="string",
                default="",
                required=True,
                placeholder="https://api.example.com/endpoint",
                description="The URL to make the request to. Supports expressions.",
            ),
            NodeProperty(
                display_name="Headers",
                name="headers",
                type="collection",
                default=[],
                description="HTTP headers to send with the request",
                type_options={"multipleValues": True},
                properties=[
                    NodeProperty(display_name="Header Name", name="name", type="string", default=""),
                    NodeProperty(display_name="Header Value", name="value", type="string", default=""),
                ],
            ),
            NodeProperty(
                display_name="Query Parameters",
                name="query",
                type="json",
                default=None,
                description="Query string parameters as an object",
            ),
            NodeProperty(
                display_name="Body",
                name="body",
                type="json",
                default="",
                description="Request body (for POST, PUT, PATCH)",
                display_options={"show": {"method": list(BODY_METHODS)}},
            ),
            NodeProperty(
                display_name="Response Type",
                name="responseType",
                type="options",
                default="json",
                options=[
                    NodePropertyOption(name="JSON", value="json", description="Parse response as JSON"),
                    NodePropertyOption(name="Text", value="text", description="Return raw text"),
                    NodePropertyOption(name="Binary", value="binary", description="Return binary data"),
                ],
            ),
            NodeProperty(
                display_name="Fail On Error Status",
                name="failOnStatus",
                type="boolean",
                default=True,
                description="Fail the node when the response status is 4xx or 5xx",
            ),
        ],
    )

    @property
    def type(self) -> str:
        return "HttpRequest"

    @property
    def description(self) -> str:
        return "Makes HTTP requests to external APIs"

    def validate(self, parameters: dict[str, Any]) -> list[str]:
        problems = super().validate(parameters)
        url = parameters.get("url")
        if isinstance(url, str) and url and "{{" not in url and not url.startswith(("http://", "https://")):
            problems.append(f'URL must start with http:// or https://, got "{url}"')
        return problems

    async def execute(
        self,
        context: ExecutionContext,
        node_definition: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        from ...engine.types import NodeData

        name = node_definition.name
        method = str(self.get_parameter(node_definition, "method", "GET")).upper()
        response_type = self.get_parameter(node_definition, "responseType", "json")
        fail_on_status = self.get_parameter(node_definition, "failOnStatus", True)
        params = node_definition.parameters

        items = input_data or [NodeData(json={})]
        results: list[NodeData] = []

        async def make_requests(client: httpx.AsyncClient) -> None:
            for idx in range(len(items)):
                url = context.resolve(self.get_parameter(node_definition, "url"), name, items, idx)
                if not url:
                    raise ValueError("URL must not be empty")

                headers = self._headers(context.resolve(params.get("headers", []), name, items, idx))
                query = context.resolve(params.get("query"), name, items, idx) or None
                body = None
                if method in BODY_METHODS:
                    body = self._body(context.resolve(params.get("body", ""), name, items, idx))

                await context.acquire_rate_limit(self)
                response = await client.request(
                    method=method,
                    url=str(url),
                    headers=headers,
                    params=query,
                    json=body if body is not None and not isinstance(body, str) else None,
                    content=body if isinstance(body, str) else None,
                )
                if fail_on_status:
                    response.raise_for_status()

                results.append(
                    NodeData(
                        json={
                            "statusCode": response.status_code,
                            "headers": dict(response.headers),
                            "body": self._response_body(response, response_type),
                        },
                        binary={"data": response.content} if response_type == "binary" else None,
                    )
                )

        if context.http_client is not None:
            await make_requests(context.http_client)
        else:
            async with httpx.AsyncClient(timeout=settings.http_timeout, follow_redirects=True) as client:
                await make_requests(client)

        return self.output(results)

    def _headers(self, headers_param: Any) -> dict[str, str]:
        headers: dict[str, str] = {}
        if isinstance(headers_param, list):
            for h in headers_param:
                if isinstance(h, dict) and h.get("name"):
                    value = h.get("value")
                    headers[h["name"]] = "" if value is None else str(value)
        elif isinstance(headers_param, dict):
            headers = {k: "" if v is None else str(v) for k, v in headers_param.items()}
        return headers

    def _body(self, body: Any) -> Any:
        if isinstance(body, str):
            if not body:
                return None
            try:
                return json.loads(body)
            except json.JSONDecodeError:
                return body
        return body

    def _response_body(self, response: httpx.Response, response_type: str) -> Any:
        if response_type == "text":
            return response.text
        if response_type == "binary":
            return {"_binary": True, "size": len(response.content)}
        try:
            return response.json()
        except ValueError:
            return response.text
