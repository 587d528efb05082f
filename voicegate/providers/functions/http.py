"""HTTP executor for agent ``custom`` functions.

When the model calls a function mid-call, this executor:
1. Checks the required parameters are present
2. Substitutes ``{param}`` / ``${param}`` placeholders in the url,
   header values and body template
3. Makes the HTTP request with a timeout
4. Returns ``{success, status, data}`` or ``{success: False, error}``
"""

from __future__ import annotations

import json
import time
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from voicegate.agents import AgentFunction
from voicegate.providers.base import BaseFunctionExecutor

_BODY_METHODS = ("POST", "PUT", "PATCH")


def substitute(template: str, arguments: dict[str, Any], encode=None) -> str:
    """Replace ``{name}`` and ``${name}`` placeholders with argument values."""
    result = template
    for key, value in arguments.items():
        rendered = encode(value) if encode else str(value)
        result = result.replace(f"${{{key}}}", rendered)
        result = result.replace(f"{{{key}}}", rendered)
    return result


class HttpFunctionExecutor(BaseFunctionExecutor):
    """Executes ``custom`` agent functions as HTTP requests.

    Args:
        timeout: HTTP request timeout in seconds (default: 10).
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Create the HTTP client."""
        self._client = httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def execute(
        self, function: AgentFunction, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        """Execute a function call.

        Args:
            function: The agent's function definition.
            arguments: Arguments decoded from the model's tool call.

        Returns:
            A JSON-serializable result dict handed back to the model.
        """
        for param in function.parameters:
            if param.required and arguments.get(param.name) in (None, ""):
                return {"success": False, "error": f"Missing required parameter: {param.name}"}

        if function.type != "custom":
            return {"success": False, "error": f"Unsupported function type: {function.type}"}
        if not function.url:
            return {"success": False, "error": "Function has no url configured"}

        method = function.method.upper()
        url = substitute(function.url, arguments, encode=lambda v: quote(str(v), safe=""))
        headers = {"Content-Type": "application/json"}
        for header in function.headers:
            if header.key and header.value:
                headers[header.key] = substitute(header.value, arguments)

        body = None
        if method in _BODY_METHODS and function.body_template:
            body = self._render_body(function.body_template, arguments)

        if not self._client:
            await self.start()

        start_time = time.time()
        try:
            resp = await self._client.request(
                method,
                url,
                headers=headers,
                **({"json": body} if body is not None else {}),
            )
        except httpx.HTTPError as e:
            logger.error(f"Function {function.name} request failed: {e}")
            return {"success": False, "error": str(e)}

        duration_ms = int((time.time() - start_time) * 1000)
        data = self._parse_response(resp)
        logger.info(
            f"Function {function.name}: {method} {resp.status_code} in {duration_ms}ms"
        )

        if resp.is_success:
            return {"success": True, "status": resp.status_code, "data": data}
        return {
            "success": False,
            "status": resp.status_code,
            "error": f"HTTP {resp.status_code}",
            "data": data,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _render_body(template: str | dict[str, Any], arguments: dict[str, Any]) -> Any:
        raw = template if isinstance(template, str) else json.dumps(template)
        # Quoted placeholders ("{name}") take the JSON value whole.
        rendered = raw
        for key, value in arguments.items():
            encoded = json.dumps(value)
            for placeholder in (f"${{{key}}}", f"{{{key}}}"):
                rendered = rendered.replace(f'"{placeholder}"', encoded)
                rendered = rendered.replace(placeholder, encoded)
        try:
            return json.loads(rendered)
        except json.JSONDecodeError:
            logger.warning("Body template is not valid JSON after substitution; sending as-is")
            return template

    @staticmethod
    def _parse_response(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError:
            return resp.text
