"""
Web fetch tool - HTTP GET via httpx
"""
import httpx

from taskgraph.agent.tool_registry import Tool, ToolResult, ToolParameter, ToolCategory

MAX_BODY_CHARS = 100_000


class WebFetchTool(Tool):
    """Fetch a URL and return status, headers and body"""

    def __init__(self, timeout: float = 20.0):
        super().__init__(
            name="web_fetch",
            description="Fetch the content of a web page or HTTP API endpoint",
            category=ToolCategory.WEB,
            parameters=[
                ToolParameter(name="url", type="string", description="Absolute http(s) URL"),
                ToolParameter(
                    name="as_json", type="boolean", description="Parse the body as JSON",
                    required=False, default=False,
                ),
            ],
        )
        self.timeout = timeout

    async def execute(self, **kwargs) -> ToolResult:
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            response = await client.get(kwargs["url"])

        if response.is_error:
            return ToolResult(
                success=False,
                error=f"HTTP {response.status_code} from {kwargs['url']}",
                metadata={"retryable": response.status_code >= 500 or response.status_code == 429},
            )

        body = response.json() if kwargs.get("as_json") else response.text[:MAX_BODY_CHARS]
        return ToolResult(
            success=True,
            output={
                "url": str(response.url),
                "status": response.status_code,
                "content_type": response.headers.get("content-type", ""),
                "body": body,
            },
        )
