#!/usr/bin/env python3

import os
import json
import logging
import secrets
import time
from typing import Any, Dict, List, Optional
from collections import defaultdict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from mcp.server.fastmcp.exceptions import ToolError

from whoop_mcp import mcp as whoop_mcp

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

VERSION = "2.0.0"
PROTOCOL_VERSION = "2024-11-05"
MAX_MESSAGE_BYTES = 10000

API_SECRET_KEY = os.getenv("API_SECRET_KEY")
if not API_SECRET_KEY:
    API_SECRET_KEY = secrets.token_urlsafe(32)
    logger.warning("API_SECRET_KEY not set, using a temporary key. Set API_SECRET_KEY for production.")
    logger.info(f"Temporary API key: {API_SECRET_KEY}")

# Per-IP request timestamps within the current window
request_counts = defaultdict(list)
RATE_LIMIT_REQUESTS = 60
RATE_LIMIT_WINDOW = 60  # seconds

PROTECTED_ENDPOINTS = {"/mcp", "/tools"}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

app = FastAPI(
    title="WHOOP Insights MCP Server",
    description="WHOOP recovery, sleep and strain insights over MCP",
    version=VERSION,
)


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def is_rate_limited(client_ip: str) -> bool:
    """Record a request for the IP and report whether it is over the limit."""
    now = time.time()
    window_start = now - RATE_LIMIT_WINDOW
    request_counts[client_ip] = [t for t in request_counts[client_ip] if t > window_start]
    if len(request_counts[client_ip]) >= RATE_LIMIT_REQUESTS:
        return True
    request_counts[client_ip].append(now)
    return False


def verify_api_key(api_key: Optional[str]) -> bool:
    return bool(api_key) and secrets.compare_digest(api_key.encode(), API_SECRET_KEY.encode())


def requires_api_key(path: str) -> bool:
    return any(path.startswith(endpoint) for endpoint in PROTECTED_ENDPOINTS)


@app.middleware("http")
async def security_middleware(request: Request, call_next):
    """Rate limit, check the API key, and add security headers."""
    start_time = time.time()
    client_ip = get_client_ip(request)
    logger.info(f"{request.method} {request.url.path} from {client_ip}")

    if is_rate_limited(client_ip):
        logger.warning(f"Rate limit exceeded for {client_ip}")
        return JSONResponse(
            status_code=429,
            content={"error": "Rate limit exceeded. Please try again later."},
            headers=SECURITY_HEADERS,
        )

    if requires_api_key(request.url.path) and not verify_api_key(request.headers.get("X-API-Key")):
        logger.warning(f"Unauthorized access attempt to {request.url.path} from {client_ip}")
        return JSONResponse(
            status_code=401,
            content={"error": "Unauthorized. Valid X-API-Key header required."},
            headers=SECURITY_HEADERS,
        )

    response = await call_next(request)
    for header, value in SECURITY_HEADERS.items():
        response.headers[header] = value

    process_time = time.time() - start_time
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=["https://localhost:*", "https://127.0.0.1:*"] if os.getenv("ENVIRONMENT") == "production" else ["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["X-API-Key", "Content-Type", "Authorization"],
)


async def list_tool_schemas() -> List[Dict[str, Any]]:
    tools = await whoop_mcp.list_tools()
    return [
        {
            "name": tool.name,
            "description": tool.description or "",
            "inputSchema": tool.inputSchema,
        }
        for tool in tools
    ]


def result_text(result: Any) -> str:
    """Pull the text out of whatever FastMCP.call_tool returned.

    Depending on the mcp release this is a list of content blocks, or a
    (content blocks, structured output) tuple.
    """
    content = result
    if isinstance(result, tuple) and result:
        content = result[0]
        if not content and len(result) > 1 and isinstance(result[1], dict) and "result" in result[1]:
            return str(result[1]["result"])
    if isinstance(content, (list, tuple)):
        texts = [item.text for item in content if hasattr(item, "text")]
        if texts:
            return "\n".join(texts)
    if isinstance(content, dict) and "result" in content:
        return str(content["result"])
    return str(content)


def rpc_result(message_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": message_id, "result": result}


def rpc_error(message_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": message_id, "error": {"code": code, "message": message}}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "whoop-mcp"}


@app.get("/")
async def root():
    """API information."""
    return {
        "name": "WHOOP Insights MCP Server",
        "version": VERSION,
        "security": {
            "protected_endpoints": sorted(PROTECTED_ENDPOINTS),
            "authentication": "X-API-Key header required for protected endpoints",
            "rate_limit": f"{RATE_LIMIT_REQUESTS} requests per {RATE_LIMIT_WINDOW} seconds",
        },
        "endpoints": {
            "health": "/health (public)",
            "mcp_http": "/mcp (POST, JSON-RPC, protected)",
            "tools": "/tools (protected)",
        },
    }


@app.get("/tools")
async def get_tools():
    tools = await list_tool_schemas()
    return {"tools": [{"name": t["name"], "description": t["description"]} for t in tools]}


@app.post("/mcp")
async def mcp_http(request: Request):
    """JSON-RPC endpoint for initialize, tools/list and tools/call."""
    client_ip = get_client_ip(request)
    message_id = None

    try:
        body = await request.body()
        if len(body) > MAX_MESSAGE_BYTES:
            raise ValueError("Message too large")

        message = json.loads(body.decode("utf-8"))
        if not isinstance(message, dict):
            raise ValueError("Invalid message format")

        method = str(message.get("method", "")).strip()[:100]
        message_id = message.get("id")
        logger.info(f"MCP request {method} from {client_ip}")

        if method == "initialize":
            return JSONResponse(content=rpc_result(message_id, {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "whoop-mcp", "version": VERSION},
            }))

        if method == "tools/list":
            return JSONResponse(content=rpc_result(message_id, {"tools": await list_tool_schemas()}))

        if method == "tools/call":
            params = message.get("params") or {}
            if not isinstance(params, dict):
                raise ValueError("params must be an object")
            tool_name = params.get("name")
            arguments = params.get("arguments") or {}
            if not isinstance(arguments, dict):
                raise ValueError("arguments must be an object")

            known = {t["name"] for t in await list_tool_schemas()}
            if tool_name not in known:
                logger.warning(f"Tool not found: {tool_name}")
                return JSONResponse(content=rpc_error(message_id, -32601, f"Tool not found: {tool_name}"))

            try:
                result = await whoop_mcp.call_tool(tool_name, arguments)
            except ToolError as e:
                logger.error(f"Tool execution error for {tool_name}: {e}")
                return JSONResponse(content=rpc_error(message_id, -32603, "Tool execution failed"))

            return JSONResponse(content=rpc_result(message_id, {
                "content": [{"type": "text", "text": result_text(result)}],
            }))

        return JSONResponse(content=rpc_error(message_id, -32601, f"Method not found: {method}"))

    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error from {client_ip}: {e}")
        return JSONResponse(content=rpc_error(None, -32700, "Invalid JSON format"), status_code=400)
    except (ValueError, UnicodeDecodeError) as e:
        logger.error(f"Validation error from {client_ip}: {e}")
        return JSONResponse(content=rpc_error(message_id, -32602, "Invalid request format"), status_code=400)


def main():
    port = int(os.getenv("PORT", 8080))
    host = os.getenv("HOST", "0.0.0.0")
    logger.info(f"Starting WHOOP MCP web server on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info", access_log=True)


if __name__ == "__main__":
    main()
