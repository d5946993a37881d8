"""CORS headers for responses produced outside the CORS middleware.

The catch-all ``Exception`` handler runs in Starlette's outermost error
middleware, so its responses never pass through ``CORSMiddleware``.
"""
from __future__ import annotations

from fastapi import Request
from fastapi.responses import Response

from .config import settings


def add_cors_headers_to_response(response: Response, request: Request) -> Response:
    origin = (request.headers.get("origin") or "").rstrip("/")
    if origin and origin in settings.cors_allowed_origin_list:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        vary = [v.strip() for v in response.headers.get("Vary", "").split(",") if v.strip()]
        if "Origin" not in vary:
            vary.append("Origin")
        response.headers["Vary"] = ", ".join(vary)
    return response
