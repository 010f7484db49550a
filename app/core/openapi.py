"""OpenAPI customization utilities.

Enriches the generated schema with tag descriptions and documents the
429 response and ``X-RateLimit-*`` headers on every rate limited
operation, keeping documentation concerns out of the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_RATE_LIMIT_HEADERS: Dict[str, Any] = {
    "X-RateLimit-Limit": {
        "description": "Requests allowed per window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Remaining": {
        "description": "Requests left in the current window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Reset": {
        "description": "Seconds until the window resets or the block lifts.",
        "schema": {"type": "integer"},
    },
}

_TOO_MANY_REQUESTS: Dict[str, Any] = {
    "description": "Too many requests",
    "headers": {
        "Retry-After": {
            "description": "Seconds to wait before retrying.",
            "schema": {"type": "integer"},
        },
        **_RATE_LIMIT_HEADERS,
    },
    "content": {
        "application/json": {
            "example": {
                "error": {
                    "code": "RATE_LIMIT_EXCEEDED",
                    "message": "Too many requests",
                    "request_id": "3f1c2b9e-6c1d-4b0e-9a57-2f4d8e1f7a10",
                    "details": {"limit": 60, "remaining": 0, "reset": 60},
                }
            }
        }
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add tags and 429 docs.

    Every operation outside the health check is guarded by a limiter, so
    each gets a documented 429 response and the quota headers on 200.
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Rate Limits",
                "description": "Limiter profiles and per-client quota state.",
            },
            {
                "name": "Health",
                "description": "Liveness checks (never rate limited).",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            if path.endswith("/health"):
                continue
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                responses = method_obj.setdefault("responses", {})
                responses.setdefault("429", _TOO_MANY_REQUESTS)
                ok = responses.get("200")
                if isinstance(ok, dict):
                    ok.setdefault("headers", dict(_RATE_LIMIT_HEADERS))

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
