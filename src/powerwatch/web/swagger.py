"""
OpenAPI description of the PowerWatch API.
"""

from __future__ import annotations

import copy
from typing import Any

from powerwatch import __version__


def _query(name: str, schema_type: str, description: str, enum: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": schema_type}
    if enum:
        schema["enum"] = enum
    return {
        "name": name,
        "in": "query",
        "required": False,
        "description": description,
        "schema": schema,
    }


_RISK_LEVELS = ["HIGH", "MEDIUM", "LOW"]

_PAGE_PARAMS = [
    _query("page", "integer", "1-based page number (default 1)"),
    _query("pageSize", "integer", "Records per page"),
]

_ERROR_RESPONSES = {
    "401": {"$ref": "#/components/responses/Unauthorized"},
    "429": {"$ref": "#/components/responses/RateLimited"},
    "500": {"$ref": "#/components/responses/Error"},
}


def _list_operation(summary: str, tag: str, params: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "get": {
            "summary": summary,
            "tags": [tag],
            "parameters": params + _PAGE_PARAMS,
            "responses": {
                "200": {
                    "description": "A page of results",
                    "content": {
                        "application/json": {
                            "schema": {"$ref": "#/components/schemas/ListEnvelope"}
                        }
                    },
                },
                "400": {"$ref": "#/components/responses/BadRequest"},
                **_ERROR_RESPONSES,
            },
        }
    }


def _plain_operation(method: str, summary: str, tag: str) -> dict[str, Any]:
    return {
        method: {
            "summary": summary,
            "tags": [tag],
            "responses": {
                "200": {
                    "description": "Success",
                    "content": {"application/json": {"schema": {"type": "object"}}},
                },
                **_ERROR_RESPONSES,
            },
        }
    }


_OPENAPI_DOCUMENT: dict[str, Any] = {
    "openapi": "3.0.3",
    "info": {
        "title": "PowerWatch API",
        "description": "Read-only access to the cached Power Platform security assessment.",
        "version": __version__,
    },
    "security": [{"ApiKeyHeader": []}, {"ApiKeyAuthorization": []}, {"BearerAuth": []}],
    "paths": {
        "/api/summary": _plain_operation(
            "get", "Aggregate counts, risk distribution and recommendations", "Summary"
        ),
        "/api/environments": _list_operation(
            "List environments",
            "Environments",
            [
                _query("riskLevel", "string", "Environment risk level", _RISK_LEVELS),
                _query("environmentType", "string", "Production, Sandbox, Trial, ..."),
            ],
        ),
        "/api/users": _list_operation(
            "List role assignments",
            "Users",
            [
                _query("environmentName", "string", "Environment name"),
                _query("roleType", "string", "Role type"),
                _query("principalType", "string", "Principal type"),
                _query("requiresReview", "boolean", "Only assignments needing review"),
            ],
        ),
        "/api/connections": _list_operation(
            "List connections",
            "Connections",
            [
                _query("environmentName", "string", "Environment name"),
                _query("connectorName", "string", "Connector name"),
                _query("isHighRisk", "boolean", "Only high-risk connectors"),
                _query("requiresAction", "boolean", "Only connections needing action"),
            ],
        ),
        "/api/flows": _list_operation(
            "List flows",
            "Flows",
            [
                _query("environmentName", "string", "Environment name"),
                _query("isEnabled", "boolean", "Flow state"),
                _query("hasHttpTrigger", "boolean", "Triggered by HTTP requests"),
                _query("requiresReview", "boolean", "Only flows needing review"),
            ],
        ),
        "/api/findings": _list_operation(
            "List findings, highest risk first",
            "Findings",
            [
                _query("riskLevel", "string", "Finding risk level", _RISK_LEVELS),
                _query(
                    "category",
                    "string",
                    "Finding category",
                    ["Environment Security", "Access Control", "Connection Security", "Flow Security"],
                ),
                _query("environmentName", "string", "Environment name"),
                _query(
                    "resourceType",
                    "string",
                    "Resource type",
                    ["Environment", "User", "Connection", "Flow"],
                ),
            ],
        ),
        "/api/health": _plain_operation("get", "Gateway and cache health", "Operations"),
        "/api/refresh": _plain_operation("post", "Force a cache refresh", "Operations"),
    },
    "components": {
        "securitySchemes": {
            "ApiKeyHeader": {"type": "apiKey", "in": "header", "name": "X-API-Key"},
            "ApiKeyAuthorization": {
                "type": "apiKey",
                "in": "header",
                "name": "Authorization",
                "description": "ApiKey <key>",
            },
            "BearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"},
        },
        "schemas": {
            "Error": {
                "type": "object",
                "properties": {"error": {"type": "string"}},
                "required": ["error"],
            },
            "Pagination": {
                "type": "object",
                "properties": {
                    "currentPage": {"type": "integer"},
                    "pageSize": {"type": "integer"},
                    "totalCount": {"type": "integer"},
                    "totalPages": {"type": "integer"},
                    "hasNextPage": {"type": "boolean"},
                    "hasPreviousPage": {"type": "boolean"},
                },
            },
            "ListEnvelope": {
                "type": "object",
                "description": "Records under the plural entity name, plus pagination",
                "properties": {
                    "pagination": {"$ref": "#/components/schemas/Pagination"},
                    "lastUpdated": {"type": "string", "format": "date-time"},
                },
                "additionalProperties": {"type": "array", "items": {"type": "object"}},
            },
        },
        "responses": {
            "BadRequest": {
                "description": "Invalid query parameter",
                "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Error"}}},
            },
            "Unauthorized": {
                "description": "Missing or invalid credentials",
                "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Error"}}},
            },
            "RateLimited": {
                "description": "Too many requests from this client",
                "headers": {"Retry-After": {"schema": {"type": "integer"}}},
                "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Error"}}},
            },
            "Error": {
                "description": "Internal error",
                "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Error"}}},
            },
        },
    },
}


def build_openapi_document() -> dict[str, Any]:
    """Get a copy of the OpenAPI 3.0 document."""
    return copy.deepcopy(_OPENAPI_DOCUMENT)
