"""
Preflight handling for requests reached without an Origin header.

Browser preflights (``Origin`` plus ``Access-Control-Request-Method``) are
answered by Starlette's ``CORSMiddleware`` before routing. A bare
``OPTIONS`` request falls through to the router, where ``preflight_router``
answers it with 200 on any path, known or not.
"""

from typing import Any

from fastapi import APIRouter
from fastapi.responses import Response
from fastapi.routing import APIRoute
from starlette.routing import Match
from starlette.types import Scope

ALLOWED_METHODS = "GET, POST, OPTIONS"
ALLOWED_HEADERS = "Content-Type, Authorization, X-User-ID, X-Request-ID"


class PreflightRoute(APIRoute):
    """
    A catch-all route that only ever matches ``OPTIONS``.

    A plain catch-all would report a partial match for every other method
    and turn unknown paths into 405 instead of 404.
    """

    def matches(self, scope: Scope) -> tuple[Match, dict[str, Any]]:
        if scope["type"] == "http" and scope["method"] != "OPTIONS":
            return Match.NONE, {}
        return super().matches(scope)


async def preflight() -> Response:
    return Response(
        status_code=200,
        headers={
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": ALLOWED_METHODS,
            "Access-Control-Allow-Headers": ALLOWED_HEADERS,
        },
    )


# Included after every other router
preflight_router = APIRouter(route_class=PreflightRoute)
preflight_router.add_api_route("/{path:path}", preflight, methods=["OPTIONS"], include_in_schema=False)
