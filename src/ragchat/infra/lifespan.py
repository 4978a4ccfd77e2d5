"""Dependency-injected application lifespan.

``inject`` turns a lifespan function whose parameters are declared with
``Depends()`` into a FastAPI lifespan.  Each dependency is an async
generator owning its own setup and teardown; FastAPI's dependency solver
orders them, and teardown runs in reverse on shutdown.

``app.dependency_overrides`` applies here as for routes, so tests can
swap any startup component.
"""

from contextlib import AsyncExitStack, asynccontextmanager
from functools import partial
from typing import Any, Callable

from fastapi import FastAPI, Request
from fastapi.dependencies.utils import get_dependant, solve_dependencies

_LIFESPAN_HEADERS = ((b"x-request-scope", b"lifespan"),)


def get_app(request: Request) -> FastAPI:
    """Lifespan dependency: the ``FastAPI`` application itself."""
    return request.app


def _lifespan_request(app: FastAPI) -> Request:
    """A synthetic request that lets the dependency solver run at startup."""
    return Request(
        scope={
            "type": "http",
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": "/",
            "raw_path": b"/",
            "query_string": b"",
            "root_path": "",
            "headers": _LIFESPAN_HEADERS,
            "client": ("localhost", 80),
            "server": ("localhost", 80),
            "state": app.state,
            "app": app,
        }
    )


def inject(lifespan: Callable[..., Any]) -> Callable[[FastAPI], Any]:
    """Resolve ``Depends()`` parameters of *lifespan* at startup."""

    @asynccontextmanager
    async def wrapper(app: FastAPI):  # type: ignore[misc]
        dependant = get_dependant(path="/", call=partial(lifespan, app))
        async with AsyncExitStack() as stack:
            solved = await solve_dependencies(
                request=_lifespan_request(app),
                dependant=dependant,
                async_exit_stack=stack,
                embed_body_fields=False,
                dependency_overrides_provider=app,
            )
            async with asynccontextmanager(lifespan)(app, **solved.values):
                yield

    return wrapper
