"""
Route Dispatcher

Maps an inbound method + path to exactly one handler. Routes are kept in
declaration order and the first match wins. Admin routes are guarded
before the handler is entered.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar, Union
from urllib.parse import unquote

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from portal.errors import NotFoundError, PortalError, ValidationError

logger = logging.getLogger(__name__)

PathMatcher = Union[str, re.Pattern]
Handler = Callable[..., None]
ModelT = TypeVar("ModelT", bound=BaseModel)

PREFLIGHT_METHOD = "OPTIONS"


def normalize_path(pathname: str = "") -> str:
    """Decode percent-escapes, strip trailing slashes and ensure a leading slash."""
    safe_path = unquote(pathname) if pathname else ""
    trimmed = safe_path.rstrip("/")
    if not trimmed:
        return "/"
    return trimmed if trimmed.startswith("/") else f"/{trimmed}"


@dataclass
class ApiRequest:
    """An inbound request as the handlers see it."""
    method: str
    path: str
    headers: dict = field(default_factory=dict)
    body: bytes = b""
    services: Any = None

    def __post_init__(self):
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def json(self) -> dict:
        """
        Parse the body as a JSON object.

        Raises:
            ValidationError: Malformed JSON, or a JSON value that is not an object
        """
        if not self.body:
            return {}
        try:
            parsed = json.loads(self.body)
        except (UnicodeDecodeError, ValueError) as e:
            raise ValidationError() from e
        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ValidationError()
        return parsed

    def parse(self, model: type[ModelT], message: str = None) -> ModelT:
        """
        Validate the JSON body against a pydantic model.

        Raises:
            ValidationError: The body is malformed or fails validation
        """
        try:
            return model.model_validate(self.json())
        except PydanticValidationError as e:
            raise ValidationError(message) from e


@dataclass
class ApiResponse:
    """A JSON response being written by a guard or a handler."""
    status: int = 200
    payload: Any = None
    sent: bool = False

    def send(self, payload: Any, status: int = 200) -> "ApiResponse":
        self.payload = payload
        self.status = status
        self.sent = True
        return self


@dataclass(frozen=True)
class Route:
    """
    A route descriptor.

    path is either an exact string or a compiled pattern whose capture groups
    become positional string arguments of the handler.
    """
    method: str
    path: PathMatcher
    handler: Handler
    require_admin: bool = False

    @property
    def arity(self) -> int:
        if isinstance(self.path, re.Pattern):
            return self.path.groups
        return 0

    def match(self, method: str, pathname: str) -> Optional[tuple[str, ...]]:
        """Return the captured params when the route matches, else None."""
        if self.method != method:
            return None
        if isinstance(self.path, re.Pattern):
            found = self.path.fullmatch(pathname)
            return found.groups() if found else None
        return () if self.path == pathname else None


class RouteGroup:
    """Collects routes under a common prefix, in declaration order."""

    def __init__(self, prefix: str = ""):
        self.prefix = prefix.rstrip("/")
        self.routes: list[Route] = []

    def _full_path(self, path: PathMatcher) -> PathMatcher:
        if isinstance(path, re.Pattern):
            return re.compile(re.escape(self.prefix) + path.pattern, path.flags)
        return normalize_path(self.prefix + path)

    def add(self, method: str, path: PathMatcher, handler: Handler,
            require_admin: bool = False) -> Route:
        route = Route(
            method=method.upper(),
            path=self._full_path(path),
            handler=handler,
            require_admin=require_admin,
        )
        self.routes.append(route)
        return route

    def route(self, method: str, path: PathMatcher, require_admin: bool = False):
        def decorator(handler: Handler) -> Handler:
            self.add(method, path, handler, require_admin=require_admin)
            return handler
        return decorator

    def get(self, path: PathMatcher, require_admin: bool = False):
        return self.route("GET", path, require_admin)

    def post(self, path: PathMatcher, require_admin: bool = False):
        return self.route("POST", path, require_admin)

    def put(self, path: PathMatcher, require_admin: bool = False):
        return self.route("PUT", path, require_admin)

    def delete(self, path: PathMatcher, require_admin: bool = False):
        return self.route("DELETE", path, require_admin)


class Dispatcher:
    """The ordered route table and the request loop around it."""

    def __init__(self, sessions, expose_errors: bool = False):
        self.sessions = sessions
        self.expose_errors = expose_errors
        self.routes: list[Route] = []

    def include(self, group: RouteGroup):
        """Append a group's routes after the ones already registered."""
        self.routes.extend(group.routes)

    def find_route(self, method: str, pathname: str) -> Optional[tuple[Route, tuple[str, ...]]]:
        """Find the first route matching the method and the normalized path."""
        for route in self.routes:
            params = route.match(method, pathname)
            if params is not None:
                return route, params
        return None

    def dispatch(self, request: ApiRequest) -> ApiResponse:
        """Run a request through guard and handler, always producing a response."""
        response = ApiResponse()

        if request.method == PREFLIGHT_METHOD:
            return response.send({"status": "ok"})

        pathname = normalize_path(request.path)
        match = self.find_route(request.method, pathname)
        if match is None:
            error = NotFoundError("Not found")
            return response.send({"message": error.message}, error.status_code)

        route, params = match

        if route.require_admin:
            admin_user = self.sessions.require_admin(request, response)
            if admin_user is None:
                return response

        try:
            route.handler(request, response, *params)
        except PortalError as e:
            response.send({"message": e.message}, e.status_code)
        except Exception as e:
            logger.exception("Unhandled error in %s %s", request.method, pathname)
            payload = {"message": PortalError.default_message}
            if self.expose_errors:
                payload["error"] = str(e)
            response.send(payload, 500)

        if not response.sent:
            response.send({})
        return response
