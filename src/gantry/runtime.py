"""Framework interface used by generated gantry applications.

The generated bootstrap registers controllers and their actions here and then
calls ``run``; the generated route helper calls ``unbind`` and
``main_router.reverse``. Requests are dispatched to ``/<Controller>/<action>``
by a small FastAPI application.
"""

from __future__ import annotations

import importlib
import inspect
import re
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlencode

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from pydantic import BaseModel, TypeAdapter, ValidationError as PydanticValidationError

from gantry.config import AppConfig
from gantry.logging import configure_logging, get_logger

logger = get_logger("runtime")

run_mode = ""
import_path = ""
src_path = ""
app_version = ""
build_tags: tuple[str, ...] = ()
config = AppConfig.default()

default_validation_keys: dict[str, dict[int, str]] = {}
test_suites: list[type] = []
_start_hooks: list[Callable[[], None]] = []


@dataclass(slots=True)
class MethodArg:
    name: str
    type: Any


@dataclass(slots=True)
class MethodType:
    name: str
    args: list[MethodArg] = field(default_factory=list)
    render_arg_names: dict[int, list[str]] = field(default_factory=dict)


@dataclass(slots=True)
class ControllerType:
    cls: type
    name: str
    methods: dict[str, MethodType]


@dataclass(slots=True)
class ActionDefinition:
    url: str
    action: str
    args: dict[str, str]


@dataclass(slots=True)
class ValidationError:
    key: str
    message: str


class Validation:
    """Collects validation failures, named by the keys found at build time."""

    def __init__(self) -> None:
        self.errors: list[ValidationError] = []

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def _key(self) -> str:
        # caller -> rule method -> _apply -> _key
        frame = sys._getframe(3)
        filename = Path(frame.f_code.co_filename).as_posix()
        for path, lines in default_validation_keys.items():
            if filename.endswith(path):
                return lines.get(frame.f_lineno, "")
        return ""

    def _apply(self, ok: bool, message: str) -> bool:
        if not ok:
            self.errors.append(ValidationError(key=self._key(), message=message))
        return ok

    def check(self, value: Any, ok: bool, message: str = "Invalid") -> bool:
        return self._apply(ok, message)

    def required(self, value: Any) -> bool:
        return self._apply(value not in (None, "", [], {}), "Required")

    def min(self, value: Any, minimum: Any) -> bool:
        return self._apply(value is not None and value >= minimum, f"Minimum is {minimum}")

    def max(self, value: Any, maximum: Any) -> bool:
        return self._apply(value is not None and value <= maximum, f"Maximum is {maximum}")

    def range(self, value: Any, minimum: Any, maximum: Any) -> bool:
        return self._apply(value is not None and minimum <= value <= maximum, f"Range is {minimum} to {maximum}")

    def min_size(self, value: Any, size: int) -> bool:
        return self._apply(value is not None and len(value) >= size, f"Minimum size is {size}")

    def max_size(self, value: Any, size: int) -> bool:
        return self._apply(value is not None and len(value) <= size, f"Maximum size is {size}")

    def length(self, value: Any, size: int) -> bool:
        return self._apply(value is not None and len(value) == size, f"Required length is {size}")

    def match(self, value: Any, pattern: str) -> bool:
        return self._apply(value is not None and re.search(pattern, str(value)) is not None, f"Must match {pattern}")

    def email(self, value: Any) -> bool:
        ok = value is not None and re.fullmatch(r"[^@\s]+@[^@\s]+\.[^@\s]+", str(value)) is not None
        return self._apply(ok, "Must be a valid email address")


class Controller:
    def __init__(self, request: Request | None = None, params: dict[str, str] | None = None) -> None:
        self.request = request
        self.params = params or {}
        self.validation = Validation()

    def render(self, *args: Any, **kwargs: Any) -> Response:
        frame = sys._getframe(1)
        render_args: dict[str, Any] = {}
        method = _method_type(type(self), frame.f_code.co_name)
        if method is not None and args:
            lines = [line for line in method.render_arg_names if line <= frame.f_lineno]
            names = method.render_arg_names[max(lines)] if lines else []
            render_args.update(zip(names, args))
        render_args.update(kwargs)
        return JSONResponse(jsonable_encoder(render_args))

    def render_text(self, text: str, status_code: int = 200) -> Response:
        return PlainTextResponse(text, status_code=status_code)

    def render_json(self, payload: Any, status_code: int = 200) -> Response:
        return JSONResponse(jsonable_encoder(payload), status_code=status_code)

    def redirect(self, url: str) -> Response:
        return RedirectResponse(url, status_code=302)


class TestSuite:
    __test__ = False

    def before(self) -> None:
        pass

    def after(self) -> None:
        pass


class Router:
    def __init__(self) -> None:
        self.controllers: dict[tuple[str, str], ControllerType] = {}
        self.by_name: dict[str, ControllerType] = {}

    def register(self, controller: ControllerType) -> None:
        key = (controller.cls.__module__, controller.cls.__qualname__)
        self.controllers[key] = controller
        self.by_name[controller.name] = controller

    def route(self, action: str) -> tuple[ControllerType, MethodType] | None:
        name, _, method_name = action.rpartition(".")
        controller = self.by_name.get(name)
        if controller is None or method_name not in controller.methods:
            return None
        return controller, controller.methods[method_name]

    def reverse(self, action: str, args: dict[str, str]) -> ActionDefinition:
        if self.route(action) is None:
            raise KeyError(f"unknown action {action!r}")
        name, _, method_name = action.rpartition(".")
        url = f"/{name.replace('.', '/')}/{method_name}"
        if args:
            url = f"{url}?{urlencode(sorted(args.items()))}"
        return ActionDefinition(url=url, action=action, args=dict(args))


main_router = Router()


def _method_type(cls: type, method_name: str) -> MethodType | None:
    controller = main_router.controllers.get((cls.__module__, cls.__qualname__))
    if controller is None:
        return None
    return controller.methods.get(method_name)


def register_controller(cls: type, methods: list[MethodType], name: str | None = None) -> None:
    controller = ControllerType(cls=cls, name=name or cls.__name__, methods={item.name: item for item in methods})
    main_router.register(controller)
    logger.debug("Registered controller %s with %d actions", controller.name, len(methods))


def on_app_start(func: Callable[[], None]) -> Callable[[], None]:
    _start_hooks.append(func)
    return func


def unbind(output: dict[str, str], name: str, value: Any) -> None:
    """Flatten ``value`` into string parameters under ``name``."""
    if value is None:
        return
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, dict):
        for key, item in value.items():
            unbind(output, f"{name}.{key}", item)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for index, item in enumerate(value):
            unbind(output, f"{name}[{index}]", item)
    elif isinstance(value, bool):
        output[name] = "true" if value else "false"
    else:
        output[name] = str(value)


_SEGMENT_RE = re.compile(r"\.([^.\[\]]+)|\[(\d+)\]")


def _segments(rest: str) -> list[str | int] | None:
    segments: list[str | int] = []
    pos = 0
    while pos < len(rest):
        match = _SEGMENT_RE.match(rest, pos)
        if match is None:
            return None
        segments.append(match.group(1) if match.group(1) is not None else int(match.group(2)))
        pos = match.end()
    return segments


def _insert(root: dict[Any, Any], segments: list[str | int], value: str) -> None:
    node = root
    for segment in segments[:-1]:
        child = node.setdefault(segment, {})
        if not isinstance(child, dict):
            return
        node = child
    node.setdefault(segments[-1], value)


def _listify(node: Any) -> Any:
    if not isinstance(node, dict):
        return node
    items = {key: _listify(value) for key, value in node.items()}
    if items and all(isinstance(key, int) for key in items):
        return [items[key] for key in sorted(items)]
    return items


def _collect(params: dict[str, str], name: str) -> Any:
    """Rebuild the value ``unbind`` flattened under ``name``."""
    if name in params:
        return params[name]
    root: dict[Any, Any] = {}
    for key, value in params.items():
        if not key.startswith(name) or key[len(name) : len(name) + 1] not in (".", "["):
            continue
        segments = _segments(key[len(name) :])
        if segments:
            _insert(root, segments, value)
    if not root:
        return None
    return _listify(root)


def bind_args(method: MethodType, params: dict[str, str]) -> dict[str, Any]:
    bound: dict[str, Any] = {}
    for arg in method.args:
        raw = _collect(params, arg.name)
        if raw is None:
            continue
        bound[arg.name] = TypeAdapter(arg.type).validate_python(raw)
    return bound


def _load_build_info() -> None:
    global app_version, build_tags
    try:
        info = importlib.import_module("_build_info")
    except ImportError:
        return
    app_version = getattr(info, "APP_VERSION", "")
    build_tags = tuple(getattr(info, "BUILD_TAGS", ()))


def init(mode: str, path: str, source: str) -> None:
    global run_mode, import_path, src_path, config
    configure_logging()
    run_mode = mode
    import_path = path
    src_path = source
    if source and source not in sys.path:
        sys.path.insert(0, source)
    if source and path:
        config_path = Path(source).joinpath(*path.split(".")) / "conf" / "app.yaml"
        config = AppConfig.from_path(config_path, run_mode=mode)
    _load_build_info()
    for hook in _start_hooks:
        hook()


async def _dispatch(request: Request, controller_name: str, action: str) -> Response:
    resolved = main_router.route(f"{controller_name.replace('/', '.')}.{action}")
    if resolved is None:
        return PlainTextResponse("Not Found", status_code=404)
    controller_type, method = resolved

    params = dict(request.query_params)
    if request.headers.get("content-type", "").startswith("application/x-www-form-urlencoded"):
        params.update(parse_qsl((await request.body()).decode("utf-8")))
    try:
        kwargs = bind_args(method, params)
    except PydanticValidationError as exc:
        return PlainTextResponse(str(exc), status_code=400)

    controller = controller_type.cls(request=request, params=params)
    result = getattr(controller, method.name)(**kwargs)
    if inspect.isawaitable(result):
        result = await result
    if isinstance(result, Response):
        return result
    if isinstance(result, str):
        return PlainTextResponse(result)
    return JSONResponse(jsonable_encoder(result))


def build_app() -> FastAPI:
    application = FastAPI(title=config.app_name or import_path or "gantry app", version=app_version or "0.0.0")
    methods = ["GET", "POST", "PUT", "PATCH", "DELETE"]

    @application.api_route("/", methods=methods)
    async def index(request: Request) -> Response:
        return await _dispatch(request, "Application", "index")

    @application.api_route("/{controller:path}/{action}", methods=methods)
    async def action_route(request: Request, controller: str, action: str) -> Response:
        return await _dispatch(request, controller, action)

    return application


def run(port: int = 0) -> None:
    host = config.http.addr or "127.0.0.1"
    port = port or config.http.port
    logger.info("Listening on %s:%d", host, port)
    options: dict[str, Any] = {}
    if config.http.ssl:
        options = {"ssl_certfile": config.http.ssl_cert, "ssl_keyfile": config.http.ssl_key}
    uvicorn.run(build_app(), host=host, port=port, log_level="info", **options)
