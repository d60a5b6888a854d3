"""Control Docker Desktop through its GUI and backend HTTP APIs.

There is no documented protocol for this, so the client tries the known
endpoints in turn and makes the best of what answers.
"""

from __future__ import annotations

import http.client
import io
import json
import logging
import os
import socket
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

log = logging.getLogger(__name__)

_WINDOWS_SOCKET_PATHS = (
    r"\\.\pipe\dockerBackendNativeApiServer",
    r"\\.\pipe\dockerWebApiServer",
)
_WINDOWS_BACKEND_PIPE = r"\\.\pipe\dockerBackendApiServer"
_JSON_HEADERS = {"Content-Type": "application/json"}


class DockerDesktopError(Exception):
    """Raised when Docker Desktop cannot be reached or configured."""


class StatusCodeError(DockerDesktopError):
    """An HTTP request answered with a status outside 200-204."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class HTTPResponse:
    """Status code and full body of an HTTP response."""

    status_code: int
    body: bytes = b""


def _goos() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _type_name(value: Any) -> str:
    """Name the type of a decoded JSON value the way the settings API reports it."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "bool"
    if _is_number(value):
        return "float64"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "[]interface {}"
    if isinstance(value, dict):
        return "map[string]interface {}"
    return type(value).__name__


def _json_number(value: float) -> float | int:
    return int(value) if value.is_integer() else value


class _PipeSocket:
    """Socket-like wrapper around a Windows named pipe."""

    def __init__(self, path: str) -> None:
        os.stat(path)
        self._file = open(path, "r+b", buffering=0)

    def sendall(self, data: bytes) -> None:
        self._file.write(data)

    def makefile(self, mode: str = "rb", *args: Any, **kwargs: Any) -> io.BufferedReader:
        return io.BufferedReader(self._file)

    def close(self) -> None:
        self._file.close()


class _DialedHTTPConnection(http.client.HTTPConnection):
    def __init__(self, host: str, dial: Callable[[], Any]) -> None:
        super().__init__(host)
        self._dial = dial

    def connect(self) -> None:
        self.sock = self._dial()


class SocketHTTPClient:
    """HTTP client whose connections are opened by a dial function."""

    def __init__(self, dial: Callable[[], Any]) -> None:
        self._dial = dial

    def do(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> HTTPResponse:
        parts = urlsplit(url)
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"
        conn = _DialedHTTPConnection(parts.hostname or "localhost", self._dial)
        try:
            conn.request(method, path, body=body, headers=dict(headers or {}))
            response = conn.getresponse()
            return HTTPResponse(response.status, response.read())
        finally:
            conn.close()


def docker_desktop_socket_dir() -> Path:
    """Directory holding the Docker Desktop sockets on this platform."""
    home = Path.home()
    goos = _goos()
    if goos == "darwin":
        return home / "Library" / "Containers" / "com.docker.docker" / "Data"
    if goos == "linux":
        return home / ".docker" / "desktop"
    raise DockerDesktopError(f"Cannot find docker desktop directory on {goos}")


def docker_desktop_socket_paths() -> list[str]:
    """Candidate GUI API sockets, newest Docker Desktop first."""
    if _goos() == "windows":
        return list(_WINDOWS_SOCKET_PATHS)
    socket_dir = docker_desktop_socket_dir()
    return [
        str(socket_dir / "backend.native.sock"),
        str(socket_dir / "gui-api.sock"),
    ]


def _dial_docker_desktop(socket_path: str) -> Any:
    if _goos() == "windows":
        return _PipeSocket(socket_path)
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(socket_path)
    except OSError:
        sock.close()
        raise
    return sock


def _dial_docker_backend() -> Any:
    if _goos() == "windows":
        return _dial_docker_desktop(_WINDOWS_BACKEND_PIPE)
    return _dial_docker_desktop(str(docker_desktop_socket_dir() / "backend.sock"))


def _dial_first(socket_paths: list[str]) -> Any:
    # Different Docker versions use different sockets; take the first that answers.
    last_error: Optional[OSError] = None
    for path in socket_paths:
        try:
            return _dial_docker_desktop(path)
        except OSError as err:
            last_error = err
    if last_error is None:
        raise DockerDesktopError("no docker desktop sockets to dial")
    raise last_error


def new_docker_desktop_client() -> "DockerDesktopClient":
    """Create a client wired to the local Docker Desktop sockets."""
    socket_paths = docker_desktop_socket_paths()
    return DockerDesktopClient(
        gui_client=SocketHTTPClient(lambda: _dial_first(socket_paths)),
        backend_client=SocketHTTPClient(_dial_docker_backend),
    )


def error_priority(error: BaseException) -> int:
    """Rank an error; real failures outrank bad status codes."""
    if isinstance(error, StatusCodeError):
        return error.status_code // 100
    return 10


def choose_worst_error(errors: list[BaseException]) -> BaseException:
    """Return the highest-priority error, the earliest one on ties."""
    worst = errors[0]
    priority = error_priority(worst)
    for error in errors[1:]:
        p = error_priority(error)
        if p > priority:
            worst, priority = error, p
    return worst


@dataclass
class _ClientRequest:
    client: Any
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None


def _run_command(args: list[str], label: str) -> None:
    try:
        subprocess.run(
            args, check=True, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
        )
    except (OSError, subprocess.SubprocessError) as err:
        raise DockerDesktopError(f"{label}: {err}") from err


@dataclass
class DockerDesktopClient:
    """Reads and changes Docker Desktop settings and lifecycle."""

    gui_client: Any
    backend_client: Any

    def open(self) -> None:
        """Start Docker Desktop."""
        goos = _goos()
        if goos == "windows":
            raise DockerDesktopError("Cannot auto-start Docker Desktop on Windows")
        if goos == "darwin":
            try:
                os.stat("/Applications/Docker.app")
            except FileNotFoundError as err:
                raise DockerDesktopError("Please install Docker for Desktop") from err
            _run_command(["open", "/Applications/Docker.app"], "starting Docker")
        elif goos == "linux":
            _run_command(
                ["systemctl", "--user", "start", "docker-desktop"], "starting Docker"
            )

    def quit(self) -> None:
        """Shut Docker Desktop down."""
        goos = _goos()
        if goos == "windows":
            raise DockerDesktopError("Cannot quit Docker Desktop on Windows")
        if goos == "darwin":
            _run_command(["osascript", "-e", 'quit app "Docker"'], "quitting Docker")
        elif goos == "linux":
            _run_command(
                ["systemctl", "--user", "stop", "docker-desktop"], "quitting Docker"
            )

    def reset_cluster(self) -> None:
        """Reset the Docker Desktop Kubernetes cluster."""
        url = "http://localhost/kubernetes/reset"
        self._try_requests(
            "reset docker-desktop kubernetes",
            [
                _ClientRequest(self.backend_client, "POST", url, dict(_JSON_HEADERS)),
                _ClientRequest(self.gui_client, "POST", url, dict(_JSON_HEADERS)),
            ],
        )

    def settings_values(self) -> Any:
        """Return the settings as plain values, without lock metadata."""
        return self.settings_for_write(self.settings())

    def set_setting_value(self, key: str, new_value: str) -> None:
        """Set one dotted setting, writing only if it changed."""
        settings = self.settings()
        if self.apply_set(settings, key, new_value):
            self.write_settings(settings)

    def apply_set(self, settings: dict, key: str, new_value: str) -> bool:
        """Set ``key`` to ``new_value`` in ``settings``; return whether it changed."""
        parts = key.split(".")
        if len(parts) <= 1:
            raise DockerDesktopError(f"key cannot be set: {key}")

        parent_spec = self.lookup_map_at(settings, ".".join(parts[:-1]))
        child_key = parts[-1]
        if child_key not in parent_spec:
            raise DockerDesktopError(
                f"nothing found at DockerDesktop setting {_quote(key)}"
            )

        # A setting is stored either bare or wrapped as {"value": ...}.
        value = parent_spec[child_key]
        owner, owner_key = parent_spec, child_key
        if isinstance(value, dict):
            owner, owner_key = value, "value"
            value = value.get("value")

        if isinstance(value, bool):
            if new_value == "true":
                owner[owner_key] = True
                return not value
            if new_value == "false":
                owner[owner_key] = False
                return value
            raise DockerDesktopError(
                f"expected bool for setting {_quote(key)}, got: {new_value}"
            )

        if _is_number(value):
            try:
                number = float(new_value)
            except ValueError as err:
                raise DockerDesktopError(
                    f"expected number for setting {_quote(key)}, got: {new_value}. "
                    f"Error: {err}"
                ) from err
            maximum = owner.get("max")
            if _is_number(maximum) and number > maximum:
                raise DockerDesktopError(
                    f"setting value {_quote(key)}: {new_value} greater than max "
                    f"allowed ({float(maximum):f})"
                )
            minimum = owner.get("min")
            if _is_number(minimum) and number < minimum:
                raise DockerDesktopError(
                    f"setting value {_quote(key)}: {new_value} less than min "
                    f"allowed ({float(minimum):f})"
                )
            if number != value:
                owner[owner_key] = _json_number(number)
                return True
            return False

        if isinstance(value, str):
            if new_value != value:
                owner[owner_key] = new_value
                return True
            return False

        if key == "vm.fileSharing":
            owner[owner_key] = [
                {"path": path, "cached": False} for path in new_value.split(",")
            ]
            return True

        raise DockerDesktopError(f"Cannot set key: {_quote(key)}")

    def write_settings(self, settings: dict) -> None:
        """Send the settings back to Docker Desktop."""
        label = "writing docker-desktop settings"
        try:
            body = (json.dumps(self.settings_for_write(settings)) + "\n").encode()
        except (TypeError, ValueError) as err:
            raise DockerDesktopError(f"{label}: {err}") from err
        self._try_requests(
            label,
            [
                _ClientRequest(
                    self.backend_client,
                    "POST",
                    "http://localhost/app/settings",
                    dict(_JSON_HEADERS),
                    body,
                ),
                _ClientRequest(
                    self.gui_client,
                    "POST",
                    "http://localhost/settings",
                    dict(_JSON_HEADERS),
                    body,
                ),
            ],
        )

    def settings(self) -> dict:
        """Fetch the raw settings document."""
        label = "reading docker-desktop settings"
        response = self._try_requests(
            label,
            [
                _ClientRequest(
                    self.backend_client, "GET", "http://localhost/app/settings"
                ),
                _ClientRequest(self.gui_client, "GET", "http://localhost/settings"),
            ],
        )
        try:
            settings = json.loads(response.body)
        except ValueError as err:
            raise DockerDesktopError(f"{label}: {err}") from err
        if not isinstance(settings, dict):
            raise DockerDesktopError(
                f"{label}: expected a JSON object, got: {_type_name(settings)}"
            )
        log.debug("Response body: %r", settings)
        return settings

    def lookup_map_at(self, settings: dict, key: str) -> dict:
        """Return the mapping found at the dotted ``key``."""
        parts = key.split(".")
        current: Any = settings
        for i, part in enumerate(parts):
            value = current.get(part)
            if not isinstance(value, dict):
                path = ".".join(parts[: i + 1])
                if value is None:
                    raise DockerDesktopError(
                        f"nothing found at DockerDesktop setting {_quote(path)}"
                    )
                raise DockerDesktopError(
                    f"expected map at DockerDesktop setting {_quote(path)}, "
                    f"got: {_type_name(value)}"
                )
            current = value
        return current

    def set_k8s_enabled(self, settings: dict, new_value: bool) -> bool:
        """Turn Kubernetes on or off; return whether it changed."""
        return self.apply_set(
            settings, "vm.kubernetes.enabled", "true" if new_value else "false"
        )

    def ensure_min_cpu(self, settings: dict, desired: int) -> bool:
        """Raise the CPU count to at least ``desired``; return whether it changed."""
        cpus = self.lookup_map_at(settings, "vm.resources.cpus")
        value = cpus.get("value")
        if not _is_number(value):
            raise DockerDesktopError(
                "expected number at DockerDesktop setting vm.resources.cpus.value, "
                f"got: {_type_name(value)}"
            )
        maximum = cpus.get("max")
        if not _is_number(maximum):
            raise DockerDesktopError(
                "expected number at DockerDesktop setting vm.resources.cpus.max, "
                f"got: {_type_name(maximum)}"
            )
        if desired > int(maximum):
            raise DockerDesktopError(
                f"desired cpus ({desired}) greater than max allowed ({int(maximum)})"
            )
        if desired <= int(value):
            return False
        cpus["value"] = desired
        return True

    def settings_for_write(self, settings: Any) -> Any:
        """Strip lock metadata from a settings tree, in place, for writing."""
        if not isinstance(settings, dict):
            return settings

        has_locked = "locked" in settings
        if has_locked and "value" in settings:
            return settings["value"]
        if has_locked and len(settings) == 1:
            return None
        if "locks" in settings and "json" in settings:
            return settings["json"]

        for key, value in list(settings.items()):
            new_value = self.settings_for_write(value)
            if new_value is None:
                del settings[key]
            else:
                settings[key] = new_value
        return settings

    def _try_request(self, label: str, request: _ClientRequest) -> HTTPResponse:
        log.debug("%s %s", request.method, request.url)
        body = request.body if request.body is not None else b""
        if request.body is not None:
            log.debug("Request body: %s", body.decode(errors="replace"))
        try:
            response = request.client.do(
                request.method, request.url, dict(request.headers), body
            )
        except (OSError, http.client.HTTPException, DockerDesktopError) as err:
            raise DockerDesktopError(f"{label}: {err}") from err
        if not 200 <= response.status_code <= 204:
            raise StatusCodeError(
                f"{label}: status code {response.status_code}", response.status_code
            )
        return response

    def _try_requests(
        self, label: str, requests: list[_ClientRequest]
    ) -> HTTPResponse:
        if not requests:
            raise ValueError(f"{label}: no requests provided")
        errors: list[BaseException] = []
        for request in requests:
            try:
                return self._try_request(label, request)
            except DockerDesktopError as err:
                errors.append(err)
        raise choose_worst_error(errors)