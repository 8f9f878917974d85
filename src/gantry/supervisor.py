from __future__ import annotations

import subprocess
import time
from pathlib import Path

from gantry.context import AppContext
from gantry.errors import ProcessStartError
from gantry.logging import get_logger
from gantry.utils import port_open

logger = get_logger("app")


class App:
    """One built binary and, once started, the process running it.

    A rebuild never mutates an ``App``: the old one is killed and a new one
    takes its place.
    """

    def __init__(self, bin_path: Path, context: AppContext, python: str, host: str = "127.0.0.1") -> None:
        self.bin_path = bin_path
        self.context = context
        self.python = python
        self.host = host
        self.port = 0
        self.process: subprocess.Popen[bytes] | None = None

    def command(self) -> list[str]:
        return [
            self.python,
            str(self.bin_path),
            "--port",
            str(self.port),
            "--run-mode",
            self.context.run_mode,
            "--import-path",
            self.context.import_path,
            "--src-path",
            str(self.context.source_path),
        ]

    @property
    def alive(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def start(self, port: int, timeout: float = 30.0) -> None:
        """Launch the binary and wait until it accepts connections on ``port``."""
        self.port = port
        command = self.command()
        logger.debug("Exec app: %s", command)
        try:
            self.process = subprocess.Popen(command, cwd=self.context.base_path)
        except OSError as exc:
            raise ProcessStartError(f"failed to launch {self.bin_path}: {exc}") from exc

        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            code = self.process.poll()
            if code is not None:
                raise ProcessStartError(f"app exited with code {code} before listening on port {port}")
            if port_open(self.host, port):
                logger.info("App listening on %s:%d (pid %d)", self.host, port, self.process.pid)
                return
            time.sleep(0.1)

        self.kill()
        raise ProcessStartError(f"app did not listen on port {port} within {timeout:.0f}s")

    def run(self, port: int) -> int:
        """Run the binary in the foreground and return its exit code."""
        self.port = port
        command = self.command()
        logger.debug("Exec app: %s", command)
        self.process = subprocess.Popen(command, cwd=self.context.base_path)
        try:
            return self.process.wait()
        except KeyboardInterrupt:
            self.kill()
            return 130

    def kill(self, timeout: float = 5.0) -> None:
        process = self.process
        if process is None or process.poll() is not None:
            return
        logger.info("Killing app pid %d", process.pid)
        process.terminate()
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("App pid %d ignored terminate; killing", process.pid)
            process.kill()
            process.wait()
