from __future__ import annotations

import shutil
import socket
from pathlib import Path

from gantry.logging import get_logger

logger = get_logger("utils")


def read_lines(path: Path) -> list[str]:
    return path.read_text(encoding="utf-8").splitlines()


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def clean_dir(path: Path) -> None:
    """Remove everything inside ``path`` but keep the directory itself."""
    logger.info("Cleaning dir %s", path)
    if not path.is_dir():
        return
    for child in sorted(path.iterdir()):
        try:
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
        except OSError as exc:
            logger.error("Failed to remove %s: %s", child, exc)


def recreate_dir(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def free_port(host: str = "") -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return int(sock.getsockname()[1])


def port_open(host: str, port: int, timeout: float = 0.2) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def contains_value(mapping: dict[str, str], value: str) -> bool:
    return any(item == value for item in mapping.values())
