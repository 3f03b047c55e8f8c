"""Shared helpers for click-based `comp-reduce` commands."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import click

EXIT_OK = 0
EXIT_INPUT_ERROR = 1
EXIT_RUNTIME_ERROR = 2

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

FLAT_GEOMETRY_KEYS = (
    "occulter1",
    "occulter2",
    "field1",
    "field2",
    "post_angle1",
    "post_angle2",
)


class CompCliError(click.ClickException):
    """Click exception with explicit exit-code control."""

    def __init__(self, message: str, *, exit_code: int = EXIT_INPUT_ERROR) -> None:
        super().__init__(message)
        self.exit_code = int(exit_code)


def configure_logging(level: str) -> None:
    """Route library log records to stderr at ``level``."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def json_output_target(output_arg: str | None) -> Path | None:
    """``--out`` value of a JSON result; ``None``, empty or ``-`` selects stdout."""
    if output_arg is None or str(output_arg).strip() in {"", "-"}:
        return None
    return Path(str(output_arg).strip())


def write_json_result(payload: dict[str, Any], out_path: Path | None) -> None:
    """Write a geometry model or batch summary as indented JSON."""
    text = json.dumps(payload, sort_keys=True, indent=2)
    if out_path is None:
        click.echo(text)
        return
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(text + "\n", encoding="utf-8")


def read_flat_geometry_json(path: Path) -> dict[str, Any]:
    """Read the per-beam flat geometry guesses given to `geometry --flat-json`.

    The file holds ``occulter1``, ``occulter2``, ``field1`` and ``field2`` circles
    (``{"x", "y", "r"}`` offsets from the beam sub-image center) and the post
    angles ``post_angle1`` and ``post_angle2``.
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise CompCliError(f"cannot read flat geometry file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise CompCliError(
            f"flat geometry file {path} is not valid JSON (line {exc.lineno}): {exc.msg}"
        ) from exc

    if not isinstance(payload, dict):
        raise CompCliError(
            f"flat geometry file {path} must hold an object with occulter1/2, field1/2 "
            "and post_angle1/2"
        )
    missing = [key for key in FLAT_GEOMETRY_KEYS if key not in payload]
    if missing:
        raise CompCliError(f"flat geometry file {path} is missing {', '.join(missing)}")
    return payload
