"""Step outputs and log masking for GitHub Actions."""

import logging
import sys
import uuid
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TextIO

log = logging.getLogger(__name__)


def mask_commands(value: str) -> Sequence[str]:
    """Workflow commands that hide every non-blank line of `value` in logs."""
    return [f"::add-mask::{line}" for line in value.splitlines() if line.strip()]


def format_output(name: str, value: str) -> str:
    """Render one output in the multiline `name<<DELIMITER` form."""
    delimiter = f"ghadelimiter_{uuid.uuid4()}"
    while delimiter in value:
        delimiter = f"ghadelimiter_{uuid.uuid4()}"
    return f"{name}<<{delimiter}\n{value}\n{delimiter}\n"


def write_outputs(
    outputs: Mapping[str, str],
    github_output: Path | None,
    stream: TextIO | None = None,
) -> None:
    """Mask every value, then append the outputs to the GITHUB_OUTPUT file.

    Values are masked before they are written anywhere so a later log line
    can never reveal them.
    """
    stream = stream or sys.stdout
    for value in outputs.values():
        for command in mask_commands(value):
            print(command, file=stream)
    stream.flush()

    if github_output is None:
        log.warning("GITHUB_OUTPUT is not set; %d output(s) dropped", len(outputs))
        return

    with github_output.open("a", encoding="utf-8") as f:
        for name, value in outputs.items():
            f.write(format_output(name, value))
    log.info("Wrote %d output(s)", len(outputs))
