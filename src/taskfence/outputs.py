"""Step outputs for GitHub Actions.

Values are appended to the file named by ``$GITHUB_OUTPUT`` using the
heredoc form, which is safe for multi-line values. Without an output file
(local runs) they are printed instead.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)

TASK_JSON = "TASK_JSON"
SHOULD_SKIP = "SHOULD_SKIP"
AGENT_ARGS = "AGENT_ARGS"
ACTOR_NAME = "ACTOR_NAME"
ACTOR_EMAIL = "ACTOR_EMAIL"
EXCEPTION = "EXCEPTION"


class OutputWriter:
    def __init__(self, output_file: str | Path | None = None):
        self.output_file = Path(output_file) if output_file else None

    def set(self, name: str, value: str) -> None:
        if self.output_file is None:
            print(f"{name}={value}")
            return
        delimiter = f"ghadelimiter_{uuid.uuid4()}"
        if delimiter in value:
            raise ValueError(f"Output value for {name} contains the delimiter")
        with open(self.output_file, "a", encoding="utf-8") as f:
            f.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")
        logger.debug("Set output %s (%d characters)", name, len(value))
