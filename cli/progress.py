"""Progress display on stderr."""

import sys
from typing import Optional, TextIO

PROGRESS_MODES = ("animated", "static", "off")


class ProgressDisplay:
    """Renders ``Progress i/n`` lines, overwriting in place when animated."""

    def __init__(self, mode: str = "animated", stream: Optional[TextIO] = None):
        if mode not in PROGRESS_MODES:
            raise ValueError(f"Unknown progress mode: {mode}")
        self.mode = mode
        self.stream = stream or sys.stderr
        self._last_length = 0

    def update(self, current: int, total: int, message: Optional[str] = None) -> None:
        if self.mode == "off":
            return
        line = f"Progress {current}/{total}"
        if message:
            line = f"{line} - {message}"
        self._write(line, overwrite=self.mode == "animated")

    def pause(self, message: str) -> None:
        if self.mode == "off":
            return
        self._write(f"Rate limit pause: {message}", overwrite=False)

    def finish(self) -> None:
        if self.mode == "animated" and self._last_length:
            self.stream.write("\n")
            self.stream.flush()
            self._last_length = 0

    def _write(self, line: str, overwrite: bool) -> None:
        if not overwrite:
            if self._last_length:
                self.stream.write("\n")
            self.stream.write(f"{line}\n")
            self._last_length = 0
        else:
            padding = " " * max(0, self._last_length - len(line))
            self.stream.write(f"\r{line}{padding}")
            self._last_length = len(line)
        self.stream.flush()
