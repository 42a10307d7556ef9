"""
Operator prompts for the interactive action.

Prompts go to the controlling terminal (/dev/tty) so they still work when
stdout is piped. Without a terminal the interactive action cannot run.
"""

import sys
from enum import Enum
from typing import Optional, TextIO

from migration.errors import NoTTYError

MAIN_PROMPT = "[y] apply  [s] skip  [a] apply all  [p] show patch  [q] quit > "
AFTER_PATCH_PROMPT = "[y] apply  [s] skip  [a] apply all  [q] quit > "


class Choice(Enum):
    APPLY = "y"
    SKIP = "s"
    APPLY_ALL = "a"
    SHOW_PATCH = "p"
    QUIT = "q"

    @classmethod
    def parse(cls, answer: Optional[str]) -> "Choice":
        """Map operator input to a choice. Anything unrecognised skips."""
        text = (answer or "").strip().lower()
        for choice in cls:
            if text == choice.value:
                return choice
        return cls.SKIP


class OperatorPrompter:
    """Reads single-letter answers from the operator."""

    def __init__(self, input_stream: TextIO, output_stream: TextIO, owns_streams: bool = False):
        self.input_stream = input_stream
        self.output_stream = output_stream
        self._owns_streams = owns_streams

    @classmethod
    def open(cls, tty_path: str = "/dev/tty") -> "OperatorPrompter":
        """Open the controlling terminal, falling back to stdin/stdout when they are a TTY.

        Raises:
            NoTTYError: If no terminal is available
        """
        try:
            tty = open(tty_path, "r+")
        except OSError:
            if sys.stdin.isatty():
                return cls(sys.stdin, sys.stdout)
            raise NoTTYError("No TTY available for interactive input")
        return cls(tty, tty, owns_streams=True)

    def show(self, text: str) -> None:
        self.output_stream.write(text + "\n")
        self.output_stream.flush()

    def ask(self, prompt: str = MAIN_PROMPT) -> Choice:
        """Ask once. End of input counts as quit."""
        self.output_stream.write(prompt)
        self.output_stream.flush()
        answer = self.input_stream.readline()
        if answer == "":
            return Choice.QUIT
        return Choice.parse(answer)

    def close(self) -> None:
        if self._owns_streams:
            self.input_stream.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
