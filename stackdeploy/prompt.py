"""Confirmation prompts asked before a change set is executed."""
from __future__ import annotations

import asyncio
import sys
from typing import Awaitable, Callable, TextIO, Union

Prompt = Callable[[str], Union[bool, Awaitable[bool]]]

YES_KEYS = {"y", "Y", "\r", "\n"}


def auto_confirm(message: str) -> bool:
    """Prompt used whenever nobody can answer interactively."""
    return True


def read_key(stdin: TextIO) -> str:
    """Read a single keypress from a terminal in raw mode."""
    import termios
    import tty

    fd = stdin.fileno()
    previous = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        return stdin.read(1)
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, previous)


def create_prompt(stdin: TextIO = sys.stdin, stdout: TextIO = sys.stdout) -> Prompt:
    """Return a single-key ``[Y/n]`` prompt, or ``auto_confirm`` without a TTY."""
    if not stdin.isatty():
        return auto_confirm

    async def ask(message: str) -> bool:
        stdout.write(f"{message} [Y/n] ")
        stdout.flush()
        loop = asyncio.get_running_loop()
        key = await loop.run_in_executor(None, read_key, stdin)
        stdout.write("\n")
        stdout.flush()
        return key in YES_KEYS

    return ask


def fixed_answer(answer: bool) -> Prompt:
    """Prompt that always returns ``answer``; used by the HTTP API."""

    def ask(message: str) -> bool:
        return answer

    return ask
