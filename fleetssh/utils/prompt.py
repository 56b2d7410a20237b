"""Masked password prompts."""

from collections.abc import Callable

import click

PasswordPrompt = Callable[[str], str]

DEFAULT_PROMPT = "Enter your password: "


def prompt_for_password(prompt: str = DEFAULT_PROMPT) -> str:
    """Ask for a password on the terminal without echoing it.

    Blocks the calling thread, and with it the event loop, until answered.
    """
    value: str = click.prompt(
        prompt,
        hide_input=True,
        prompt_suffix="",
        err=True,
        default="",
        show_default=False,
    )
    return value
