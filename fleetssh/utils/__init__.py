"""Utilities for fleetssh."""

from fleetssh.utils.console import ColorfulFormatter, colorize, supports_color
from fleetssh.utils.prompt import PasswordPrompt, prompt_for_password

__all__ = [
    "ColorfulFormatter",
    "colorize",
    "PasswordPrompt",
    "prompt_for_password",
    "supports_color",
]
