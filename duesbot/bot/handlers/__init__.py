"""Bot handlers package - /dues command and its sub-commands."""

from duesbot.bot.handlers.dues import handle_dues_command, help_text

__all__ = ["handle_dues_command", "help_text"]
