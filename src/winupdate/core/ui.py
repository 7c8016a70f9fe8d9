"""Status sinks for user-facing progress messages"""

import logging
from typing import Optional

import click


class Ui:
    """Fire-and-forget status notifications"""

    def say(self, message: str) -> None:
        raise NotImplementedError

    def error(self, message: str) -> None:
        self.say(message)


class ConsoleUi(Ui):
    """Writes messages to the terminal, prefixed with the target name"""

    def __init__(self, prefix: Optional[str] = None):
        self.prefix = prefix

    def _format(self, message: str) -> str:
        if self.prefix:
            return f"[{self.prefix}] {message}"
        return message

    def say(self, message: str) -> None:
        click.echo(self._format(message))

    def error(self, message: str) -> None:
        click.secho(self._format(message), fg="red", err=True)


class LogUi(Ui):
    """Forwards messages to a logger"""

    def __init__(self, logger: Optional[logging.Logger] = None, prefix: Optional[str] = None):
        self.logger = logger or logging.getLogger("winupdate.ui")
        self.prefix = prefix

    def say(self, message: str) -> None:
        if self.prefix:
            message = f"[{self.prefix}] {message}"
        self.logger.info(message)

    def error(self, message: str) -> None:
        if self.prefix:
            message = f"[{self.prefix}] {message}"
        self.logger.error(message)
