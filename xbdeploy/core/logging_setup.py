"""Logging setup helpers."""

import click

from xbdeploy.core.action_logging import make_log_action, make_log_exception

ACTION_LOG_NAME = "xbdeploy-actions.log"


def build_loggers(log_dir):
    """Create the xbdeploy action writer and exception logger."""
    log_action = make_log_action(log_dir / ACTION_LOG_NAME)
    log_exception = make_log_exception(log_action)
    return log_action, log_exception


class Console:
    """Operator-facing console lines tagged by severity."""

    def __init__(self, err=False):
        self.err = err

    def _emit(self, tag, color, message):
        click.secho(f"[{tag}]", fg=color, nl=False, err=self.err)
        click.echo(f" {message}", err=self.err)

    def info(self, message):
        self._emit("INFO", "green", message)

    def warn(self, message):
        self._emit("WARN", "yellow", message)

    def error(self, message):
        self._emit("ERROR", "red", message)

    def step(self, message):
        self._emit("STEP", "blue", message)

    def line(self, message=""):
        click.echo(message, err=self.err)

    def banner(self, title, color=None):
        rule = "=" * 42
        click.echo(rule, err=self.err)
        click.secho(title, fg=color, err=self.err)
        click.echo(rule, err=self.err)
