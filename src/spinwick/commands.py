"""``/spinwick`` slash command parsing.

Supported forms::

    /spinwick create [--env K=V,...] [--size NAME]
    /spinwick update [--env K=V,...] [--clear-env K,...]
    /spinwick delete

Parsing never prints or exits. Every problem raises SlashCommandError,
whose ``output`` is posted back to the PR as a fenced code block.
"""

import argparse
import logging
from dataclasses import dataclass, field
from typing import List, NoReturn, Optional

from src.spinwick.cloud.models import EnvVar, EnvVarMap


logger = logging.getLogger(__name__)


SLASH_COMMAND = "/spinwick"
DEFAULT_SIZE = "miniSingleton"
HA_SIZE = "miniHA"

USAGE = """Usage: /spinwick <command> [args]

Available commands:
  create  Create a new Mattermost spinwick installation
  update  Update the existing Mattermost spinwick installation
  delete  Delete the existing Mattermost spinwick installation
"""


class EnvArgError(ValueError):
    """Raised for a malformed ``--env`` argument."""


class SlashCommandError(Exception):
    """Raised when a slash command cannot be parsed.

    Attributes:
        output: Text to show the commenter.
    """

    def __init__(self, message: str, output: str = ""):
        self.output = output
        super().__init__(message)


def split_comma_separated(value: str) -> List[str]:
    """Split ``value`` on commas.

    One pair of matching surrounding quotes is removed first; parts are
    trimmed and empty parts dropped.
    """
    value = value.strip()
    if not value:
        return []
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_env_arg(arg: str) -> EnvVarMap:
    """Parse ``VAR1=VAL1,VAR2=VAL2`` into an EnvVarMap.

    Values keep everything after the first ``=`` verbatim.

    Raises:
        EnvArgError: On an empty argument, no pairs, a pair without ``=``
            or key, or a duplicate key.
    """
    if not arg:
        raise EnvArgError("invalid empty argument")

    pairs = split_comma_separated(arg)
    if not pairs:
        raise EnvArgError("no key/val pairs found")

    env: EnvVarMap = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise EnvArgError(f"invalid key/val pair: {pair!r}")
        if key in env:
            raise EnvArgError(f"duplicate key: {key!r}")
        env[key] = EnvVar(value=value)
    return env


class _CommandParser(argparse.ArgumentParser):
    """ArgumentParser that raises instead of printing and exiting."""

    def error(self, message: str) -> NoReturn:
        raise SlashCommandError(
            f"failed to parse args: {message}",
            f"{self.prog}: error: {message}\n{self.format_usage()}",
        )

    def exit(self, status: int = 0, message: Optional[str] = None) -> NoReturn:
        raise SlashCommandError(message or "help requested", self.format_help())

    def print_help(self, file=None) -> None:
        pass


def build_parser() -> argparse.ArgumentParser:
    parser = _CommandParser(prog=SLASH_COMMAND)
    commands = parser.add_subparsers(dest="command")

    create = commands.add_parser("create", prog=f"{SLASH_COMMAND} create")
    create.add_argument(
        "--env",
        default="",
        help="An optional comma-separated list of environment variables. "
        "Example: VAR1=VAl1,VAR2=VAL2",
    )
    create.add_argument(
        "--size",
        default=DEFAULT_SIZE,
        help="Size of the Mattermost installation e.g. 'miniSingleton' or 'miniHA'",
    )

    update = commands.add_parser("update", prog=f"{SLASH_COMMAND} update")
    update.add_argument(
        "--env",
        default="",
        help="An optional comma-separated list of environment variables. "
        "Example: VAR1=VAl1,VAR2=VAL2",
    )
    update.add_argument(
        "--clear-env",
        default="",
        help="An optional comma-separated list of environment variables to clear. "
        "Example: VAR1,VAR2",
    )

    commands.add_parser("delete", prog=f"{SLASH_COMMAND} delete")
    return parser


@dataclass
class SpinWickCommand:
    """A parsed ``/spinwick`` command.

    Attributes:
        command: ``create``, ``update``, ``delete`` or ``help`` (no
            subcommand given).
        env: Environment variables to apply; cleared keys map to
            ``EnvVar.clear()``.
        size: Installation size for ``create``.
    """

    command: str
    env: EnvVarMap = field(default_factory=dict)
    size: str = DEFAULT_SIZE


def parse_slash_command(text: str) -> Optional[SpinWickCommand]:
    """Parse a comment body.

    Returns:
        The command, or None when the comment is not a ``/spinwick``
        command.

    Raises:
        SlashCommandError: If the command is malformed.
    """
    args = text.split()
    if not args or args[0] != SLASH_COMMAND:
        return None
    if len(args) == 1:
        return SpinWickCommand(command="help")

    parsed = build_parser().parse_args(args[1:])

    env: EnvVarMap = {}
    raw_env = getattr(parsed, "env", "")
    if raw_env:
        try:
            env = parse_env_arg(raw_env)
        except EnvArgError as e:
            raise SlashCommandError(f"failed to parse env vars: {e}", str(e)) from e

    for key in split_comma_separated(getattr(parsed, "clear_env", "")):
        env[key] = EnvVar.clear()

    command = SpinWickCommand(
        command=parsed.command,
        env=env,
        size=getattr(parsed, "size", DEFAULT_SIZE),
    )
    logger.info(
        "Parsed spinwick command",
        extra={"command": command.command, "env_keys": list(env), "size": command.size},
    )
    return command
