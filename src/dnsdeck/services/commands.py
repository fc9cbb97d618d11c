"""Allowlisted command catalogue and parameter validators."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Mapping

from dnsdeck.errors import InvalidParameter, UnknownCommand

logger = logging.getLogger(__name__)

ALLOWED_SERVICES = ("unbound", "cloudflared", "dnscrypt-proxy")
ALLOWED_UNITS = ("unbound", "dnsdeck", "cloudflared", "dnscrypt-proxy")

ZONE_PATTERN = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?)*\.?$")
LINES_PATTERN = re.compile(r"^\d{1,4}$")
SINCE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}:\d{2}(Z|[+-]\d{2}:\d{2})?)?$")
CONF_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+\.conf$")

MAX_ZONE_LENGTH = 253


class CommandId(str, Enum):
    UNBOUND_STATUS = "unbound-status"
    UNBOUND_STATS = "unbound-stats"
    UNBOUND_RELOAD = "unbound-reload"
    UNBOUND_FLUSH_ALL = "unbound-flush-all"
    UNBOUND_FLUSH_ZONE = "unbound-flush-zone"
    UNBOUND_CHECKCONF = "unbound-checkconf"
    UNBOUND_CHECKCONF_FILE = "unbound-checkconf-file"
    SYSTEMCTL_IS_ACTIVE = "systemctl-is-active"
    SYSTEMCTL_STATUS = "systemctl-status"
    SYSTEMCTL_RELOAD = "systemctl-reload"
    SYSTEMCTL_RESTART = "systemctl-restart"
    JOURNALCTL_READ = "journalctl-read"
    JOURNALCTL_SINCE = "journalctl-since"
    UNBOUND_VERSION = "unbound-version"


@dataclass(frozen=True)
class CommandSpec:
    """One catalogue entry. ``$NAME`` entries in ``args`` are placeholders."""

    id: CommandId
    executable: str
    args: tuple[str, ...] = ()
    timeout: float = 10.0
    allow_nonzero_exit: bool = False

    @property
    def placeholders(self) -> tuple[str, ...]:
        return tuple(arg[1:] for arg in self.args if arg.startswith("$"))


_SPECS = (
    CommandSpec(CommandId.UNBOUND_STATUS, "unbound-control", ("status",), timeout=5),
    CommandSpec(CommandId.UNBOUND_STATS, "unbound-control", ("stats_noreset",), timeout=5),
    CommandSpec(CommandId.UNBOUND_RELOAD, "unbound-control", ("reload",), timeout=10),
    CommandSpec(CommandId.UNBOUND_FLUSH_ALL, "unbound-control", ("flush_zone", "."), timeout=5),
    CommandSpec(CommandId.UNBOUND_FLUSH_ZONE, "unbound-control", ("flush_zone", "$ZONE"), timeout=5),
    CommandSpec(CommandId.UNBOUND_CHECKCONF, "unbound-checkconf", (), timeout=10),
    CommandSpec(CommandId.UNBOUND_CHECKCONF_FILE, "unbound-checkconf", ("$FILE",), timeout=10),
    # is-active exits 3 for an inactive unit; the state is in stdout
    CommandSpec(
        CommandId.SYSTEMCTL_IS_ACTIVE, "systemctl", ("is-active", "$SERVICE"), timeout=5, allow_nonzero_exit=True
    ),
    CommandSpec(
        CommandId.SYSTEMCTL_STATUS,
        "systemctl",
        ("status", "$SERVICE", "--no-pager"),
        timeout=5,
        allow_nonzero_exit=True,
    ),
    CommandSpec(CommandId.SYSTEMCTL_RELOAD, "systemctl", ("reload", "$SERVICE"), timeout=15),
    CommandSpec(CommandId.SYSTEMCTL_RESTART, "systemctl", ("restart", "$SERVICE"), timeout=30),
    CommandSpec(
        CommandId.JOURNALCTL_READ,
        "journalctl",
        ("-u", "$UNIT", "--no-pager", "-n", "$LINES", "-o", "json"),
        timeout=10,
    ),
    CommandSpec(
        CommandId.JOURNALCTL_SINCE,
        "journalctl",
        ("-u", "$UNIT", "--no-pager", "--since", "$SINCE", "-o", "json"),
        timeout=10,
    ),
    # Some builds exit non-zero after printing the version
    CommandSpec(CommandId.UNBOUND_VERSION, "unbound", ("-V",), timeout=5, allow_nonzero_exit=True),
)

CATALOGUE: Mapping[CommandId, CommandSpec] = MappingProxyType({spec.id: spec for spec in _SPECS})


def validate_zone(value: str) -> None:
    if len(value) > MAX_ZONE_LENGTH or not ZONE_PATTERN.match(value):
        raise InvalidParameter(f"Invalid zone format: {value!r}")


def validate_service(value: str) -> None:
    if value not in ALLOWED_SERVICES:
        raise InvalidParameter(f"Service not allowed: {value!r}. Allowed: {', '.join(ALLOWED_SERVICES)}")


def validate_unit(value: str) -> None:
    if value not in ALLOWED_UNITS:
        raise InvalidParameter(f"Unit not allowed: {value!r}. Allowed: {', '.join(ALLOWED_UNITS)}")


def validate_lines(value: str) -> None:
    if not LINES_PATTERN.match(value) or int(value) == 0:
        raise InvalidParameter(f"Invalid line count: {value!r}")


def validate_since(value: str) -> None:
    if not SINCE_PATTERN.match(value):
        raise InvalidParameter(f"Invalid timestamp format: {value!r}")


def make_file_validator(config_dir: Path) -> Callable[[str], None]:
    """Build the ``$FILE`` validator bound to the resolver config directory."""
    allowed_dir = Path(config_dir).expanduser().resolve()

    def validate_file(value: str) -> None:
        if "\x00" in value or "//" in value or ".." in Path(value).parts:
            raise InvalidParameter(f"Path traversal detected: {value!r}")
        path = Path(value)
        if not path.is_absolute() or not CONF_NAME_PATTERN.match(path.name):
            raise InvalidParameter(f"Invalid or disallowed file path: {value!r}")
        if path.resolve().parent != allowed_dir:
            raise InvalidParameter(f"File must live in {allowed_dir}: {value!r}")

    return validate_file


def build_validators(config_dir: Path) -> dict[str, Callable[[str], None]]:
    """Return the validator for every placeholder the catalogue uses."""
    return {
        "ZONE": validate_zone,
        "SERVICE": validate_service,
        "UNIT": validate_unit,
        "LINES": validate_lines,
        "SINCE": validate_since,
        "FILE": make_file_validator(config_dir),
    }


def check_catalogue(validators: Mapping[str, Callable[[str], None]]) -> None:
    """Raise if a catalogue placeholder has no validator."""
    for spec in CATALOGUE.values():
        for name in spec.placeholders:
            if name not in validators:
                raise RuntimeError(f"{spec.id.value}: no validator for placeholder ${name}")


def resolve_command(command_id: CommandId | str) -> CommandSpec:
    try:
        key = CommandId(command_id)
    except ValueError:
        logger.error("Rejected unknown command id: %s", command_id)
        raise UnknownCommand(str(command_id)) from None
    return CATALOGUE[key]


def build_argv(
    spec: CommandSpec,
    params: Mapping[str, str],
    validators: Mapping[str, Callable[[str], None]],
) -> list[str]:
    """Validate every placeholder value, then substitute into an argument vector."""
    argv = [spec.executable]
    for arg in spec.args:
        if not arg.startswith("$"):
            argv.append(arg)
            continue
        name = arg[1:]
        value = params.get(name)
        if value is None:
            raise InvalidParameter(f"Missing required parameter: {name}")
        if not isinstance(value, str):
            raise InvalidParameter(f"Parameter {name} must be a string")
        validators[name](value)
        argv.append(value)
    return argv


check_catalogue(build_validators(Path("/")))
