from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import Any

from config.defaults import EXECUTE_COMMAND_NAME
from scripting.capabilities import CapabilityTable
from scripting.emitter import OutputEmitter
from scripting.errors import RegistrationError
from scripting.runtime import ScriptBundle
from scripting.runtime import create_lua_runtime
from scripting.runtime import from_lua
from scripting.runtime import is_lua_function
from scripting.runtime import is_lua_table

NAME_RE = re.compile(r"^[-_a-z0-9]{1,32}$")
MAX_OPTIONS = 25
MAX_CHOICES = 25
MAX_DESCRIPTION = 100

OPTION_TYPES = (
    "string",
    "integer",
    "number",
    "boolean",
    "user",
    "channel",
    "role",
    "mentionable",
    "attachment",
)
NUMERIC_TYPES = ("integer", "number")
CHOICE_TYPES = ("string", "integer", "number")
RESERVED_NAMES = frozenset({EXECUTE_COMMAND_NAME})


@dataclass(frozen=True, slots=True)
class Choice:
    name: str
    value: str | int | float


@dataclass(frozen=True, slots=True)
class OptionSpec:
    name: str
    description: str
    type: str = "string"
    required: bool = False
    choices: tuple[Choice, ...] = ()
    suggestions: tuple[str, ...] = ()
    min_value: float | None = None
    max_value: float | None = None
    min_length: int | None = None
    max_length: int | None = None


@dataclass(frozen=True, slots=True)
class ReplySpec:
    requires: tuple[str, ...] = ()
    defaults: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CommandDescriptor:
    name: str
    description: str
    options: tuple[OptionSpec, ...] = ()
    reply: ReplySpec | None = None

    @property
    def handles_replies(self) -> bool:
        return self.reply is not None


def _fail(where: str, message: str) -> RegistrationError:
    return RegistrationError(f"{where}: {message}")


def _check_name(where: str, value: Any) -> str:
    if not isinstance(value, str) or not NAME_RE.match(value):
        raise _fail(where, f"name {value!r} must be 1-32 lowercase letters, digits, '-' or '_'")
    return value


def _check_description(where: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise _fail(where, "description is required")
    if len(value) > MAX_DESCRIPTION:
        raise _fail(where, f"description is longer than {MAX_DESCRIPTION} characters")
    return value


def _matches_type(kind: str, value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if kind == "string":
        return isinstance(value, str)
    if kind == "integer":
        return isinstance(value, int) or (isinstance(value, float) and value.is_integer())
    return isinstance(value, (int, float))


def _parse_choices(where: str, kind: str, raw: Any) -> tuple[Choice, ...]:
    if raw is None or raw == {}:
        return ()
    if kind not in CHOICE_TYPES:
        raise _fail(where, f"choices are not allowed on {kind} options")
    if not isinstance(raw, list):
        raise _fail(where, "choices must be an array")
    if len(raw) > MAX_CHOICES:
        raise _fail(where, f"at most {MAX_CHOICES} choices are allowed, got {len(raw)}")
    out: list[Choice] = []
    for idx, item in enumerate(raw, start=1):
        if isinstance(item, dict):
            name, value = item.get("name"), item.get("value")
        else:
            name, value = item, item
        if value is None or not _matches_type(kind, value):
            raise _fail(where, f"choice {idx} value does not match option type {kind}")
        if kind == "integer":
            value = int(value)
        name = str(name if name is not None else value)
        if not name or len(name) > MAX_DESCRIPTION:
            raise _fail(where, f"choice {idx} name must be 1-{MAX_DESCRIPTION} characters")
        out.append(Choice(name=name, value=value))
    return tuple(out)


def _parse_bound(where: str, raw: dict, key: str, *, integer: bool) -> Any:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _fail(where, f"{key} must be a number")
    if integer and (value < 0 or not float(value).is_integer()):
        raise _fail(where, f"{key} must be a non-negative integer")
    return int(value) if integer else value


def parse_option(command: str, raw: Any) -> OptionSpec:
    if not isinstance(raw, dict):
        raise _fail(f"/{command}", "each option must be a table")
    name = _check_name(f"/{command} option", raw.get("name"))
    where = f"/{command} option {name}"
    description = _check_description(where, raw.get("description"))
    kind = raw.get("type", "string")
    if kind not in OPTION_TYPES:
        raise _fail(where, f"unknown type {kind!r}; expected one of {', '.join(OPTION_TYPES)}")
    required = raw.get("required", False)
    if not isinstance(required, bool):
        raise _fail(where, "required must be a boolean")

    choices = _parse_choices(where, kind, raw.get("choices"))
    suggestions_raw = raw.get("suggestions")
    suggestions: tuple[str, ...] = ()
    if suggestions_raw not in (None, {}):
        if kind != "string":
            raise _fail(where, "suggestions are only allowed on string options")
        if choices:
            raise _fail(where, "an option cannot have both choices and suggestions")
        if not isinstance(suggestions_raw, list):
            raise _fail(where, "suggestions must be an array")
        values = []
        for item in suggestions_raw:
            value = item.get("value") if isinstance(item, dict) else item
            if not isinstance(value, str) or not value:
                raise _fail(where, "suggestions must be strings or {name, value} tables")
            values.append(value)
        suggestions = tuple(values)

    min_value = _parse_bound(where, raw, "min_value", integer=False)
    max_value = _parse_bound(where, raw, "max_value", integer=False)
    if (min_value is not None or max_value is not None) and kind not in NUMERIC_TYPES:
        raise _fail(where, "min_value/max_value only apply to integer and number options")
    min_length = _parse_bound(where, raw, "min_length", integer=True)
    max_length = _parse_bound(where, raw, "max_length", integer=True)
    if (min_length is not None or max_length is not None) and kind != "string":
        raise _fail(where, "min_length/max_length only apply to string options")
    if min_value is not None and max_value is not None and min_value > max_value:
        raise _fail(where, "min_value is greater than max_value")
    if min_length is not None and max_length is not None and min_length > max_length:
        raise _fail(where, "min_length is greater than max_length")

    return OptionSpec(
        name=name,
        description=description,
        type=kind,
        required=required,
        choices=choices,
        suggestions=suggestions,
        min_value=min_value,
        max_value=max_value,
        min_length=min_length,
        max_length=max_length,
    )


def parse_reply(command: str, raw: Any) -> tuple[ReplySpec, Any]:
    where = f"/{command} reply"
    if not isinstance(raw, dict):
        raise _fail(where, "reply must be a table")
    handler = raw.get("handler")
    if not is_lua_function(handler):
        raise _fail(where, "handler must be a function")
    requires = raw.get("requires", [])
    if requires == {}:
        requires = []
    if not isinstance(requires, list) or not all(isinstance(r, str) and r for r in requires):
        raise _fail(where, "requires must be an array of parameter names")
    defaults = raw.get("defaults", {})
    if defaults == []:
        defaults = {}
    if not isinstance(defaults, dict):
        raise _fail(where, "defaults must be a table")
    for key, value in defaults.items():
        if not isinstance(key, str) or not isinstance(value, (str, int, float, bool)):
            raise _fail(where, f"default {key!r} must be a string, number or boolean")
    return (ReplySpec(requires=tuple(requires), defaults=dict(defaults)), handler)


@dataclass(slots=True)
class CollectedCommand:
    descriptor: CommandDescriptor
    execute: Any
    reply_handler: Any = None


class CommandCollector:
    """Backs `discord.register_command` while scripts load into a runtime."""

    def __init__(self) -> None:
        self.commands: dict[str, CollectedCommand] = {}

    def register(self, raw=None) -> None:
        if not is_lua_table(raw):
            raise RegistrationError("discord.register_command expects a table")
        spec = from_lua(raw)
        if not isinstance(spec, dict):
            raise RegistrationError("discord.register_command expects a table with named fields")
        name = _check_name("command", spec.get("name"))
        where = f"/{name}"
        if name in RESERVED_NAMES:
            raise _fail(where, "name is reserved by the bot")
        if name in self.commands:
            raise _fail(where, "registered twice")
        description = _check_description(where, spec.get("description"))

        raw_options = spec.get("options", [])
        if raw_options == {}:
            raw_options = []
        if not isinstance(raw_options, list):
            raise _fail(where, "options must be an array")
        if len(raw_options) > MAX_OPTIONS:
            raise _fail(where, f"at most {MAX_OPTIONS} options are allowed, got {len(raw_options)}")
        options = tuple(parse_option(name, o) for o in raw_options)
        seen: set[str] = set()
        optional_seen = False
        for option in options:
            if option.name in seen:
                raise _fail(where, f"duplicate option {option.name}")
            seen.add(option.name)
            if option.required and optional_seen:
                raise _fail(where, f"required option {option.name} must come before optional options")
            optional_seen = optional_seen or not option.required

        execute = spec.get("execute")
        if not is_lua_function(execute):
            raise _fail(where, "execute must be a function")

        reply, handler = (None, None)
        if spec.get("reply") is not None:
            reply, handler = parse_reply(name, spec.get("reply"))

        descriptor = CommandDescriptor(name=name, description=description, options=options, reply=reply)
        self.commands[name] = CollectedCommand(descriptor=descriptor, execute=execute, reply_handler=handler)


@dataclass(frozen=True)
class CommandRegistry:
    bundle: ScriptBundle
    commands: dict[str, CommandDescriptor]

    def get(self, name: str) -> CommandDescriptor | None:
        return self.commands.get(str(name or ""))

    def names(self) -> list[str]:
        return sorted(self.commands)


def load_commands(lua, bundle: ScriptBundle, services) -> CommandCollector:
    """Install capabilities plus `discord.register_command` into `lua` and run the scripts."""
    collector = CommandCollector()
    caps = CapabilityTable(services, OutputEmitter(), cancel_event=threading.Event(), register_command=collector.register)
    caps.install(lua)
    bundle.load_into(lua)
    return collector


def build_registry(bundle: ScriptBundle, services, *, max_memory: int | None = None) -> CommandRegistry:
    """
    Load the scripts once in a scratch runtime and validate every descriptor.

    Raises RegistrationError for malformed descriptors or script load failures.
    """
    lua = create_lua_runtime(max_memory=max_memory)
    try:
        collector = load_commands(lua, bundle, services)
    except RegistrationError:
        raise
    except Exception as e:
        cause = e.__cause__ or e.__context__
        if isinstance(cause, RegistrationError):
            raise cause
        raise RegistrationError(f"failed to load scripts: {e}") from e
    registry = CommandRegistry(
        bundle=bundle,
        commands={name: c.descriptor for name, c in collector.commands.items()},
    )
    print(f"[Registry] loaded {len(registry.commands)} command(s): {', '.join(registry.names()) or '-'}")
    return registry
