from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from chain import footer


class ResolutionError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class ChainMessage:
    id: int
    content: str
    author_id: int
    author_name: str
    is_bot: bool
    channel_id: int
    guild_id: int | None = None
    attachments: tuple[str, ...] = ()

    def to_script_table(self) -> dict:
        # ids are strings so scripts can compare them without precision surprises
        out = {
            "id": str(self.id),
            "content": self.content,
            "author_id": str(self.author_id),
            "author_name": self.author_name,
            "is_bot": self.is_bot,
            "channel_id": str(self.channel_id),
            "attachments": list(self.attachments),
        }
        if self.guild_id is not None:
            out["guild_id"] = str(self.guild_id)
        return out


@dataclass(frozen=True, slots=True)
class Chain:
    """Messages reached through reply links, oldest first."""

    messages: tuple[ChainMessage, ...]
    command_name: str = ""
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ResolvedChainContext:
    command_name: str
    params: dict[str, Any]
    instruction: str
    history: list[dict[str, str]]
    options: dict[str, Any]
    messages: tuple[ChainMessage, ...]

    def to_script_table(self) -> dict:
        return {
            "command_name": self.command_name,
            "options": dict(self.options),
            "params": dict(self.params),
            "instruction": self.instruction,
            "history": [dict(turn) for turn in self.history],
            "messages": [m.to_script_table() for m in self.messages],
        }


def earliest_bot_footer(messages: tuple[ChainMessage, ...] | list[ChainMessage]) -> dict | None:
    for msg in messages:
        if not msg.is_bot:
            continue
        record = footer.decode(msg.content)
        if record is not None:
            return record
    return None


def latest_instruction(messages: tuple[ChainMessage, ...] | list[ChainMessage]) -> str | None:
    for msg in reversed(messages):
        if not msg.is_bot:
            return msg.content
    return None


def build_history(chain: Chain, params: Mapping[str, Any]) -> list[dict[str, str]]:
    history: list[dict[str, str]] = []
    system = params.get("system")
    if isinstance(system, str) and system.strip():
        history.append({"role": "system", "content": system})
    prompt = chain.options.get("prompt")
    if isinstance(prompt, str) and prompt.strip():
        history.append({"role": "user", "content": prompt})
    for msg in chain.messages:
        content = footer.strip(msg.content) if msg.is_bot else msg.content
        if not content.strip():
            continue
        history.append({"role": "assistant" if msg.is_bot else "user", "content": content})
    return history


def resolve(chain: Chain, requirements=None) -> ResolvedChainContext:
    """
    Recover the parameters of the interaction that started `chain`.

    Per key: interaction options win, then the footer of the earliest bot message that has
    one. Keys in `requirements.requires` that neither source provides raise ResolutionError;
    everything else may fall back to `requirements.defaults`.
    """
    requires = tuple(getattr(requirements, "requires", ()) or ())
    defaults = dict(getattr(requirements, "defaults", {}) or {})
    options = {k: v for k, v in dict(chain.options or {}).items() if v is not None}
    recorded = earliest_bot_footer(chain.messages) or {}

    params: dict[str, Any] = dict(defaults)
    params.update(recorded)
    params.update(options)

    missing = [key for key in requires if key not in options and key not in recorded]
    if missing:
        name = f"/{chain.command_name}" if chain.command_name else "this command"
        raise ResolutionError(
            f"Original {', '.join(missing)} parameter not available for {name}; cannot continue this conversation."
        )

    instruction = latest_instruction(chain.messages)
    if instruction is None or not instruction.strip():
        raise ResolutionError("missing instruction: reply with some text to continue.")

    return ResolvedChainContext(
        command_name=chain.command_name,
        params=params,
        instruction=instruction.strip(),
        history=build_history(chain, params),
        options=options,
        messages=tuple(chain.messages),
    )
