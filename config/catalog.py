from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass(slots=True)
class Catalog:
    version: str = "catalog_v1"
    llm_models: list[str] = field(default_factory=list)
    chorus_models: list[str] = field(default_factory=list)
    translate_model: str = ""
    currencies: list[tuple[str, str]] = field(default_factory=list)
    languages: list[str] = field(default_factory=list)
    image_models: list[str] = field(default_factory=list)
    arch_defaults: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_script_table(self) -> dict:
        return {
            "llm_models": list(self.llm_models),
            "chorus_models": list(self.chorus_models),
            "translate_model": self.translate_model,
            "currencies": [{"code": code, "name": name} for code, name in self.currencies],
            "languages": list(self.languages),
            "image_models": list(self.image_models),
            "arch_defaults": {arch: dict(values) for arch, values in self.arch_defaults.items()},
        }


def default_catalog() -> Catalog:
    return Catalog(
        version="catalog_v1",
        llm_models=["gpu:qwen3-30b-a3b-instruct-2507"],
        chorus_models=["gpu:qwen3-30b-a3b-instruct-2507"],
        translate_model="gpu:qwen3-30b-a3b-instruct-2507",
        currencies=[("USD", "US Dollar"), ("EUR", "Euro"), ("GBP", "British Pound")],
        languages=["English", "Spanish", "French", "German"],
        image_models=["Stable v1.5 ^SD1.ckpt"],
        arch_defaults={
            "SD1": {"width": 512, "height": 512, "steps": 20, "cfg": 8.0, "scheduler": "normal"},
        },
    )


def _as_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    out: list[str] = []
    for item in value:
        text = str(item or "").strip()
        if text:
            out.append(text)
    return out


def _as_currencies(value: Any) -> list[tuple[str, str]]:
    if not isinstance(value, list):
        return []
    out: list[tuple[str, str]] = []
    for item in value:
        if isinstance(item, (list, tuple)) and len(item) == 2:
            code, name = str(item[0]).strip().upper(), str(item[1]).strip()
            if code:
                out.append((code, name or code))
    return out


def _as_arch_defaults(value: Any) -> dict[str, dict[str, Any]]:
    if not isinstance(value, dict):
        return {}
    out: dict[str, dict[str, Any]] = {}
    for arch, values in value.items():
        if isinstance(values, dict) and "width" in values and "height" in values:
            out[str(arch)] = dict(values)
    return out


def load_catalog(path: str | Path | None) -> tuple[Catalog, str | None]:
    """
    Returns (catalog, warning_message). warning_message is None on clean load.
    """
    defaults = default_catalog()
    if not path:
        return (defaults, "Catalog path missing; using built-in defaults.")

    p = Path(path)
    if not p.exists():
        return (defaults, f"Catalog file not found at {p}; using built-in defaults.")

    try:
        payload = yaml.safe_load(p.read_text(encoding="utf-8"))
    except Exception as exc:
        return (defaults, f"Failed to read catalog from {p}: {exc}; using built-in defaults.")

    if not isinstance(payload, dict):
        return (defaults, f"Invalid catalog format in {p}; using built-in defaults.")

    catalog = Catalog(
        version=str(payload.get("version") or defaults.version),
        llm_models=_as_list(payload.get("llm_models")) or defaults.llm_models,
        chorus_models=_as_list(payload.get("chorus_models")) or defaults.chorus_models,
        translate_model=str(payload.get("translate_model") or defaults.translate_model),
        currencies=_as_currencies(payload.get("currencies")) or defaults.currencies,
        languages=_as_list(payload.get("languages")) or defaults.languages,
        image_models=_as_list(payload.get("image_models")) or defaults.image_models,
        arch_defaults=_as_arch_defaults(payload.get("arch_defaults")) or defaults.arch_defaults,
    )
    return (catalog, None)
