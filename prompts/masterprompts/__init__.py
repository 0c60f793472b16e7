"""Utilities for loading the structured coaching prompt definitions."""
from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping

_PROMPT_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class MasterPrompt:
    """One model-backed operation: its templates and sampling bounds."""

    id: str
    prompt_version: str
    label: str
    model_role: str
    temperature: float
    max_tokens: int
    system_template: str
    user_message: str

    def render(self, **fields: Any) -> str:
        return self.system_template.format(**fields)


def _join_lines(value: Any) -> str:
    if isinstance(value, list):
        return "\n".join(str(line) for line in value)
    return str(value)


def _load_prompt(path: Path) -> MasterPrompt:
    payload = json.loads(path.read_text(encoding="utf-8"))
    required = {
        "id",
        "prompt_version",
        "label",
        "model_role",
        "temperature",
        "max_tokens",
        "system_template",
        "user_message",
    }
    missing = sorted(required - payload.keys())
    if missing:
        raise ValueError(f"Prompt file {path.name} missing keys: {', '.join(missing)}")
    temperature = float(payload["temperature"])
    if not 0.0 <= temperature <= 2.0:
        raise ValueError(f"Prompt file {path.name} has out-of-range temperature {temperature}")
    max_tokens = int(payload["max_tokens"])
    if max_tokens <= 0:
        raise ValueError(f"Prompt file {path.name} must bound max_tokens")
    return MasterPrompt(
        id=str(payload["id"]),
        prompt_version=str(payload["prompt_version"]),
        label=str(payload["label"]),
        model_role=str(payload["model_role"]),
        temperature=temperature,
        max_tokens=max_tokens,
        system_template=_join_lines(payload["system_template"]),
        user_message=_join_lines(payload["user_message"]),
    )


def _iter_prompt_files(directory: Path) -> Iterable[Path]:
    for path in sorted(directory.glob("*.json")):
        if path.is_file():
            yield path


@lru_cache(maxsize=1)
def load_prompts(directory: Path | None = None) -> Mapping[str, MasterPrompt]:
    base_dir = Path(directory) if directory else _PROMPT_DIR
    prompts: Dict[str, MasterPrompt] = {}
    for file_path in _iter_prompt_files(base_dir):
        prompt = _load_prompt(file_path)
        if prompt.id in prompts:
            raise ValueError(f"Duplicate master prompt id detected: {prompt.id}")
        prompts[prompt.id] = prompt
    if not prompts:
        raise RuntimeError(f"No master prompt definitions found in {base_dir}")
    return prompts


def get_prompt(prompt_id: str) -> MasterPrompt:
    prompts = load_prompts()
    if prompt_id not in prompts:
        raise KeyError(f"Unknown master prompt '{prompt_id}'. Available: {', '.join(sorted(prompts))}")
    return prompts[prompt_id]


__all__ = ["MasterPrompt", "load_prompts", "get_prompt"]
