"""Pass-through run options handed to the build and the test runner.

``--options`` names a YAML/JSON file holding a mapping of options. Each
``--option`` is a dotted ``key=value`` override applied on top of it, so
``--option browser.headless=true`` sets ``{"browser": {"headless": True}}``.
Values are typed by OmegaConf's YAML parsing.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

from omegaconf import DictConfig, OmegaConf


def load_run_options(*, options_file: Path | None, overrides: Sequence[str] | None) -> dict[str, Any]:
    """Return the options mapping from ``options_file`` with ``overrides`` merged in.

    Raises ValueError on a missing or non-mapping file and on malformed overrides.
    """
    base = _load_options_file(options_file) if options_file is not None else OmegaConf.create()
    dotlist = [_check_override(item) for item in overrides or []]
    try:
        merged = OmegaConf.merge(base, OmegaConf.from_dotlist(dotlist))
        options = OmegaConf.to_container(merged, resolve=True)
    except Exception as exc:  # value parsing raises yaml errors as well as OmegaConf ones
        raise ValueError(f"Invalid run options: {exc}") from exc
    return options


def _load_options_file(path: Path) -> DictConfig:
    resolved = path.expanduser()
    if not resolved.exists():
        raise ValueError(f"--options file not found: {resolved}")
    if resolved.suffix not in {".yaml", ".yml", ".json"}:
        raise ValueError(f"--options file must be .yaml/.yml/.json: {resolved}")
    try:
        loaded = OmegaConf.load(resolved)
    except Exception as exc:  # yaml and OmegaConf both raise here
        raise ValueError(f"--options file could not be parsed: {resolved}") from exc
    if not isinstance(loaded, DictConfig):
        raise ValueError(f"--options file must contain a mapping: {resolved}")
    return loaded


def _check_override(item: str) -> str:
    key, sep, _ = item.partition("=")
    if not sep:
        raise ValueError(f"--option {item!r} must use the form KEY=VALUE.")
    if not key.strip() or any(not part for part in key.strip().split(".")):
        raise ValueError(f"--option {item!r} has an empty key.")
    return item.strip()


__all__ = ["load_run_options"]
