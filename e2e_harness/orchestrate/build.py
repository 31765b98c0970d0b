"""Build step: compile the app under test and report its chunk manifest."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Protocol
import json
import logging

from e2e_harness.orchestrate.config import RunConfig
from e2e_harness.orchestrate.process import ProcessError, read_tail, render_command, run_to_completion

logger = logging.getLogger(__name__)

# Assets are served from the server root rather than the app root during e2e runs,
# so asset URLs back up one directory.
ASSETS_REL = "../"
STATS_FILENAME = "build-stats.json"


class BuildError(RuntimeError):
    """Raised when the build tool fails or its output cannot be read."""


@dataclass(frozen=True)
class ChunkManifest:
    """Build output descriptors, or a pre-recorded metadata blob when the build was skipped."""

    chunks: tuple[Mapping[str, Any], ...] = ()
    metadata: Any = None
    prerecorded: bool = False

    @classmethod
    def from_chunks(cls, chunks: list[Mapping[str, Any]]) -> "ChunkManifest":
        return cls(chunks=tuple(chunks))

    @classmethod
    def from_metadata(cls, metadata: Any) -> "ChunkManifest":
        return cls(metadata=metadata, prerecorded=True)

    def as_runner_payload(self) -> Any:
        if self.prerecorded:
            return {"metadata": self.metadata}
        return [dict(chunk) for chunk in self.chunks]


class BuildAdapter(Protocol):
    async def build(self, options: Mapping[str, Any], *, assets_url: str, assets_rel: str) -> ChunkManifest: ...


class CommandBuildAdapter:
    """Runs the configured build command and reads the stats file it writes."""

    def __init__(
        self,
        command_template: str,
        *,
        project_root: Path,
        output_dir: Path,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._command_template = command_template
        self._project_root = project_root
        self._output_dir = output_dir
        self._env = dict(env or {})

    @property
    def stats_path(self) -> Path:
        return self._output_dir / STATS_FILENAME

    async def build(self, options: Mapping[str, Any], *, assets_url: str, assets_rel: str) -> ChunkManifest:
        stats_path = self.stats_path
        stats_path.parent.mkdir(parents=True, exist_ok=True)
        stats_path.unlink(missing_ok=True)
        command = render_command(
            self._command_template,
            {
                "stats_path": stats_path,
                "assets_url": assets_url,
                "assets_rel": assets_rel,
                "project_root": self._project_root,
            },
        )
        env = {
            **self._env,
            "E2E_ASSETS_URL": assets_url,
            "E2E_ASSETS_REL": assets_rel,
            "E2E_OPTIONS": json.dumps(dict(options), default=str),
        }
        log_dir = self._output_dir / "logs"
        logger.info("BUILD start cmd=%s", " ".join(command))
        try:
            result = await run_to_completion(command, cwd=self._project_root, env=env, log_dir=log_dir, name="build")
        except ProcessError as exc:
            raise BuildError(str(exc)) from exc
        if result.exit_code != 0:
            tail = read_tail(log_dir / "build.stderr.txt")
            detail = f": {tail}" if tail else ""
            raise BuildError(f"Build failed with exit code {result.exit_code}{detail}")
        chunks = normalize_chunks(_read_json(stats_path, label="build stats"))
        logger.info("BUILD complete chunks=%d duration=%.1fs", len(chunks), result.duration_s)
        return ChunkManifest.from_chunks(chunks)


def normalize_chunks(stats: Any) -> list[dict[str, Any]]:
    """Extract the chunk list from build stats (single or multi-compiler)."""
    if not isinstance(stats, Mapping):
        raise BuildError("Build stats must be a JSON object.")
    chunks = stats.get("chunks")
    if chunks is None and isinstance(stats.get("children"), list):
        chunks = []
        for child in stats["children"]:
            if isinstance(child, Mapping) and isinstance(child.get("chunks"), list):
                chunks.extend(child["chunks"])
    if not isinstance(chunks, list):
        raise BuildError("Build stats do not contain a chunks list.")
    normalized: list[dict[str, Any]] = []
    for chunk in chunks:
        if not isinstance(chunk, Mapping):
            raise BuildError(f"Build stats chunk entries must be objects; got {type(chunk).__name__}.")
        normalized.append(dict(chunk))
    return normalized


def load_persisted_manifest(path: Path) -> ChunkManifest | None:
    if not path.exists():
        return None
    return ChunkManifest.from_metadata(_read_json(path, label="persisted manifest"))


async def resolve_chunks(run_config: RunConfig, adapter: BuildAdapter, *, assets_url: str) -> ChunkManifest:
    """Build the app, or reuse the persisted manifest when the build is skipped."""
    if run_config.skip_build:
        logger.info("Skipping build step")
        manifest = load_persisted_manifest(run_config.manifest_path)
        if manifest is not None:
            return manifest
        display = _display_path(run_config.manifest_path, run_config.project_root)
        logger.warning('Unable to skip build step.  "%s" not found.', display)
        return ChunkManifest()
    return await adapter.build(run_config.options, assets_url=assets_url, assets_rel=ASSETS_REL)


def _read_json(path: Path, *, label: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError as exc:
        raise BuildError(f"{label.capitalize()} not found: {path}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise BuildError(f"Failed to read {label} {path}: {exc}") from exc


def _display_path(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


__all__ = [
    "ASSETS_REL",
    "BuildAdapter",
    "BuildError",
    "ChunkManifest",
    "CommandBuildAdapter",
    "load_persisted_manifest",
    "normalize_chunks",
    "resolve_chunks",
]
