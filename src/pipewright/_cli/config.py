"""Configuration loading from pyproject.toml."""

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

from pydantic import ValidationError

from pipewright._errors import ConfigError
from pipewright._settings import Settings


@dataclass(slots=True, frozen=True)
class ScriptSource:
    """Script path with optional variable name."""

    script: Path
    name: str | None = None


@dataclass(slots=True, frozen=True)
class ModuleSource:
    """Module path with variable name (e.g., 'analysis.pipeline:pipeline')."""

    module_path: str


PipelineSource = ScriptSource | ModuleSource


@dataclass(slots=True, frozen=True)
class PipewrightConfig:
    """Configuration loaded from pyproject.toml.

    All relative paths are resolved from the project root (directory containing pyproject.toml).
    """

    pipeline: PipelineSource | None = None
    settings: Settings = field(default_factory=Settings)
    project_root: Path | None = None


def find_pyproject_toml(start_dir: Path | None = None) -> Path | None:
    """Find pyproject.toml by walking up from start_dir.

    Args:
        start_dir: Starting directory. Defaults to current working directory.

    Returns:
        Path to pyproject.toml if found, None otherwise.

    """
    if start_dir is None:
        start_dir = Path.cwd()

    current = start_dir.resolve()

    while True:
        candidate = current / "pyproject.toml"
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            # Reached filesystem root
            return None
        current = parent


def _parse_pipeline_source(value: object, project_root: Path) -> PipelineSource:
    """Parse the pipeline field from config.

    Args:
        value: The raw value from TOML (string or dict)
        project_root: Project root directory for resolving relative paths

    Returns:
        Parsed PipelineSource

    Raises:
        ConfigError: If the value format is invalid

    """
    if isinstance(value, str):
        # Module path format: "module.path:variable"
        if ":" not in value:
            msg = f"Invalid module path '{value}'. Expected format: 'module.path:variable_name'"
            raise ConfigError(msg)
        return ModuleSource(module_path=value)

    if isinstance(value, dict):
        # Script path format: { script = "path.py", name = "pipeline" }
        value_dict = cast("dict[str, object]", value)
        if "script" not in value_dict:
            msg = "Invalid [tool.pipewright].pipeline configuration. Expected string or table with 'script' key."
            raise ConfigError(msg)

        script_value = value_dict["script"]
        if not isinstance(script_value, str):
            msg = "Invalid [tool.pipewright].pipeline.script: expected string path"
            raise ConfigError(msg)
        script_path = Path(script_value)
        # Resolve relative to project root
        if not script_path.is_absolute():
            script_path = project_root / script_path

        name = value_dict.get("name")
        if name is not None and not isinstance(name, str):
            msg = "Invalid [tool.pipewright].pipeline.name: expected string"
            raise ConfigError(msg)

        return ScriptSource(script=script_path, name=name)

    msg = "Invalid [tool.pipewright].pipeline configuration. Expected string or table with 'script' key."
    raise ConfigError(msg)


def _parse_settings(section: dict[str, object], project_root: Path) -> Settings:
    """Validate the settings keys of [tool.pipewright].

    Raises:
        ConfigError: If a value is invalid or a key is unknown

    """
    raw = {key: value for key, value in section.items() if key != "pipeline"}
    try:
        settings = Settings.model_validate(raw)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        msg = f"Invalid [tool.pipewright] configuration: {errors}"
        raise ConfigError(msg) from e

    # Resolve the store directory relative to project root
    if not settings.store.is_absolute():
        settings = settings.model_copy(update={"store": project_root / settings.store})
    return settings


def load_config(pyproject_path: Path) -> PipewrightConfig:
    """Load and validate [tool.pipewright] config from pyproject.toml.

    Args:
        pyproject_path: Path to pyproject.toml

    Returns:
        Parsed PipewrightConfig

    Raises:
        ConfigError: If the configuration is invalid

    Example:
        ```toml
        [tool.pipewright]
        pipeline = { script = "pipeline.py" }
        worker_concurrency = 4
        default_error_policy = "substitute-default"
        ```

    """
    project_root = pyproject_path.parent

    with pyproject_path.open("rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            msg = f"Invalid TOML in {pyproject_path}: {e}"
            raise ConfigError(msg) from e

    # Extract [tool.pipewright] section
    tool_section = data.get("tool", {})
    section = tool_section.get("pipewright", {})

    if not section:
        # No [tool.pipewright] section - return default config
        return PipewrightConfig(
            settings=_parse_settings({}, project_root),
            project_root=project_root,
        )

    pipeline_source: PipelineSource | None = None
    if "pipeline" in section:
        pipeline_source = _parse_pipeline_source(section["pipeline"], project_root)

    return PipewrightConfig(
        pipeline=pipeline_source,
        settings=_parse_settings(section, project_root),
        project_root=project_root,
    )


def get_config() -> PipewrightConfig:
    """Get config from pyproject.toml in current directory or parents.

    Returns:
        PipewrightConfig (default settings if no pyproject.toml or no [tool.pipewright] section)

    """
    pyproject_path = find_pyproject_toml()
    if pyproject_path is None:
        return PipewrightConfig()
    return load_config(pyproject_path)
