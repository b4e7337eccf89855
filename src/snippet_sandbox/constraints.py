from __future__ import annotations

import logging
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def _default_constraints_path() -> Path:
    """Return bundled default constraints TOML path.

    Example:
        ```python
        path = _default_constraints_path()
        ```
    """
    return Path(__file__).with_name("default_constraints.toml")


_BUILTIN_CONSTRAINTS: dict[str, Any] = {
    "max_code_bytes": 64 * 1024,
    "wall_clock_timeout_seconds": 5.0,
    "max_output_bytes": 512 * 1024,
    "artifact_retention_seconds": 3600.0,
    "reaper_interval_seconds": 3600.0,
    "artifact_dir": "sandbox_temp",
    "interpreter": "",
    "blocked_modules": [
        "os",
        "sys",
        "subprocess",
        "shutil",
        "socket",
        "ctypes",
        "pty",
        "signal",
        "multiprocessing",
    ],
}


def _read_constraints_toml(path: Path) -> dict[str, Any]:
    """Read constraints TOML and return the normalized constraints dictionary.

    Raises `FileNotFoundError` when the file does not exist.

    Example:
        ```python
        raw = _read_constraints_toml(Path("/tmp/constraints.toml"))
        ```
    """
    if not path.is_file():
        raise FileNotFoundError(f"Constraints config not found: {path}")
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    constraints_obj = raw.get("constraints", raw)
    if not isinstance(constraints_obj, dict):
        raise ValueError("Constraints config must be a TOML table")
    return constraints_obj


def _read_bundled_defaults() -> dict[str, Any]:
    """Read the bundled defaults, or the built-in copy if the file is absent.

    Example:
        ```python
        raw = _read_bundled_defaults()
        ```
    """
    path = _default_constraints_path()
    if not path.is_file():
        return dict(_BUILTIN_CONSTRAINTS)
    return _read_constraints_toml(path)



def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings constraints field.

    Example:
        ```python
        blocked = _list_of_str(["os", "subprocess"], "blocked_modules")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return out


_DEFAULT_CONSTRAINTS_RAW = _read_bundled_defaults()
DEFAULT_MAX_CODE_BYTES = int(_DEFAULT_CONSTRAINTS_RAW.get("max_code_bytes", 64 * 1024))
DEFAULT_WALL_CLOCK_TIMEOUT_SECONDS = float(
    _DEFAULT_CONSTRAINTS_RAW.get("wall_clock_timeout_seconds", 5.0)
)
DEFAULT_MAX_OUTPUT_BYTES = int(_DEFAULT_CONSTRAINTS_RAW.get("max_output_bytes", 512 * 1024))
DEFAULT_ARTIFACT_RETENTION_SECONDS = float(
    _DEFAULT_CONSTRAINTS_RAW.get("artifact_retention_seconds", 3600.0)
)
DEFAULT_REAPER_INTERVAL_SECONDS = float(
    _DEFAULT_CONSTRAINTS_RAW.get("reaper_interval_seconds", 3600.0)
)
DEFAULT_ARTIFACT_DIR = Path(str(_DEFAULT_CONSTRAINTS_RAW.get("artifact_dir", "sandbox_temp")))
DEFAULT_INTERPRETER = str(_DEFAULT_CONSTRAINTS_RAW.get("interpreter") or sys.executable)
DEFAULT_BLOCKED_MODULES = tuple(
    _list_of_str(_DEFAULT_CONSTRAINTS_RAW.get("blocked_modules", []), "blocked_modules")
)


@dataclass(frozen=True, slots=True)
class Constraints:
    """Process-wide execution ceilings, fixed for the lifetime of a service.

    Example:
        ```python
        constraints = Constraints(wall_clock_timeout_seconds=2.0, max_output_bytes=4096)
        ```
    """

    max_code_bytes: int = DEFAULT_MAX_CODE_BYTES
    wall_clock_timeout_seconds: float = DEFAULT_WALL_CLOCK_TIMEOUT_SECONDS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    artifact_retention_seconds: float = DEFAULT_ARTIFACT_RETENTION_SECONDS
    reaper_interval_seconds: float = DEFAULT_REAPER_INTERVAL_SECONDS
    artifact_dir: Path = DEFAULT_ARTIFACT_DIR
    interpreter: str = DEFAULT_INTERPRETER
    blocked_modules: tuple[str, ...] = field(default=DEFAULT_BLOCKED_MODULES)
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate ceilings after dataclass initialization.

        Example:
            ```python
            Constraints(max_code_bytes=1024)
            ```
        """
        if self.max_code_bytes <= 0:
            raise ValueError("max_code_bytes must be positive")
        if self.wall_clock_timeout_seconds <= 0:
            raise ValueError("wall_clock_timeout_seconds must be positive")
        if self.max_output_bytes <= 0:
            raise ValueError("max_output_bytes must be positive")
        if self.artifact_retention_seconds <= 0:
            raise ValueError("artifact_retention_seconds must be positive")
        if self.reaper_interval_seconds <= 0:
            raise ValueError("reaper_interval_seconds must be positive")
        if not self.interpreter:
            raise ValueError("interpreter must be a non-empty path")
        if self.artifact_retention_seconds <= self.wall_clock_timeout_seconds:
            logger.warning(
                "artifact_retention_seconds (%s) is not larger than wall_clock_timeout_seconds (%s); "
                "the reaper relies on in-flight tracking alone",
                self.artifact_retention_seconds,
                self.wall_clock_timeout_seconds,
            )

    @classmethod
    def from_file(cls, config_path: str) -> "Constraints":
        """Create constraints from a TOML file with a `[constraints]` table.

        Missing keys fall back to the bundled defaults. A missing file raises
        `FileNotFoundError`.

        Example:
            ```python
            constraints = Constraints.from_file("/etc/snippet-sandbox.toml")
            ```
        """
        raw = _read_constraints_toml(Path(config_path))
        blocked = raw.get("blocked_modules")
        return cls(
            max_code_bytes=int(raw.get("max_code_bytes", DEFAULT_MAX_CODE_BYTES)),
            wall_clock_timeout_seconds=float(
                raw.get("wall_clock_timeout_seconds", DEFAULT_WALL_CLOCK_TIMEOUT_SECONDS)
            ),
            max_output_bytes=int(raw.get("max_output_bytes", DEFAULT_MAX_OUTPUT_BYTES)),
            artifact_retention_seconds=float(
                raw.get("artifact_retention_seconds", DEFAULT_ARTIFACT_RETENTION_SECONDS)
            ),
            reaper_interval_seconds=float(
                raw.get("reaper_interval_seconds", DEFAULT_REAPER_INTERVAL_SECONDS)
            ),
            artifact_dir=Path(str(raw.get("artifact_dir", DEFAULT_ARTIFACT_DIR))),
            interpreter=str(raw.get("interpreter") or DEFAULT_INTERPRETER),
            blocked_modules=(
                DEFAULT_BLOCKED_MODULES
                if blocked is None
                else tuple(_list_of_str(blocked, "blocked_modules"))
            ),
            config_path=config_path,
        )


def load_constraints(config_path: str | None = None) -> Constraints:
    """Resolve the effective constraints for a service.

    Example:
        ```python
        constraints = load_constraints(None)
        ```
    """
    if config_path is None:
        return Constraints()
    return Constraints.from_file(config_path)
