"""Configuration management for reelrank.

This module centralises finding, loading and validating configuration.  The
per-user directory is ``$XDG_CONFIG_HOME/reelrank`` (``~/.config/reelrank``
when unset) or ``%APPDATA%\\ReelRank`` on Windows.  A ``portable.flag`` file
in the application directory (or ``--portable`` on the command line) keeps
configuration next to the playlist instead.

Two files are read from the configuration directory:

``config.json``
    Session settings, validated against the bundled
    ``schemas/config.schema.json``.  An invalid file is reported and ignored.
``tuning.json``
    Optional numeric overrides for :mod:`reelrank.tuning`.

Example usage::

    from reelrank.config_service import ConfigService, SessionConfig

    service = ConfigService(app_dir=Path("~/Videos").expanduser())
    config = SessionConfig.from_dict(service.load_config())
"""

from __future__ import annotations

import json
import os
import platform
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema

from . import tuning

FEEDBACK_ERROR_POLICIES = ("skip", "retry", "abort")
SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"


def _get_appdata_root(app_name: str = "reelrank") -> Path:
    """Return the platform-specific base directory for config files."""
    system = platform.system().lower()
    if system == "windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "ReelRank"
        return Path.home() / "AppData/Roaming/ReelRank"
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / app_name
    return Path.home() / ".config" / app_name


def _load_json(path: Path) -> Any:
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _save_json(data: Any, file_path: Path) -> None:
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with file_path.open("w", encoding="utf-8", newline="\n") as f:
        json.dump(data, f, indent=2)


def _validate_json(data: Any, schema_path: Path) -> None:
    """Validate JSON against a schema; raise ``ValueError`` when invalid."""
    schema = _load_json(schema_path)
    if not schema:
        return
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc.message}") from exc


@dataclass
class SessionConfig:
    """Everything a :class:`~reelrank.session.Session` needs besides its collaborators."""

    roots: List[Path] = field(default_factory=list)
    extensions: List[str] = field(default_factory=lambda: list(tuning.VIDEO_EXTENSIONS))
    windows: int = field(default_factory=lambda: tuning.NGRAM_WINDOWS)
    min_ngram_support: int = field(default_factory=lambda: tuning.MIN_NGRAM_SUPPORT)
    min_merge_support: Optional[int] = field(default_factory=lambda: tuning.MIN_MERGE_SUPPORT)
    fp_rate: float = field(default_factory=lambda: tuning.BLOOM_FP_RATE)
    file_size_bias: Optional[float] = None
    file_size_offset: float = field(default_factory=lambda: tuning.FILE_SIZE_OFFSET)
    dir_size_bias: Optional[float] = None
    dir_size_offset: float = field(default_factory=lambda: tuning.DIR_SIZE_OFFSET)
    file_age_bias: Optional[float] = None
    file_age_offset: float = field(default_factory=lambda: tuning.FILE_AGE_OFFSET)
    batch_size: int = field(default_factory=lambda: tuning.BATCH_SIZE)
    random_top_n: int = field(default_factory=lambda: tuning.RANDOM_TOP_N)
    seed: Optional[int] = None
    include_classified: bool = False
    workers: int = field(default_factory=lambda: tuning.PARALLEL_WORKERS_DEFAULT)
    shards: int = field(default_factory=lambda: tuning.COUNTER_SHARDS)
    dry_run: bool = False
    feedback_error_policy: str = field(default_factory=lambda: tuning.FEEDBACK_ERROR_POLICY)
    max_retries: int = field(default_factory=lambda: tuning.FEEDBACK_MAX_RETRIES)
    explain_limit: int = 50

    def __post_init__(self) -> None:
        self.roots = [Path(r) for r in self.roots]
        self.validate()

    def validate(self) -> None:
        for name in ("file_size_bias", "dir_size_bias", "file_age_bias"):
            bias = getattr(self, name)
            if bias is not None and not abs(float(bias)) > 1.0:
                raise ValueError(f"{name} must satisfy |bias| > 1 (got {bias})")
        if self.windows < 1:
            raise ValueError("windows must be >= 1")
        if self.min_ngram_support < 1:
            raise ValueError("min_ngram_support must be >= 1")
        if self.min_merge_support is not None and self.min_merge_support < 1:
            raise ValueError("min_merge_support must be >= 1")
        if not 0.0 < self.fp_rate < 1.0:
            raise ValueError("fp_rate must be between 0 and 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.random_top_n < 0:
            raise ValueError("random_top_n must be >= 0")
        if self.workers < 1 or self.shards < 1:
            raise ValueError("workers and shards must be >= 1")
        if self.feedback_error_policy not in FEEDBACK_ERROR_POLICIES:
            raise ValueError(
                f"feedback_error_policy must be one of {', '.join(FEEDBACK_ERROR_POLICIES)}"
            )
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], **overrides: Any) -> "SessionConfig":
        """Build from a config mapping; unknown keys are ignored, ``None`` overrides skipped."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in (data or {}).items() if k in known}
        values.update({k: v for k, v in overrides.items() if k in known and v is not None})
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["roots"] = [str(r) for r in self.roots]
        return data


@dataclass
class ConfigService:
    """Resolve and manage reelrank configuration."""

    app_dir: Path
    portable_flag_filename: str = "portable.flag"
    config_filename: str = "config.json"
    tuning_filename: str = "tuning.json"
    schema_name: str = "config.schema.json"
    _cached_mode: Optional[bool] = field(default=None, init=False, repr=False)

    def _portable_flag_exists(self) -> bool:
        return (Path(self.app_dir) / self.portable_flag_filename).exists()

    def detect_mode(self, cli_portable: bool = False) -> bool:
        """Return ``True`` if portable mode should be used.

        The flag file always forces portable mode; otherwise ``cli_portable``
        decides.  The result is cached.
        """
        if self._cached_mode is None:
            if self._portable_flag_exists():
                self._cached_mode = True
            else:
                self._cached_mode = bool(cli_portable)
        return self._cached_mode

    def get_config_dir(self, cli_portable: bool = False) -> Path:
        if self.detect_mode(cli_portable=cli_portable):
            return Path(self.app_dir)
        return _get_appdata_root()

    def get_config_path(self, cli_portable: bool = False) -> Path:
        return self.get_config_dir(cli_portable) / self.config_filename

    def get_tuning_path(self, cli_portable: bool = False) -> Path:
        return self.get_config_dir(cli_portable) / self.tuning_filename

    def get_schema_path(self) -> Path:
        return SCHEMA_DIR / self.schema_name

    def load_config(self, cli_portable: bool = False) -> Dict[str, Any]:
        """Load configuration from the resolved path, validating against schema."""
        cfg: Dict[str, Any] = {}
        try:
            data = _load_json(self.get_config_path(cli_portable))
        except (OSError, ValueError) as exc:
            print(f"Warning: cannot read configuration: {exc}. Falling back to defaults.")
            data = None
        if data is not None:
            cfg = data
        try:
            _validate_json(cfg, self.get_schema_path())
        except ValueError as exc:
            print(f"Warning: {exc}. Falling back to defaults.")
            cfg = {}
        return cfg

    def save_config(self, config: Dict[str, Any], cli_portable: bool = False) -> None:
        """Write configuration to disk, validating against the schema first."""
        _validate_json(config, self.get_schema_path())
        _save_json(config, self.get_config_path(cli_portable))

    def load_tuning(self, cli_portable: bool = False) -> bool:
        """Apply ``tuning.json`` overrides if present; return whether any were applied."""
        path = self.get_tuning_path(cli_portable)
        try:
            data = _load_json(path)
        except (OSError, ValueError) as exc:
            print(f"Warning: ignoring {path}: {exc}")
            return False
        if isinstance(data, dict):
            tuning.apply_overrides(data)
            return True
        return False
