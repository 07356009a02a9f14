"""
Vault Configuration — Salt persistence and validated settings.

Reads settings from a YAML file (default ``~/.secretable/config.yaml``)::

    salt: <base58 text>
    storage: sheets            # sheets | json | memory
    google_credentials_file: /path/to/service-account.json
    spreadsheet_id: <id>
    refresh_interval: 10

Any field can be overridden with a non-empty ``SECRETABLE_<FIELD>``
environment variable. Overrides live only in memory: :meth:`VaultConfig.save`
never writes them to the file, and a salt taken from the environment cannot
be rotated.

Security Note:
    The salt is not secret but losing it makes the wrapped key unrecoverable.
    It is only ever written through :meth:`VaultConfig.save`, which replaces
    the file atomically.
"""
import os
import logging
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, Field, PrivateAttr, ValidationError, field_validator

from .crypto import KDF_ITERATIONS, MIN_KDF_ITERATIONS, generate_salt
from ..exceptions import ConfigError

logger = logging.getLogger("secretable.vault")

_ENV_PREFIX = "SECRETABLE_"
_STORAGE_BACKENDS = ("sheets", "json", "memory")


def default_config_path() -> Path:
    """Return the config path from SECRETABLE_CONFIG or the home directory."""
    raw = os.environ.get(f"{_ENV_PREFIX}CONFIG")
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".secretable" / "config.yaml"


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    salt: str = ""
    storage: str = Field(default="sheets")
    google_credentials_file: str = ""
    spreadsheet_id: str = ""
    json_storage_path: str = ""
    refresh_interval: float = Field(default=10.0, ge=1)
    kdf_iterations: int = Field(default=KDF_ITERATIONS, ge=MIN_KDF_ITERATIONS)
    cleanup_timeout: int = Field(default=0, ge=0)

    model_config = {"extra": "ignore", "validate_assignment": True}

    _path: Optional[Path] = PrivateAttr(default=None)
    _file_values: dict[str, Any] = PrivateAttr(default_factory=dict)
    _env_fields: frozenset[str] = PrivateAttr(default_factory=frozenset)

    @field_validator("storage")
    @classmethod
    def validate_storage(cls, v: str) -> str:
        """Validate storage backend is supported."""
        v = v.lower()
        if v not in _STORAGE_BACKENDS:
            raise ValueError(f"Unsupported storage backend: {v}")
        return v

    @field_validator("salt")
    @classmethod
    def strip_salt(cls, v: str) -> str:
        return v.strip()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def env_fields(self) -> frozenset[str]:
        """Fields whose value came from a ``SECRETABLE_*`` variable."""
        return self._env_fields

    @property
    def salt_from_env(self) -> bool:
        return "salt" in self._env_fields

    @classmethod
    def load(
        cls,
        path: Union[str, Path, None] = None,
        create_salt: bool = True,
    ) -> "VaultConfig":
        """Load configuration from a YAML file, creating it when missing.

        Environment overrides are applied after the file is read. When the
        resulting salt is empty and ``create_salt`` is set, a new salt is
        generated and persisted immediately.

        Args:
            path: Config file path, defaults to :func:`default_config_path`.
            create_salt: Generate and save a salt if none is configured.

        Returns:
            Populated VaultConfig bound to ``path``.

        Raises:
            ConfigError: If the file cannot be read or fails validation.
        """
        path = Path(path).expanduser() if path else default_config_path()
        try:
            if not path.exists():
                path.parent.mkdir(parents=True, exist_ok=True)
                path.touch()
                logger.info("Created config file %s", path)
            raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as err:
            raise ConfigError(f"Unable to read config {path}: {err}") from err
        if not isinstance(raw, dict):
            raise ConfigError(f"Config {path} must be a mapping")
        overrides = cls._env_overrides()
        try:
            config = cls(**{**raw, **overrides})
        except ValidationError as err:
            raise ConfigError(f"Invalid config {path}: {err}") from err
        config._path = path
        config._file_values = raw
        config._env_fields = frozenset(overrides)

        if not config.salt and create_salt:
            config.salt = generate_salt()
            config.save()
            logger.info("Salt generated automatically")
        return config

    @classmethod
    def _env_overrides(cls) -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        for name in cls.model_fields:
            value = os.environ.get(f"{_ENV_PREFIX}{name.upper()}")
            # blank variables count as unset
            if value is not None and value.strip():
                overrides[name] = value
        return overrides

    def save(self) -> None:
        """Persist the configuration, atomically replacing the file.

        Fields overridden from the environment keep the value the file had,
        so an override is never written back. Unknown keys of the file are
        preserved.

        Raises:
            ConfigError: If the config is not bound to a file or the write fails.
        """
        if self._path is None:
            raise ConfigError("Config is not bound to a file")
        values = dict(self._file_values)
        values.update(self.model_dump(exclude=set(self._env_fields)))
        data = yaml.safe_dump(values, sort_keys=False)
        try:
            fd, tmp = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp",
            )
        except OSError as err:
            raise ConfigError(f"Unable to write config {self._path}: {err}") from err
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self._path)
        except OSError as err:
            Path(tmp).unlink(missing_ok=True)
            raise ConfigError(f"Unable to write config {self._path}: {err}") from err
        self._file_values = values
        logger.debug("Config saved to %s", self._path)
