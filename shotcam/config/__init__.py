"""Configuration store for shotcam.

Values live in one JSON document (``./shotcam.json`` unless ``SHOTCAM_CONFIG``
or ``Config.set_config_file`` points elsewhere) and are addressed with dotted
keys such as ``vision.calibration.pattern.columns``. Components read single
keys with a fallback; ``settings()`` validates the whole document against
the pydantic schemas in ``shotcam.config.schemas``.

Changes made through ``set`` are written back on a background thread.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Optional

from .schemas import ShotcamConfig

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SHOTCAM_CONFIG"
DEFAULT_CONFIG_NAME = "shotcam.json"


def _default_config_path() -> Path:
    return Path(os.getenv(CONFIG_ENV_VAR, Path.cwd() / DEFAULT_CONFIG_NAME)).resolve()


class Config:
    """Process-wide configuration store.

    Example:
        config = Config()
        rows = config.get("vision.calibration.pattern.rows", 6)
        config.set("vision.detection.sectors.rows", 4)
    """

    _instance: Optional["Config"] = None
    _data: dict[str, Any] = {}
    _path: Optional[Path] = None
    _loaded = False
    _lock = threading.RLock()
    _write_lock = threading.Lock()

    def __new__(cls) -> "Config":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def set_config_file(cls, config_path: str | Path) -> None:
        """Switch to another config document and load it."""
        with cls._lock:
            cls._path = Path(config_path).resolve()
            cls()._read()

    @property
    def path(self) -> Path:
        with self._lock:
            if Config._path is None:
                Config._path = _default_config_path()
            return Config._path

    def _read(self) -> None:
        path = self.path
        with self._lock:
            Config._loaded = True
            if not path.exists():
                logger.warning(f"No config file at {path}, falling back to defaults")
                Config._data = {}
                return

            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Unreadable config file {path}: {e}")
                Config._data = {}
                return

            if not isinstance(data, dict):
                logger.error(f"Config file {path} does not hold a JSON object")
                data = {}
            Config._data = data
            logger.info(f"Loaded configuration from {path}")

    def _ensure_loaded(self) -> None:
        if not Config._loaded:
            self._read()

    def get(self, key: str, default: Any = None) -> Any:
        """Value at a dotted key, or ``default`` when any segment is missing."""
        with self._lock:
            self._ensure_loaded()
            node: Any = Config._data
            for part in key.split("."):
                if not isinstance(node, dict) or part not in node:
                    return default
                node = node[part]
            return node

    def set(self, key: str, value: Any, persist: bool = True) -> None:
        """Store a value at a dotted key, creating intermediate sections.

        Args:
            key: Dotted key path
            value: JSON-serializable value
            persist: Write the document back to disk in the background
        """
        *sections, leaf = key.split(".")
        with self._lock:
            self._ensure_loaded()
            node = Config._data
            for part in sections:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = node[part] = {}
                node = child
            node[leaf] = value

        if persist:
            threading.Thread(
                target=self._write, name="ConfigWriter", daemon=True
            ).start()

    def _write(self) -> None:
        # One writer at a time, each saving the data current when it runs
        with self._write_lock:
            path = self.path
            with self._lock:
                try:
                    snapshot = json.dumps(Config._data, indent=2, ensure_ascii=False)
                except TypeError as e:
                    logger.error(f"Config holds a value that cannot be saved: {e}")
                    return

            tmp_name = None
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                    "w",
                    encoding="utf-8",
                    dir=path.parent,
                    prefix=f".{path.name}.",
                    suffix=".tmp",
                    delete=False,
                ) as tmp:
                    tmp_name = tmp.name
                    tmp.write(snapshot)
                os.replace(tmp_name, path)
                logger.debug(f"Saved configuration to {path}")
            except OSError as e:
                logger.error(f"Could not save configuration to {path}: {e}")
                if tmp_name and os.path.exists(tmp_name):
                    os.remove(tmp_name)

    def reload(self) -> None:
        """Re-read the current config document."""
        self._read()

    def reset(self) -> None:
        """Drop every value and forget the config document."""
        with self._lock:
            Config._data = {}
            Config._path = None
            Config._loaded = False

    def get_all(self) -> dict[str, Any]:
        """Deep copy of the whole document."""
        with self._lock:
            self._ensure_loaded()
            return json.loads(json.dumps(Config._data))

    def settings(self) -> ShotcamConfig:
        """Validate the document, filling missing keys with schema defaults.

        Raises:
            pydantic.ValidationError: If the document holds invalid values
        """
        return ShotcamConfig.model_validate(self.get_all())


config = Config()
