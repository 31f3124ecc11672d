import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "host": "127.0.0.1",
    "port": 7888,
    "transport": "",
    "namespace": "user",
    "load_on_save": True,
    "source_roots": ["src", "test"],
    "transcript_limit": 500,
    "log_file": "/tmp/replpeek.log",
}


class ConfigManager:
    """
    Reads and writes ~/.replpeek/config.json.
    User values are merged over DEFAULT_CONFIG; a corrupt file falls back to defaults.
    """
    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = config_dir if config_dir else Path.home() / ".replpeek"
        self.config_file = self.config_dir / "config.json"
        self.config = self.load_config()

    def load_config(self) -> Dict[str, Any]:
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("Cannot create config dir %s: %s", self.config_dir, e)

        config = DEFAULT_CONFIG.copy()
        if not self.config_file.exists():
            return config

        try:
            with open(self.config_file, "r") as f:
                user_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable config %s: %s", self.config_file, e)
            return config

        if isinstance(user_config, dict):
            config.update(user_config)
        return config

    def save_config(self):
        with open(self.config_file, "w") as f:
            json.dump(self.config, f, indent=2)

    def get(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def set(self, key: str, value: Any):
        self.config[key] = value
        self.save_config()


def find_nrepl_port(start: Path) -> Optional[int]:
    """
    Walk up from start looking for the .nrepl-port file a running server writes.
    """
    start = start.resolve()
    for directory in [start, *start.parents]:
        port_file = directory / ".nrepl-port"
        if port_file.is_file():
            try:
                return int(port_file.read_text().strip())
            except (OSError, ValueError):
                logger.warning("Unreadable port file %s", port_file)
                return None
    return None
