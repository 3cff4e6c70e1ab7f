import json
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field, fields, asdict
import yaml


class ConfigError(ValueError):
    """Raised when a configuration file cannot be turned into a LiveConfig"""


@dataclass
class WatchOptions:
    files: List[str] = field(default_factory=list)
    use_watchman: bool = False
    use_file_polling: bool = False
    polling_interval: int = 300  # ms
    watch_dot_files: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WatchOptions':
        aliases = {
            'useWatchman': 'use_watchman',
            'useFilePolling': 'use_file_polling',
            'pollingInterval': 'polling_interval',
            'watchDotFiles': 'watch_dot_files',
        }
        return cls(**_known_fields(cls, {aliases.get(k, k): v for k, v in data.items()}))


@dataclass
class HttpOptions:
    root: str = "."
    host: str = "localhost"
    port: int = 3000
    fallback: Optional[str] = None
    inject: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HttpOptions':
        return cls(**_known_fields(cls, data))


@dataclass
class LiveConfig:
    host: str = "localhost"
    port: int = 8888
    directory: Optional[str] = None
    destination: Optional[str] = None
    hostname: Optional[str] = None
    verbose: bool = False
    log_level: str = "INFO"
    force_reload: bool = False
    watch: Dict[str, WatchOptions] = field(default_factory=dict)
    resolvers: Dict[str, Any] = field(default_factory=dict)
    http: Optional[HttpOptions] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LiveConfig':
        data = dict(data)
        watch = data.pop('watch', None) or {}
        http = data.pop('http', None)
        if not isinstance(watch, dict):
            raise ConfigError("'watch' must map folders to watch options")
        config = cls(**_known_fields(cls, data))
        config.watch = {
            folder: options if isinstance(options, WatchOptions) else WatchOptions.from_dict(options or {})
            for folder, options in watch.items()
        }
        if http is not None:
            config.http = http if isinstance(http, HttpOptions) else HttpOptions.from_dict(http)
        return config

    @property
    def source_dir(self) -> Path:
        return Path(self.directory or ".").resolve()

    @property
    def destination_dir(self) -> Path:
        return Path(self.destination or self.directory or ".").resolve()


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    unknown = set(data) - names
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} options: {', '.join(sorted(unknown))}")
    return data


class ConfigManager:
    def __init__(self, config_path: str = "livesync.json"):
        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> LiveConfig:
        """Load configuration from file or create default"""
        if self.config_path.exists():
            with open(self.config_path) as f:
                try:
                    if self._is_yaml:
                        config_dict = yaml.safe_load(f) or {}
                    else:
                        config_dict = json.load(f)
                except (json.JSONDecodeError, yaml.YAMLError) as e:
                    raise ConfigError(f"Cannot parse {self.config_path}: {e}") from e
            if not isinstance(config_dict, dict):
                raise ConfigError(f"{self.config_path} must contain a mapping")
            return LiveConfig.from_dict(config_dict)
        return LiveConfig()

    @property
    def _is_yaml(self) -> bool:
        return self.config_path.suffix in {'.yml', '.yaml'}

    def save_config(self):
        """Save current configuration to file"""
        config_dict = asdict(self.config)
        # callables registered from Python are not serializable
        config_dict['resolvers'] = {
            ext: entry for ext, entry in self.config.resolvers.items()
            if isinstance(entry, dict)
        }
        with open(self.config_path, 'w') as f:
            if self._is_yaml:
                yaml.safe_dump(config_dict, f, sort_keys=False)
            else:
                json.dump(config_dict, f, indent=2)

    def get(self, key: str) -> Any:
        """Get configuration value"""
        return getattr(self.config, key)

    def update(self, key: str, value: Any):
        """Update configuration value"""
        if hasattr(self.config, key):
            setattr(self.config, key, value)
            self.save_config()
        else:
            raise KeyError(f"Unknown configuration key: {key}")
