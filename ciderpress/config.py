"""Configuration management."""
import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional

import yaml

from .constants import (
    DEFAULT_HOME, DEFAULT_CONFIG_PATH, APPLE_VOICEMEMOS_DIR, APPLE_DB_NAME,
    DB_NAME, JSONL_NAME, DEFAULT_MODEL, DIR_MODE, FILE_MODE,
)

PATH_KEYS = ("voice_memo_root", "ciderpress_home")


@dataclass
class Config:
    voice_memo_root: Path = APPLE_VOICEMEMOS_DIR
    ciderpress_home: Path = DEFAULT_HOME
    model_name: str = DEFAULT_MODEL
    first_run_complete: bool = False
    skip_already_transcribed: bool = True
    copy_timeout_sec: float = 300.0
    origin_timeout_sec: float = 5.0

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        config_path = path or DEFAULT_CONFIG_PATH
        if config_path.exists():
            with open(config_path) as f:
                raw = yaml.safe_load(f) or {}
            for key in PATH_KEYS:
                if key in raw:
                    raw[key] = Path(raw[key]).expanduser()
            known = {f.name for f in fields(cls)}
            return cls(**{k: v for k, v in raw.items() if k in known})
        return cls()

    def save(self, path: Optional[Path] = None) -> Path:
        config_path = path or DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        raw = asdict(self)
        for key in PATH_KEYS:
            raw[key] = str(raw[key])
        with open(config_path, "w") as f:
            yaml.safe_dump(raw, f, sort_keys=False)
        os.chmod(config_path, FILE_MODE)
        return config_path

    @property
    def origin_db_path(self) -> Path:
        return Path(self.voice_memo_root) / APPLE_DB_NAME

    @property
    def db_path(self) -> Path:
        return Path(self.ciderpress_home) / DB_NAME

    @property
    def audio_dir(self) -> Path:
        return Path(self.ciderpress_home) / "audio"

    @property
    def transcripts_dir(self) -> Path:
        return Path(self.ciderpress_home) / "transcripts"

    @property
    def logs_dir(self) -> Path:
        return Path(self.ciderpress_home) / "logs"

    @property
    def exports_dir(self) -> Path:
        return Path(self.ciderpress_home) / "exports"

    @property
    def jsonl_path(self) -> Path:
        return self.logs_dir / JSONL_NAME

    def ensure_home(self):
        """Create the home directory tree, private to the current user."""
        for d in (Path(self.ciderpress_home), self.audio_dir,
                  self.transcripts_dir, self.logs_dir, self.exports_dir):
            d.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
            os.chmod(d, DIR_MODE)


def load_config(path: Optional[Path] = None) -> Config:
    return Config.load(path)


def save_config(config: Config, path: Optional[Path] = None) -> Path:
    return config.save(path)
