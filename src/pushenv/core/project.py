"""
Project configuration in .pushenv/config.json.

    {"projectId": "3f2a...", "stages": {"development": ".env", "production": ".env.production"}}

The file is meant to be committed: it carries no secrets, only the
project id and where each stage's env file lives locally.
"""

import json
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .errors import NotInitialized, StageNotConfigured
from .fileio import write_atomic
from .storage import DEFAULT_STAGE


CONFIG_DIR = ".pushenv"
CONFIG_FILE = "config.json"
DEFAULT_STAGES = {DEFAULT_STAGE: ".env"}


def get_config_path(project_root: str = ".") -> Path:
    return Path(project_root) / CONFIG_DIR / CONFIG_FILE


def new_project_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ProjectConfig:
    """Per-project settings."""
    project_id: str
    stages: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_STAGES))
    root: Path = field(default=Path("."), compare=False)

    @classmethod
    def load(cls, project_root: str = ".") -> "ProjectConfig":
        """
        Read the project config.

        Raises:
            NotInitialized: no config file, or it is unreadable
        """
        path = get_config_path(project_root)
        if not path.exists():
            raise NotInitialized()

        try:
            with open(path, 'r') as f:
                data = json.load(f)
            return cls(
                project_id=data["projectId"],
                stages=dict(data.get("stages") or DEFAULT_STAGES),
                root=Path(project_root),
            )
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            raise NotInitialized() from exc

    @classmethod
    def exists(cls, project_root: str = ".") -> bool:
        return get_config_path(project_root).exists()

    def save(self):
        data = {"projectId": self.project_id, "stages": self.stages}
        write_atomic(get_config_path(str(self.root)), json.dumps(data, indent=2) + "\n")

    def configured_stages(self) -> List[str]:
        return list(self.stages)

    def env_path(self, stage: str) -> Optional[str]:
        """Configured relative path for a stage, or None."""
        return self.stages.get(stage)

    def resolve_env_path(self, stage: str) -> Path:
        """
        Absolute-ish local path of a stage's env file.

        Raises:
            StageNotConfigured: stage is not in the config
        """
        rel_path = self.env_path(stage)
        if rel_path is None:
            raise StageNotConfigured(stage, self.configured_stages())
        return self.root / rel_path
