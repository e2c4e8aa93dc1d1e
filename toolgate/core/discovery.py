"""Locate configuration files and load them as an ordered chain.

Chain order, most general first:

1. ``~/.config/toolgate.toml``
2. ``.config/toolgate.toml`` in the project
3. ``.config/toolgate.local.toml`` in the project
4. ``.config/toolgate/sessions/<session_id>.toml`` at the project root
5. an explicit ``--config`` path
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from toolgate.core.config import Config, default_config, load_config
from toolgate.core.errors import ConfigNotFoundError
from toolgate.utils.log import NULL_LOGGER, LoggerLike


CONFIG_DIR = ".config"
CONFIG_FILE = "toolgate.toml"
LOCAL_CONFIG_FILE = "toolgate.local.toml"
SESSIONS_DIR = Path(CONFIG_DIR) / "toolgate" / "sessions"
PROJECT_DIR_ENV = "TOOLGATE_PROJECT_DIR"
PROJECT_MARKERS = (".git", ".claude")


@dataclass
class ConfigChain:
    """Discovered configuration paths, in merge order."""

    project_root: str = ""
    global_config: Optional[Path] = None
    project_config: Optional[Path] = None
    local_config: Optional[Path] = None
    session_config: Optional[Path] = None
    explicit_config: Optional[Path] = None
    configs: list[Config] = field(default_factory=list)

    @property
    def paths(self) -> list[Path]:
        candidates = (
            self.global_config,
            self.project_config,
            self.local_config,
            self.session_config,
            self.explicit_config,
        )
        return [path for path in candidates if path is not None]


def _home() -> str:
    return os.environ.get("HOME", "") or str(Path.home())


def _ancestors(start: Path) -> list[Path]:
    return [start, *start.parents]


def find_project_root(
    cwd: Path, home: Optional[str] = None, env: Optional[Mapping[str, str]] = None
) -> str:
    """Return the project root for ``cwd`` or ``""`` when there is none."""
    env = os.environ if env is None else env
    explicit = env.get(PROJECT_DIR_ENV, "")
    if explicit:
        return explicit
    home = _home() if home is None else home

    for directory in _ancestors(cwd):
        if home and str(directory) == home:
            continue
        if (directory / CONFIG_DIR / CONFIG_FILE).is_file():
            return str(directory)

    for directory in _ancestors(cwd):
        if any((directory / marker).exists() for marker in PROJECT_MARKERS):
            return str(directory)
    return ""


def find_global_config(home: Optional[str] = None) -> Optional[Path]:
    home = _home() if home is None else home
    if not home:
        return None
    path = Path(home) / CONFIG_DIR / CONFIG_FILE
    return path if path.is_file() else None


def find_project_configs(
    cwd: Path,
    project_root: str,
    home: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> tuple[Optional[Path], Optional[Path]]:
    """Find the project and local configs between ``cwd`` and the project root.

    The nearest file of each kind wins. When ``$TOOLGATE_PROJECT_DIR`` is set
    only the project root itself is searched.
    """
    env = os.environ if env is None else env
    home = _home() if home is None else home
    if not project_root or (home and project_root == home):
        return None, None

    root = Path(project_root)
    directories = [root] if env.get(PROJECT_DIR_ENV) else []
    if not directories:
        for directory in _ancestors(cwd):
            directories.append(directory)
            if directory == root:
                break

    project: Optional[Path] = None
    local: Optional[Path] = None
    for directory in directories:
        if project is None and (directory / CONFIG_DIR / CONFIG_FILE).is_file():
            project = directory / CONFIG_DIR / CONFIG_FILE
        if local is None and (directory / CONFIG_DIR / LOCAL_CONFIG_FILE).is_file():
            local = directory / CONFIG_DIR / LOCAL_CONFIG_FILE
        if project is not None and local is not None:
            break
    return project, local


def is_valid_session_id(session_id: str) -> bool:
    return bool(session_id) and not any(token in session_id for token in ("/", "\\", ".."))


def session_dir(project_root: str) -> Path:
    return Path(project_root) / SESSIONS_DIR


def find_session_config(session_id: str, project_root: str) -> Optional[Path]:
    if not project_root or not is_valid_session_id(session_id):
        return None
    path = session_dir(project_root) / f"{session_id}.toml"
    return path if path.is_file() else None


def discover(
    cwd: Optional[Path] = None,
    *,
    session_id: str = "",
    explicit: Optional[Path] = None,
    home: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ConfigChain:
    """Find every configuration file that applies to ``cwd``."""
    cwd = Path.cwd() if cwd is None else cwd
    project_root = find_project_root(cwd, home, env)
    project, local = find_project_configs(cwd, project_root, home, env)
    return ConfigChain(
        project_root=project_root,
        global_config=find_global_config(home),
        project_config=project,
        local_config=local,
        session_config=find_session_config(session_id, project_root),
        explicit_config=explicit,
    )


def load_chain(chain: ConfigChain, logger: LoggerLike = NULL_LOGGER) -> list[Config]:
    """Load every file in ``chain``.

    Discovered files that vanish before they are read are skipped; an
    explicit path that does not exist is an error. With no files at all the
    built-in defaults are returned.

    Raises:
        ConfigError: for unreadable, malformed or invalid files.
    """
    configs: list[Config] = []
    for path in chain.paths:
        try:
            configs.append(load_config(path, logger))
        except ConfigNotFoundError:
            if path == chain.explicit_config:
                raise
            logger.debug("[config] Config file disappeared; skipping", extra={"path": str(path)})
    if not configs:
        logger.debug("[config] No configuration files found; using defaults")
        configs.append(default_config())
    chain.configs = configs
    return configs
