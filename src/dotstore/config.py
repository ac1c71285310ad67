"""Config model: entries, settings, and the on-disk TOML files.

The config directory is a git working tree laid out as::

    <config_dir>/
        config.toml      tracked; [dotstore] settings + one table per entry
        hosts.toml       git-ignored; cached GitHub token and identity
        .gitignore
        <entry>/...      stored copies of each entry's files
"""

from __future__ import annotations

import os
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import tomli_w
from loguru import logger

from .exceptions import (
    ConfigCorrupt,
    ConfigMissing,
    EntryNotFound,
    InvalidEntryName,
)

CONFIG_FILE = "config.toml"
AUTH_FILE = "hosts.toml"
SETTINGS_TABLE = "dotstore"
DEFAULT_BRANCH = "main"
DEFAULT_REMOTE = "origin"

_RESERVED_NAMES = {SETTINGS_TABLE, CONFIG_FILE, AUTH_FILE, ".git", ".gitignore"}


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConfigContext:
    """Where dotstore keeps its state.

    Passed explicitly to every operation so tests can point it at a
    temporary directory.
    """

    config_dir: Path
    branch: str = DEFAULT_BRANCH
    remote: str = DEFAULT_REMOTE

    @classmethod
    def from_env(cls, config_dir: str | os.PathLike[str] | None = None) -> ConfigContext:
        """Resolve the config directory from an explicit value or the environment.

        Order: *config_dir*, ``$DOTSTORE_DIR``, ``$XDG_CONFIG_HOME/dotstore``,
        ``~/.config/dotstore``.
        """
        if config_dir is None:
            config_dir = os.environ.get("DOTSTORE_DIR")
        if config_dir is None:
            xdg = os.environ.get("XDG_CONFIG_HOME")
            base = Path(xdg) if xdg else Path.home() / ".config"
            config_dir = base / "dotstore"
        return cls(Path(config_dir).expanduser().absolute())

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILE

    @property
    def auth_path(self) -> Path:
        return self.config_dir / AUTH_FILE

    def storage_dir(self, name: str) -> Path:
        """Directory holding the stored copies of entry *name*."""
        return self.config_dir / name


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------

@dataclass
class Settings:
    """The ``[dotstore]`` table."""

    git_protocol: str = "ssh"
    signature_source: str = "gitconfig"
    git_user: str | None = None
    git_email: str | None = None

    def to_dict(self) -> dict:
        d = {
            "git_protocol": self.git_protocol,
            "signature_source": self.signature_source,
        }
        if self.git_user is not None:
            d["git_user"] = self.git_user
        if self.git_email is not None:
            d["git_email"] = self.git_email
        return d

    @classmethod
    def from_dict(cls, data: dict) -> Settings:
        if not isinstance(data, dict):
            raise ConfigCorrupt(f"[{SETTINGS_TABLE}] must be a table")
        settings = cls(
            git_protocol=data.get("git_protocol", "ssh"),
            signature_source=data.get("signature_source", "gitconfig"),
            git_user=data.get("git_user"),
            git_email=data.get("git_email"),
        )
        if settings.git_protocol not in ("ssh", "https"):
            raise ConfigCorrupt(f"Unsupported git_protocol: {settings.git_protocol!r}")
        if settings.signature_source not in ("github", "gitconfig"):
            raise ConfigCorrupt(
                f"Unsupported signature_source: {settings.signature_source!r}"
            )
        return settings


@dataclass
class Entry:
    """A named group of tracked files sharing one deployment base directory."""

    name: str
    target_dir: Path | None = None
    files: set[str] = field(default_factory=set)

    def deployed_path(self, rel: str) -> Path:
        if self.target_dir is None:
            raise ValueError(f"Entry {self.name!r} has no target directory")
        return self.target_dir / rel

    def to_dict(self) -> dict:
        d: dict = {}
        if self.target_dir is not None:
            d["target_dir"] = str(self.target_dir)
        d["files"] = sorted(self.files)
        return d

    @classmethod
    def from_dict(cls, name: str, data) -> Entry:
        if not isinstance(data, dict):
            raise ConfigCorrupt(f"Entry {name!r} must be a table")
        target = data.get("target_dir")
        if target is not None:
            if not isinstance(target, str) or not os.path.isabs(target):
                raise ConfigCorrupt(
                    f"Entry {name!r}: target_dir must be an absolute path, got {target!r}"
                )
            target = Path(target)
        files = data.get("files", [])
        if not isinstance(files, list) or not all(isinstance(f, str) for f in files):
            raise ConfigCorrupt(f"Entry {name!r}: files must be a list of strings")
        for f in files:
            p = PurePosixPath(f)
            if p.is_absolute() or ".." in p.parts or not p.parts:
                raise ConfigCorrupt(f"Entry {name!r}: invalid file path {f!r}")
        return cls(name=name, target_dir=target, files=set(files))


def validate_entry_name(name: str) -> str:
    """Reject names that cannot double as a TOML table and a directory."""
    if not name or not name.strip():
        raise InvalidEntryName("Entry name must not be empty")
    if "/" in name or "\\" in name or os.sep in name:
        raise InvalidEntryName(f"Entry name must not contain path separators: {name!r}")
    if name.startswith("."):
        raise InvalidEntryName(f"Entry name must not start with '.': {name!r}")
    if name in _RESERVED_NAMES:
        raise InvalidEntryName(f"Entry name is reserved: {name!r}")
    return name


@dataclass
class Config:
    """Root object: settings plus a mapping of entry name to :class:`Entry`."""

    settings: Settings = field(default_factory=Settings)
    entries: dict[str, Entry] = field(default_factory=dict)

    def get(self, name: str) -> Entry:
        try:
            return self.entries[name]
        except KeyError:
            raise EntryNotFound(name) from None

    def to_toml(self) -> str:
        doc: dict = {SETTINGS_TABLE: self.settings.to_dict()}
        for name in sorted(self.entries):
            doc[name] = self.entries[name].to_dict()
        return tomli_w.dumps(doc)

    @classmethod
    def from_toml(cls, text: str) -> Config:
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigCorrupt(f"Could not parse config: {exc}") from exc
        settings = Settings.from_dict(data.pop(SETTINGS_TABLE, {}))
        entries = {name: Entry.from_dict(name, table) for name, table in data.items()}
        return cls(settings=settings, entries=entries)

    @classmethod
    def load(cls, ctx: ConfigContext) -> Config:
        path = ctx.config_path
        if path.is_dir():
            raise ConfigCorrupt(f"Config file is a directory: {path}")
        if not path.exists():
            raise ConfigMissing(
                f"Config file {path} does not exist. Run `dotstore init` to create one."
            )
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigCorrupt(f"Could not read {path}: {exc}") from exc
        config = cls.from_toml(text)
        logger.debug("Loaded {} entries from {}", len(config.entries), path)
        return config

    def save(self, ctx: ConfigContext) -> None:
        """Write the config back wholesale; readers never see a partial file."""
        atomic_write(ctx.config_path, self.to_toml())


def atomic_write(path: Path, text: str) -> None:
    """Write *text* to *path* via a temp file in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


# ---------------------------------------------------------------------------
# hosts.toml
# ---------------------------------------------------------------------------

@dataclass
class AuthFile:
    """Cached OAuth credentials and the identity they belong to."""

    token: str
    token_type: str = "bearer"
    scopes: list[str] = field(default_factory=list)
    user_name: str | None = None
    user_email: str | None = None

    @classmethod
    def load(cls, ctx: ConfigContext) -> AuthFile | None:
        """Return the cached credentials, or None when there are none."""
        path = ctx.auth_path
        if not path.is_file():
            return None
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ConfigCorrupt(f"Could not read {path}: {exc}") from exc
        auth = data.get("auth", {})
        user = data.get("user", {})
        if "token" not in auth:
            raise ConfigCorrupt(f"{path} has no [auth] token")
        return cls(
            token=auth["token"],
            token_type=auth.get("token_type", "bearer"),
            scopes=list(auth.get("scopes", [])),
            user_name=user.get("name"),
            user_email=user.get("email"),
        )

    def save(self, ctx: ConfigContext) -> None:
        doc: dict = {
            "auth": {
                "token": self.token,
                "token_type": self.token_type,
                "scopes": self.scopes,
            }
        }
        if self.user_name is not None and self.user_email is not None:
            doc["user"] = {"name": self.user_name, "email": self.user_email}
        atomic_write(ctx.auth_path, tomli_w.dumps(doc))
