"""Shared fixtures for dotstore tests."""

import itertools
import os

import pytest
from click.testing import CliRunner
from dulwich.repo import Repo
from loguru import logger

from dotstore import commands
from dotstore.config import Config, ConfigContext
from dotstore.repo import ConfigRepo
from dotstore.signature import Signature

SIG = Signature("Test User", "test@example.com")


def snapshot(root):
    """Map every file below *root* (outside ``.git``) to its bytes or link target."""
    out = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d != ".git")
        for name in filenames:
            p = os.path.join(dirpath, name)
            rel = os.path.relpath(p, root)
            if os.path.islink(p):
                out[rel] = ("link", os.readlink(p))
            else:
                with open(p, "rb") as f:
                    out[rel] = f.read()
    return out


def remote_head(remote, branch="main"):
    return Repo(str(remote)).refs[f"refs/heads/{branch}".encode()]


@pytest.fixture(autouse=True)
def home(tmp_path, monkeypatch):
    """A fresh $HOME with a git identity, isolated from the real user."""
    h = tmp_path / "home"
    h.mkdir()
    h = h.resolve()
    (h / ".gitconfig").write_text(
        "[user]\n\tname = Test User\n\temail = test@example.com\n"
    )
    monkeypatch.setenv("HOME", str(h))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for var in ("DOTSTORE_DIR", "XDG_CONFIG_HOME", "GIT_CONFIG_GLOBAL",
                "DOTSTORE_GITHUB_CLIENT_ID"):
        monkeypatch.delenv(var, raising=False)
    return h


@pytest.fixture(autouse=True)
def _reset_logging():
    """Drop sinks the CLI added so they do not outlive the captured streams."""
    yield
    logger.remove()


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def remote(tmp_path):
    """An empty bare repository standing in for the hosted remote."""
    p = tmp_path / "remote.git"
    Repo.init_bare(str(p), mkdir=True)
    return str(p)


@pytest.fixture
def ctx(tmp_path):
    return ConfigContext(tmp_path / "config")


@pytest.fixture
def initialized(ctx, remote):
    """A config directory set up against *remote*, with nothing tracked."""
    commands.init(ctx, remote_url=remote, signature=SIG).close()
    return ctx


@pytest.fixture
def dotfiles(home):
    """A small set of dotfiles in $HOME.

    Tree:
        .zshrc
        .config/nvim/init.lua
        .config/nvim/lua/plugins.lua
        .config/starship.toml
    """
    nvim = home / ".config" / "nvim"
    (nvim / "lua").mkdir(parents=True)
    (nvim / "init.lua").write_text("set number\n")
    (nvim / "lua" / "plugins.lua").write_text("return {}\n")
    (home / ".config" / "starship.toml").write_text("add_newline = false\n")
    (home / ".zshrc").write_text("export EDITOR=nvim\n")
    return home


@pytest.fixture
def nvim(initialized, dotfiles):
    """An ``nvim`` entry tracking ~/.config/nvim, pushed to the remote."""
    commands.new_entry(initialized, "nvim", [dotfiles / ".config" / "nvim"],
                       push=True, signature=SIG)
    return initialized


@pytest.fixture
def upstream(remote, tmp_path):
    """Commit and push changes from another clone, as a second machine would.

    The clone is never deployed, so it does not touch $HOME.  Values of
    *files* are the new contents, or None to delete the file.
    """
    counter = itertools.count()

    def _commit(files=None, *, edit_config=None, message="Upstream change"):
        path = tmp_path / f"upstream{next(counter)}"
        with ConfigRepo.clone(remote, path) as repo:
            for rel, data in (files or {}).items():
                target = path / rel
                if data is None:
                    target.unlink()
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data.encode() if isinstance(data, str) else data)
            if edit_config is not None:
                other = ConfigContext(path)
                config = Config.load(other)
                edit_config(config)
                config.save(other)
            sha = repo.commit_all(message, SIG)
            repo.push()
            return sha

    return _commit
