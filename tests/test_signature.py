"""Tests for commit author resolution."""

import pytest
from dulwich.config import ConfigDict

from dotstore.config import AuthFile, Config, ConfigContext, Settings
from dotstore.exceptions import SignatureUnavailable
from dotstore.github import GitHubUser
from dotstore.signature import Signature, from_gitconfig, resolve_signature


def git_config(name=None, email=None):
    c = ConfigDict()
    if name is not None:
        c.set((b"user",), b"name", name.encode())
    if email is not None:
        c.set((b"user",), b"email", email.encode())
    return c


class FakeClient:
    def __init__(self):
        self.calls = 0

    def get_auth_user(self):
        self.calls += 1
        return GitHubUser(login="octocat", email="octocat@example.com")


def test_identity():
    assert Signature("Ann", "ann@example.com").identity == b"Ann <ann@example.com>"


class TestFromGitconfig:
    def test_reads_user(self):
        sig = from_gitconfig(git_config("Ann", "ann@example.com"))
        assert sig == Signature("Ann", "ann@example.com")

    def test_missing(self):
        with pytest.raises(SignatureUnavailable):
            from_gitconfig(git_config(name="Ann"))

    def test_bad_email(self):
        with pytest.raises(SignatureUnavailable):
            from_gitconfig(git_config("Ann", "not-an-email"))

    def test_default_reads_home(self):
        assert from_gitconfig() == Signature("Test User", "test@example.com")


class TestResolve:
    def test_settings_override(self, tmp_path):
        config = Config(settings=Settings(git_user="Bob", git_email="bob@example.com"))
        sig = resolve_signature(ConfigContext(tmp_path), config,
                                git_config=git_config("Ann", "ann@example.com"))
        assert sig == Signature("Bob", "bob@example.com")

    def test_gitconfig_source(self, tmp_path):
        sig = resolve_signature(ConfigContext(tmp_path), Config(),
                                git_config=git_config("Ann", "ann@example.com"))
        assert sig.name == "Ann"

    def test_github_uses_cached_identity(self, tmp_path):
        ctx = ConfigContext(tmp_path)
        AuthFile("tok", user_name="cached", user_email="cached@example.com").save(ctx)
        client = FakeClient()
        config = Config(settings=Settings(signature_source="github"))
        assert resolve_signature(ctx, config, client=client) == Signature(
            "cached", "cached@example.com")
        assert client.calls == 0

    def test_github_fetches_and_caches(self, tmp_path):
        ctx = ConfigContext(tmp_path)
        AuthFile("tok").save(ctx)
        client = FakeClient()
        config = Config(settings=Settings(signature_source="github"))

        sig = resolve_signature(ctx, config, client=client)

        assert sig == Signature("octocat", "octocat@example.com")
        assert client.calls == 1
        assert AuthFile.load(ctx).user_email == "octocat@example.com"

    def test_github_without_login(self, tmp_path):
        config = Config(settings=Settings(signature_source="github"))
        with pytest.raises(SignatureUnavailable):
            resolve_signature(ConfigContext(tmp_path), config, client=FakeClient())
