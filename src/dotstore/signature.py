"""Commit author identity."""

from __future__ import annotations

from dataclasses import dataclass

from dulwich.config import StackedConfig
from loguru import logger

from .config import AuthFile, Config, ConfigContext
from .exceptions import SignatureUnavailable


@dataclass(frozen=True)
class Signature:
    name: str
    email: str

    @property
    def identity(self) -> bytes:
        return f"{self.name} <{self.email}>".encode()

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


def from_gitconfig(git_config=None) -> Signature:
    """Read ``user.name`` and ``user.email`` from the user's git config."""
    if git_config is None:
        git_config = StackedConfig.default()
    try:
        name = git_config.get((b"user",), b"name").decode()
        email = git_config.get((b"user",), b"email").decode()
    except KeyError:
        raise SignatureUnavailable(
            "user.name and user.email must be set in your git config "
            "(or git_user/git_email in the [dotstore] table)"
        ) from None
    if "@" not in email:
        raise SignatureUnavailable(f"user.email in git config is not an email address: {email!r}")
    return Signature(name, email)


def from_github(ctx: ConfigContext, client=None) -> Signature:
    """Use the GitHub identity cached in hosts.toml, asking the API if needed."""
    auth = AuthFile.load(ctx)
    if auth is None:
        raise SignatureUnavailable(
            "signature_source is 'github' but there is no cached GitHub login"
        )
    if auth.user_name and auth.user_email:
        return Signature(auth.user_name, auth.user_email)

    if client is None:
        from .github import GitHubClient
        client = GitHubClient(token=auth.token)
    user = client.get_auth_user()
    auth.user_name, auth.user_email = user.login, user.email
    auth.save(ctx)
    logger.debug("Cached GitHub identity {} <{}>", user.login, user.email)
    return Signature(user.login, user.email)


def resolve_signature(ctx: ConfigContext, config: Config, *, git_config=None,
                      client=None) -> Signature:
    settings = config.settings
    if settings.git_user and settings.git_email:
        return Signature(settings.git_user, settings.git_email)
    if settings.signature_source == "github":
        return from_github(ctx, client=client)
    return from_gitconfig(git_config)
