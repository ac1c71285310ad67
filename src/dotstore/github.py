"""Minimal GitHub client: device-flow login, repository creation, identity."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from typing import Callable

import requests
from loguru import logger

from .config import AuthFile, ConfigContext
from .exceptions import GitHubError

GITHUB_URL = "https://github.com"
API_URL = "https://api.github.com"
DEFAULT_SCOPES = ("public_repo", "repo")
CLIENT_ID_ENV = "DOTSTORE_GITHUB_CLIENT_ID"
SLOW_DOWN_STEP = 5


@dataclass
class DeviceCode:
    device_code: str
    user_code: str
    verification_uri: str
    interval: int = 5
    expires_in: int = 900


@dataclass
class Token:
    access_token: str
    token_type: str = "bearer"
    scopes: list[str] = field(default_factory=list)


@dataclass
class GitHubUser:
    login: str
    email: str


class GitHubClient:
    def __init__(self, token: str | None = None, *, session: requests.Session | None = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.token = token
        self._session = session
        self._sleep = sleep

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = self._create_session()
        return self._session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers["User-Agent"] = "dotstore"
        return session

    def _request(self, method: str, url: str, *, auth: bool = True, **kwargs):
        headers = kwargs.pop("headers", {})
        if url.startswith(API_URL):
            headers.setdefault("Accept", "application/vnd.github+json")
        else:
            headers.setdefault("Accept", "application/json")
        if auth:
            if not self.token:
                raise GitHubError("Not logged in to GitHub")
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = self.session.request(
                method, url, headers=headers, timeout=(10, 60), **kwargs,
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            raise GitHubError(f"{method} {url} failed: {exc}") from exc

    # -- device flow --------------------------------------------------------

    def request_device_code(self, client_id: str,
                            scopes=DEFAULT_SCOPES) -> DeviceCode:
        data = self._request(
            "POST", f"{GITHUB_URL}/login/device/code", auth=False,
            data={"client_id": client_id, "scope": " ".join(scopes)},
        )
        try:
            return DeviceCode(
                device_code=data["device_code"],
                user_code=data["user_code"],
                verification_uri=data["verification_uri"],
                interval=int(data.get("interval", 5)),
                expires_in=int(data.get("expires_in", 900)),
            )
        except (KeyError, TypeError) as exc:
            raise GitHubError(f"Unexpected device code response: {data!r}") from exc

    def poll_for_token(self, client_id: str, code: DeviceCode) -> Token:
        """Poll until the user has authorized the device code.

        ``slow_down`` answers lengthen the interval by five seconds for the
        rest of the polling.
        """
        interval = code.interval
        while True:
            self._sleep(interval)
            data = self._request(
                "POST", f"{GITHUB_URL}/login/oauth/access_token", auth=False,
                data={
                    "client_id": client_id,
                    "device_code": code.device_code,
                    "grant_type": "urn:ietf:params:oauth:grant-type:device_code",
                },
            )
            error = data.get("error")
            if error is None:
                break
            if error == "authorization_pending":
                continue
            if error == "slow_down":
                interval += SLOW_DOWN_STEP
                logger.debug("GitHub asked to slow down; polling every {}s", interval)
                continue
            raise GitHubError(
                f"GitHub login failed: {data.get('error_description', error)}"
            )

        if "access_token" not in data:
            raise GitHubError(f"Unexpected token response: {data!r}")
        scope = data.get("scope", "")
        return Token(
            access_token=data["access_token"],
            token_type=data.get("token_type", "bearer"),
            scopes=[s for s in scope.split(",") if s],
        )

    def authenticate(self, client_id: str, on_code: Callable[[DeviceCode], None],
                     scopes=DEFAULT_SCOPES) -> Token:
        code = self.request_device_code(client_id, scopes)
        on_code(code)
        token = self.poll_for_token(client_id, code)
        self.token = token.access_token
        return token

    # -- API ----------------------------------------------------------------

    def get_auth_user(self) -> GitHubUser:
        """Login name plus the first verified public email address."""
        user = self._request("GET", f"{API_URL}/user")
        emails = self._request("GET", f"{API_URL}/user/public_emails")
        for e in emails:
            if e.get("verified") and e.get("visibility") == "public":
                return GitHubUser(login=user["login"], email=e["email"])
        raise GitHubError(
            "No verified public email on your GitHub account; set git_user and "
            "git_email in the [dotstore] table instead"
        )

    def create_repo(self, name: str, description: str = "",
                    private: bool = True) -> dict:
        repo = self._request(
            "POST", f"{API_URL}/user/repos",
            json={"name": name, "description": description,
                  "private": private, "is_template": False},
        )
        logger.debug("Created GitHub repository {}", repo.get("full_name", name))
        return repo


def client_id_from_env() -> str:
    client_id = os.environ.get(CLIENT_ID_ENV)
    if not client_id:
        raise GitHubError(f"Set {CLIENT_ID_ENV} to the OAuth app's client id")
    return client_id


def login(ctx: ConfigContext, on_code: Callable[[DeviceCode], None], *,
          client: GitHubClient | None = None,
          client_id: str | None = None) -> GitHubClient:
    """Return a client holding a token, reusing the one cached in hosts.toml."""
    client = client or GitHubClient()
    auth = AuthFile.load(ctx)
    if auth is not None:
        client.token = auth.token
        return client

    token = client.authenticate(client_id or client_id_from_env(), on_code)
    user = client.get_auth_user()
    AuthFile(
        token=token.access_token,
        token_type=token.token_type,
        scopes=token.scopes,
        user_name=user.login,
        user_email=user.email,
    ).save(ctx)
    return client
