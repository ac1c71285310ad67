"""Basic commands: init, list, redeploy."""

from __future__ import annotations

import click

from .. import commands
from ..config import Settings
from ..github import login
from ._helpers import (
    main,
    _config_context,
    _errors,
    _progress,
    _status,
)


def _on_device_code(code):
    click.echo(
        f"Open {code.verification_uri} in your browser and enter {code.user_code}",
        err=True,
    )


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@main.command()
@click.option("--clone", "clone_url", metavar="URL",
              help="Clone an existing dotstore repository and deploy it.")
@click.option("--remote", "remote_url", metavar="URL",
              help="Use URL (an empty repository) as the remote.")
@click.option("--github", "create_github", is_flag=True,
              help="Create a private GitHub repository to use as the remote.")
@click.option("--protocol", type=click.Choice(["ssh", "https"]), default="ssh",
              show_default=True, help="Protocol for the created GitHub repository.")
@click.option("--signature-source", type=click.Choice(["gitconfig", "github"]),
              default="gitconfig", show_default=True,
              help="Where commit author name and email come from.")
@click.option("-f", "--force", is_flag=True, help="Overwrite an existing config file.")
@click.pass_context
def init(ctx, clone_url, remote_url, create_github, protocol, signature_source, force):
    """Set up the config directory and its remote."""
    if [bool(clone_url), bool(remote_url), create_github].count(True) > 1:
        raise click.UsageError("Use only one of --clone, --remote and --github.")
    cfg = _config_context(ctx)
    progress = _progress(ctx)
    with _errors():
        if clone_url is not None:
            commands.init(cfg, clone_url=clone_url, force=force, progress=progress)
            _status(ctx, f"Cloned {clone_url} into {cfg.config_dir}")
            return

        client = None
        if create_github or signature_source == "github":
            client = login(cfg, _on_device_code)
        if create_github:
            repo = client.create_repo("dotstore-config", "My dotstore config", private=True)
            remote_url = repo["ssh_url"] if protocol == "ssh" else repo["clone_url"]
            click.echo(f"Created repository {repo.get('full_name', remote_url)}")
        elif remote_url is None:
            remote_url = click.prompt("Enter the URL of your remote repository")

        settings = Settings(
            git_protocol="https" if remote_url.startswith("https://") else "ssh",
            signature_source=signature_source,
        )
        commands.init(cfg, remote_url=remote_url, force=force, settings=settings,
                      progress=progress)
    _status(ctx, f"Initialized {cfg.config_dir}")


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------

@main.command("list")
@click.pass_context
def list_cmd(ctx):
    """List all entries."""
    with _errors():
        entries = commands.list_entries(_config_context(ctx))
    for entry in entries:
        name = click.style(entry.name, fg="yellow", bold=True)
        if entry.target_dir is None:
            click.echo(f"{name}: uninitialized")
        else:
            click.echo(f"{name}: {len(entry.files)} files\n↳ {entry.target_dir}")


# ---------------------------------------------------------------------------
# redeploy
# ---------------------------------------------------------------------------

@main.command()
@click.pass_context
def redeploy(ctx):
    """Remove and recreate every symlink."""
    with _errors():
        report = commands.redeploy(_config_context(ctx), progress=_progress(ctx))
    _status(ctx, f"Linked {len(report.linked)} files, {len(report.unchanged)} unchanged")
