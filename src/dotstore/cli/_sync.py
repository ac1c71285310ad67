"""Remote commands: push, check, update."""

from __future__ import annotations

import click

from .. import commands
from ..sync import MergeAnalysis
from ._helpers import (
    main,
    _config_context,
    _errors,
    _progress,
    _status,
)


def _print_check(result, name=None):
    """Print a check result the same way for ``check`` and ``entry check``."""
    if result.diff:
        click.echo(result.diff, nl=False)
    if result.up_to_date:
        click.echo("Config is up to date")
    else:
        click.echo(
            "Config is out of date! Run "
            + click.style("dotstore update", bold=True)
            + " to sync changes."
        )

    changes = result.changes
    if changes.config_changed:
        click.echo(f"Found changes in {click.style('config.toml', fg='yellow')}")
    if name is not None:
        styled = click.style(name, fg="yellow", bold=True)
        if name in changes.entries:
            click.echo(f"Found remote updates for entry {styled}")
        else:
            click.echo(f"No remote updates found for entry {styled}")
    elif changes.entries:
        n = len(changes.entries)
        names = ", ".join(click.style(e, fg="yellow") for e in sorted(changes.entries))
        click.echo(f"Found {n} entr{'y' if n == 1 else 'ies'} with remote updates:\n{names}")


# ---------------------------------------------------------------------------
# push
# ---------------------------------------------------------------------------

@main.command()
@click.pass_context
def push(ctx):
    """Commit edits to tracked files and push them to the remote."""
    with _errors():
        changed = commands.push(_config_context(ctx), progress=_progress(ctx))
    if changed:
        _status(ctx, f"Committed {len(changed)} changed files")
    _status(ctx, "Changes pushed successfully")


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------

@main.command()
@click.option("--print-diff", "-d", is_flag=True, help="Print the diff against the remote.")
@click.pass_context
def check(ctx, print_diff):
    """Check the remote for updates without changing anything."""
    with _errors():
        result = commands.check(_config_context(ctx), print_diff=print_diff,
                                progress=_progress(ctx))
    _print_check(result)


# ---------------------------------------------------------------------------
# update
# ---------------------------------------------------------------------------

_UPDATE_MESSAGES = {
    MergeAnalysis.NONE: "Already up to date",
    MergeAnalysis.UNBORN: "Already up to date",
    MergeAnalysis.UP_TO_DATE: "Already up to date",
    MergeAnalysis.FAST_FORWARD: "Changes pulled successfully",
    MergeAnalysis.NORMAL: "Changes merged successfully",
}


@main.command()
@click.option("--abort", is_flag=True,
              help="Throw away the conflict markers left by a stopped update.")
@click.pass_context
def update(ctx, abort):
    """Pull remote changes in and redeploy."""
    if abort:
        with _errors():
            aborted = commands.abort_update(_config_context(ctx), progress=_progress(ctx))
        click.echo("Unfinished merge aborted" if aborted else "No unfinished merge to abort")
        return
    with _errors():
        result = commands.update(_config_context(ctx), progress=_progress(ctx))
    click.echo(_UPDATE_MESSAGES[result.analysis])
