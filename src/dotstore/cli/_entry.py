"""The ``entry`` command group: create, delete, show, check, add-files, remove-files."""

from __future__ import annotations

import click

from .. import commands
from ._helpers import (
    main,
    _config_context,
    _errors,
    _no_confirm_option,
    _no_replace_option,
    _progress,
    _push_option,
    _status,
)
from ._sync import _print_check


@main.group()
def entry():
    """Create, inspect and change entries."""


# ---------------------------------------------------------------------------
# create / add-files
# ---------------------------------------------------------------------------

@entry.command()
@click.argument("name")
@click.argument("files", nargs=-1, type=click.Path())
@_push_option
@click.pass_context
def create(ctx, name, files, push):
    """Create entry NAME, optionally tracking FILES right away."""
    with _errors():
        result = commands.new_entry(_config_context(ctx), name, files, push=push,
                                    progress=_progress(ctx))
    _status(ctx, f"Created entry {name} with {len(result.added)} files")


@entry.command("add-files")
@click.argument("name")
@click.argument("files", nargs=-1, required=True, type=click.Path())
@_push_option
@click.pass_context
def add_files(ctx, name, files, push):
    """Track FILES (files or directories) in entry NAME."""
    with _errors():
        result = commands.add_files(_config_context(ctx), name, files, push=push,
                                    progress=_progress(ctx))
    _status(ctx, f"Added {len(result.added)} files to {name}")


# ---------------------------------------------------------------------------
# remove-files / delete
# ---------------------------------------------------------------------------

@entry.command("remove-files")
@click.argument("name")
@click.argument("files", nargs=-1, required=True, type=click.Path())
@_no_confirm_option
@_no_replace_option
@_push_option
@click.pass_context
def remove_files(ctx, name, files, no_confirm, no_replace, push):
    """Stop tracking FILES in entry NAME.

    FILES may be given as their deployed paths or as paths inside the
    config directory.  Unless -f is given a plain copy replaces each symlink.
    """
    if not no_confirm:
        click.confirm(f"Remove {len(files)} files from {name}?", abort=True)
    with _errors():
        removed = commands.remove_files(
            _config_context(ctx), name, files, replace_files=not no_replace,
            push=push, progress=_progress(ctx),
        )
    _status(ctx, f"Removed {len(removed)} files from {name}")


@entry.command()
@click.argument("name")
@_no_confirm_option
@_no_replace_option
@_push_option
@click.pass_context
def delete(ctx, name, no_confirm, no_replace, push):
    """Delete entry NAME.

    Files are put back at their original locations as plain copies unless
    -f is given.
    """
    cfg = _config_context(ctx)
    with _errors():
        target = commands.show_entry(cfg, name)
    if not no_confirm:
        click.confirm(
            f"Delete entry {name} with {len(target.files)} files?", abort=True,
        )
    with _errors():
        commands.delete_entry(cfg, name, replace_files=not no_replace, push=push,
                              progress=_progress(ctx))
    _status(ctx, f"Deleted entry {name}")


# ---------------------------------------------------------------------------
# show / check
# ---------------------------------------------------------------------------

@entry.command()
@click.argument("name")
@click.pass_context
def show(ctx, name):
    """Show the files tracked by entry NAME."""
    with _errors():
        target = commands.show_entry(_config_context(ctx), name)
    for line in commands.format_tree(target):
        click.echo(line)


@entry.command("check")
@click.argument("name")
@click.option("--print-diff", "-d", is_flag=True, help="Print the diff against the remote.")
@click.pass_context
def check_entry(ctx, name, print_diff):
    """Check the remote for updates to entry NAME."""
    with _errors():
        result = commands.check(_config_context(ctx), name, print_diff=print_diff,
                                progress=_progress(ctx))
    _print_check(result, name)
