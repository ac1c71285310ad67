"""Shared helpers, option decorators, and the main CLI group."""

from __future__ import annotations

from contextlib import contextmanager

import click

from ..config import ConfigContext
from ..exceptions import DotstoreError
from ..log import configure_logging
from ..progress import NullProgress, ProgressSink


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _status(ctx, msg):
    """Emit a status message to stderr when verbose mode (-v) is on."""
    if ctx.obj.get("verbose"):
        click.echo(msg, err=True)


def _config_context(ctx) -> ConfigContext:
    return ConfigContext.from_env(ctx.obj.get("config_dir"))


@contextmanager
def _errors():
    """Turn dotstore errors into a ClickException at the command boundary."""
    try:
        yield
    except DotstoreError as exc:
        raise click.ClickException(str(exc)) from exc


class _EchoProgress(ProgressSink):
    """Progress on stderr, redrawing transfer counters in place."""

    def on_message(self, text):
        click.echo(f"\r\033[K{text}", err=True)

    def on_transfer(self, received, total):
        done = ", done." if received >= total else ""
        click.echo(f"\r\033[KReceiving objects: {received}/{total}{done}",
                   nl=bool(done), err=True)

    def on_push(self, current, total):
        done = ", done." if current >= total else ""
        click.echo(f"\r\033[KWriting objects: {current}/{total}{done}",
                   nl=bool(done), err=True)

    def on_ref_update(self, ref, old, new):
        old = old[:7] if old else "0000000"
        click.echo(f"\r\033[K{ref}: {old} -> {new[:7] if new else 'deleted'}", err=True)


def _progress(ctx) -> ProgressSink:
    """Return a stderr progress sink if verbose mode is on."""
    if not ctx.obj.get("verbose"):
        return NullProgress()
    return _EchoProgress()


def _store_dir(ctx, param, value):
    """Click callback: store --dir value in the context."""
    ctx.ensure_object(dict)
    if value is not None:
        ctx.obj["config_dir"] = value
    return value


def _push_option(f):
    return click.option(
        "--push", is_flag=True, default=False,
        help="Push the commit to the remote afterwards.",
    )(f)


def _no_confirm_option(f):
    return click.option(
        "--no-confirm", "-y", "no_confirm", is_flag=True, default=False,
        help="Do not ask for confirmation.",
    )(f)


def _no_replace_option(f):
    return click.option(
        "--no-replace-files", "-f", "no_replace", is_flag=True, default=False,
        help="Do not put plain copies back where the symlinks were; just delete.",
    )(f)


# ---------------------------------------------------------------------------
# Main group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--dir", "-C", "config_dir", type=click.Path(file_okay=False),
              envvar="DOTSTORE_DIR",
              help="Config directory (or set DOTSTORE_DIR; default ~/.config/dotstore).",
              expose_value=False, callback=_store_dir, is_eager=True)
@click.option("-v", "--verbose", is_flag=True, help="Verbose output on stderr.")
@click.pass_context
def main(ctx, verbose):
    """dotstore: keep your dotfiles in git, symlinked into place.

    Files are grouped into named entries.  Each entry's files are copied
    into the config directory (a git repository) and replaced by symlinks
    pointing at the copies.

    \b
    Quick start:
      dotstore init --remote git@github.com:you/dotfiles.git
      dotstore entry create nvim ~/.config/nvim
      dotstore push

    \b
    On another machine:
      dotstore init --clone git@github.com:you/dotfiles.git
      dotstore update
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    configure_logging(verbose)
