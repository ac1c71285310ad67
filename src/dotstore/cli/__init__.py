"""dotstore CLI: track dotfiles in git and symlink them into place."""

from ._helpers import main  # noqa: F401 (entry point)

# Import command modules to register Click commands with the main group.
from . import _basic, _entry, _sync  # noqa: F401
