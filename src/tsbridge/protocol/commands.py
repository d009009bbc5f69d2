"""Static command classification.

tsserver answers most commands with exactly one response carrying
``request_seq``. The commands below never get a direct response; their
effect is either silent or reported later through events. Adding a
command here (or to ``protocol.fire_and_forget`` in config) is all it
takes to stop waiting for a reply to it.
"""

from __future__ import annotations

from collections.abc import Iterable

FIRE_AND_FORGET_COMMANDS: frozenset[str] = frozenset(
    {
        "open",
        "close",
        "change",
        "saveto",
        "reloadProjects",
        "geterr",
        "geterrForProject",
        "exit",
    }
)

EXIT_COMMAND = "exit"

# Events
DEFAULT_READY_EVENT = "typingsInstallerPid"
REQUEST_COMPLETED_EVENT = "requestCompleted"
DIAGNOSTIC_EVENTS: frozenset[str] = frozenset({"syntaxDiag", "semanticDiag", "suggestionDiag"})


def fire_and_forget_table(extra: Iterable[str] = ()) -> frozenset[str]:
    """Return the fire-and-forget set extended with configured names."""
    return FIRE_AND_FORGET_COMMANDS | frozenset(extra)
