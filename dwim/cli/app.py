from __future__ import annotations
import sys
from typing import List, Optional, Sequence

import typer

from dwim.core.utils.logging import configure

from .dispatch import run_cmd, retry_cmd
from .usage    import usage_cmd, pending_cmd
from .promote  import promote_cmd

COMMANDS = {"run", "retry", "usage", "promote", "pending"}
# global options that consume the following word
VALUE_OPTIONS = {"--log-level"}

app = typer.Typer(
    help="dwim – resolve free-form intents to commands, and learn from it",
    add_completion=False,
    no_args_is_help=True,
)


@app.callback()
def _root(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", envvar="DWIM_LOG_LEVEL", help="DEBUG, INFO, WARNING, ERROR"
    ),
):
    configure(log_level)


app.command(
    "run",
    context_settings={
        "allow_extra_args": True,
        "ignore_unknown_options": True,
        "allow_interspersed_args": False,
    },
)(run_cmd)
app.command("retry")(retry_cmd)
app.command("usage")(usage_cmd)
app.command("promote")(promote_cmd)
app.command("pending")(pending_cmd)


def route(argv: Sequence[str]) -> List[str]:
    """Intent-first routing: `dwim calendar delete x` → `dwim run calendar delete x`."""
    argv = list(argv)
    i = 0
    while i < len(argv) and argv[i].startswith("-"):
        if argv[i] in ("--help", "--"):
            return argv
        i += 2 if argv[i] in VALUE_OPTIONS else 1
    if i < len(argv) and argv[i] not in COMMANDS:
        argv.insert(i, "run")
    return argv


def main(argv: Sequence[str] | None = None) -> None:
    app(args=route(sys.argv[1:] if argv is None else argv), prog_name="dwim")


if __name__ == "__main__":
    main()
