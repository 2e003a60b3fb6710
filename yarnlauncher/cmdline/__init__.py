import logging
import os
import sys

import click

from yarnlauncher import __version__
from yarnlauncher.cmdline import launch

logger = logging.getLogger("yarnlauncher.cmdline")


@click.group()
@click.version_option(version=__version__)
def _main() -> None:
    """
    YARN application launcher.

    Submits an application to a YARN cluster (or reconnects to a running
    instance) and monitors it until completion. Use `--help` on each
    subcommand for details.
    """
    pass


def main() -> None:
    try:
        _main()
    except Exception as e:
        if os.environ.get("YARN_LAUNCHER_CLI_TRACEBACK"):
            raise
        click.echo(f"{str(e).strip()}")
        click.echo("    [Export YARN_LAUNCHER_CLI_TRACEBACK=1 to see a full stack trace]")
        sys.exit(1)


LOAD_COMMANDS = [
    launch.launch,
    launch.config,
]

for cmd in LOAD_COMMANDS:
    _main.add_command(cmd)

if __name__ == "__main__":
    main()
