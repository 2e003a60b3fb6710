import logging
from pathlib import Path
from typing import Optional

import click

from yarnlauncher.config import InvalidSettings, LauncherConfig, Settings
from yarnlauncher.util import SigHandler, config_root_logger

logger = logging.getLogger(__name__)

settings_option = click.option(
    "-s",
    "--settings",
    "settings_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Settings YAML file (default: $YARN_LAUNCHER_SETTINGS_PATH or ./settings.yml)",
)


@click.command()
@settings_option
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), default=None)
@click.option("--check-period", type=float, default=1.0, help="Seconds between checks for exit")
def launch(settings_path: Optional[Path], log_file: Optional[Path], check_period: float) -> None:
    """
    Launch the application on YARN and monitor it until it completes

    If an application with the same name is already running, the launcher
    reconnects to it instead of submitting a new one. SIGINT/SIGTERM stop the
    launcher; the application itself is left running when detach_on_exit is set.
    """
    conf = LauncherConfig(settings_path)
    log_info = conf.enable_logging("launcher", filename=log_file)
    click.echo(f"Logging to {log_info['filename']}")

    launcher = conf.build_launcher()
    with SigHandler():
        try:
            launcher.launch()
            while not SigHandler.wait_until_exit(timeout=check_period):
                if launcher.wait_until_stopped(timeout=0):
                    break
        finally:
            try:
                launcher.stop()
            finally:
                launcher.send_shutdown_notification(None)
    logger.info(f"Launcher exited in state {launcher.state.value}")


@click.group()
def config() -> None:
    """
    Inspect launcher settings
    """
    pass


@config.command()
@settings_option
def dump(settings_path: Optional[Path]) -> None:
    """
    Print the effective settings as YAML

    Without a settings file, prints the defaults.
    """
    config_root_logger()
    try:
        settings = LauncherConfig(settings_path).settings
    except FileNotFoundError:
        settings = Settings()
    except InvalidSettings as exc:
        raise click.BadParameter(str(exc))
    click.echo(settings.dump_yaml())
