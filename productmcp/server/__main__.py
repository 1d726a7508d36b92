"""
Tool server entry point.

Run as ``productmcp-server`` or ``python -m productmcp.server``. Standard
output carries protocol replies only; logs go to standard error.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from productmcp import __version__
from productmcp.server.runtime import build_server, install_signal_handlers
from productmcp.validation.config import Config, ConfigError

logger = logging.getLogger("productmcp.server")


@click.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              help="Extra YAML config file")
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR (default from config)")
@click.version_option(__version__, prog_name="productmcp-server")
def main(config_path: Optional[Path], log_level: Optional[str]) -> None:
    """Serve the product tools over stdin/stdout, one JSON message per line."""
    try:
        config = Config.load(config_path)
        if log_level:
            config.set_override("logging.level", log_level)
        settings = config.merged
    except ConfigError as e:
        click.echo(f"productmcp-server: {e}", err=True)
        sys.exit(2)

    logging.basicConfig(
        stream=sys.stderr,
        level=settings.logging.level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    server = build_server(settings.catalog)
    install_signal_handlers(server)

    # Undecodable bytes become U+FFFD so the line is answered as a parse error.
    sys.stdin.reconfigure(encoding="utf-8", errors="replace")
    sys.stdout.reconfigure(encoding="utf-8")
    server.serve(sys.stdin, sys.stdout)


if __name__ == "__main__":
    main()
