"""
splithttp CLI entry point.

Usage:
    splithttp [OPTIONS] COMMAND [ARGS]...

Commands:
    serve       Run the tunnel server
    gen-secret  Generate a new client secret
    version     Show version information
"""

import uuid
from typing import Annotated

import typer

from splithttp.cli.output import console, print_error, print_success
from splithttp.models.enums import LogLevel
from splithttp.server.config import config

app = typer.Typer(
    name="splithttp",
    help="TCP tunnel over split HTTP requests",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@app.command("serve")
def serve(
    secret: Annotated[
        str,
        typer.Option(
            "--secret", "-s", help="Client secret (UUID)", envvar="SPLITHTTP_SECRET"
        ),
    ],
    host: Annotated[
        str,
        typer.Option(
            "--host",
            "-H",
            help="Bind address",
            envvar="SPLITHTTP_HOST",
        ),
    ] = config.BIND_IP,
    port: Annotated[
        int,
        typer.Option(
            "--port",
            "-P",
            help="Bind port",
            envvar=["SPLITHTTP_PORT", "PORT"],
        ),
    ] = config.PORT,
    path: Annotated[
        str,
        typer.Option(
            "--path",
            help="Base path of tunnel requests",
            envvar="SPLITHTTP_PATH",
        ),
    ] = config.XHTTP_PATH,
    max_chunk_kib: Annotated[
        int,
        typer.Option(
            "--max-chunk-kib",
            help="Largest uplink chunk in KiB",
            envvar="SPLITHTTP_MAX_CHUNK_KIB",
        ),
    ] = config.MAX_CHUNK_KIB,
    max_buffered_chunks: Annotated[
        int,
        typer.Option(
            "--max-buffered-chunks",
            help="Uplink chunks buffered per session",
            envvar="SPLITHTTP_MAX_BUFFERED_CHUNKS",
        ),
    ] = config.MAX_BUFFERED_CHUNKS,
    idle_timeout: Annotated[
        float,
        typer.Option(
            "--idle-timeout",
            help="Idle session timeout in seconds",
            envvar="SPLITHTTP_IDLE_TIMEOUT",
        ),
    ] = config.SESSION_IDLE_TIMEOUT_SECONDS,
    bootstrap_timeout: Annotated[
        float,
        typer.Option(
            "--bootstrap-timeout",
            help="Timeout for sessions to establish, in seconds",
            envvar="SPLITHTTP_BOOTSTRAP_TIMEOUT",
        ),
    ] = config.SESSION_BOOTSTRAP_TIMEOUT_SECONDS,
    log_level: Annotated[
        LogLevel,
        typer.Option(
            "--log-level",
            "-l",
            help="Logging verbosity",
            envvar="SPLITHTTP_LOG_LEVEL",
        ),
    ] = config.LOG_LEVEL,
    log_file: Annotated[
        str,
        typer.Option(
            "--log-file",
            help="Also log to this file",
            envvar="SPLITHTTP_LOG_FILE",
        ),
    ] = config.LOG_FILE,
):
    """Run the tunnel server."""
    from splithttp.server.app import run

    config.SECRET = secret
    config.BIND_IP = host
    config.PORT = port
    config.XHTTP_PATH = path
    config.MAX_CHUNK_KIB = max_chunk_kib
    config.MAX_BUFFERED_CHUNKS = max_buffered_chunks
    config.SESSION_IDLE_TIMEOUT_SECONDS = idle_timeout
    config.SESSION_BOOTSTRAP_TIMEOUT_SECONDS = bootstrap_timeout
    config.LOG_LEVEL = log_level
    config.LOG_FILE = log_file

    try:
        config.validate()
    except ValueError as e:
        print_error(f"Invalid configuration: {e}")
        raise typer.Exit(1)

    print_success(
        f"Serving on {config.BIND_IP}:{config.PORT}{config.get_base_path() or '/'}"
    )
    run(config)


@app.command("gen-secret")
def gen_secret():
    """Generate a new random client secret."""
    console.print(str(uuid.uuid4()))


@app.command("version")
def version():
    """Show version information."""
    from splithttp import __version__

    console.print(f"splithttp v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
