# misv - A simple proxying static file server
# License: MIT License
# Description: Serves files from a local directory. Files that are missing are
# fetched from an origin server over HTTPS, stored under the path the origin
# resolves them to, and served, so the directory becomes a mirror of the site.

import argparse
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from urllib.parse import quote

from flask import Flask, Response, redirect, request, send_from_directory
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from misv import __version__
from misv.cache import CachePopulator, CacheProber, CacheState
from misv.config import MirrorConfig, prepare_root
from misv.dialers import create_dialer, create_session
from misv.errors import ConfigError, MirrorError
from misv.origin import PATH_SAFE, OriginFetcher
from misv.paths import PathResolver, with_index

# Methods routed to the handler so that all of them get the same 405 answer
ROUTED_METHODS = ['GET', 'HEAD', 'POST', 'PUT', 'DELETE', 'PATCH', 'OPTIONS']

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
LOG_MAX_BYTES = 1024 * 1024


def setup_logging(log_dir, console=True):
    """
    Attach rotating access/error log files and a console handler to the ``misv`` logger.

    Args:
        log_dir (str): Directory holding access.log and error.log
        console (bool): Also log to the terminal through rich

    Raises:
        ConfigError: The log directory or its files cannot be opened
    """
    try:
        os.makedirs(log_dir, exist_ok=True)
        handler = RotatingFileHandler(os.path.join(log_dir, 'access.log'), maxBytes=LOG_MAX_BYTES, backupCount=1)
        error_handler = RotatingFileHandler(os.path.join(log_dir, 'error.log'), maxBytes=LOG_MAX_BYTES, backupCount=1)
    except OSError as e:
        raise ConfigError(f"Cannot open log directory {log_dir}: {e}") from e

    logger = logging.getLogger('misv')
    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)
    logger.addHandler(error_handler)

    if console:
        logger.addHandler(RichHandler(show_path=False))
    return logger


def method_not_allowed(error=None):
    return Response("only GET is allowed\n", status=405, headers={'Allow': 'GET'}, mimetype='text/plain')


def create_app(config, session=None):
    """
    Build the mirror server application.

    Args:
        config (MirrorConfig): Server configuration
        session: Session used for origin requests; built from the configured
            dialer when omitted

    Returns:
        Flask: The application
    """
    app = Flask('misv', static_folder=None)
    app.url_map.merge_slashes = False

    if session is None:
        session = create_session(create_dialer(config.proxy_address))

    resolver = PathResolver(config.root)
    prober = CacheProber()
    populator = CachePopulator(resolver)
    fetcher = OriginFetcher(config.origin, session, config.user_agent, config.xff)

    def serve(local_path):
        return send_from_directory(config.root, os.path.relpath(local_path, config.root))

    @app.route('/', defaults={'path': ''}, methods=ROUTED_METHODS, provide_automatic_options=False)
    @app.route('/<path:path>', methods=ROUTED_METHODS, provide_automatic_options=False)
    def mirror(path):
        if request.method != 'GET':
            return method_not_allowed()

        resolved = resolver.resolve(request.path)
        result = prober.probe(resolved)
        if result.state is CacheState.HIT:
            return serve(result.local_path)

        with fetcher.fetch(resolved.url_path) as outcome:
            local_path = populator.store(outcome.target_path, outcome.iter_body())

        if outcome.target_path != with_index(resolved.url_path):
            app.logger.info(f"Redirecting {resolved.url_path} to canonical path {outcome.canonical_path}")
            return redirect(quote(outcome.canonical_path, safe=PATH_SAFE), code=302)
        return serve(local_path)

    # Methods outside ROUTED_METHODS never reach the handler
    app.register_error_handler(405, method_not_allowed)

    @app.errorhandler(MirrorError)
    def handle_mirror_error(error):
        log = app.logger.warning if error.status < 500 else app.logger.error
        log(f"{error.kind} for {error.path or request.path}: {error}")
        return Response(
            f"{error}\n",
            status=error.status,
            headers={'X-Misv-Error': error.kind},
            mimetype='text/plain',
        )

    return app


def build_parser():
    parser = argparse.ArgumentParser(
        prog='misv',
        description=f"misv v{__version__} - A simple proxying static file server",
    )
    parser.add_argument("--bind", help="Bind address, host:port (required)")
    parser.add_argument("--origin", help="Origin server domain (required)")
    parser.add_argument("--root", help="Server root directory (defaults to ./<origin>)")
    parser.add_argument("--socks5", help="SOCKS5 proxy address, host:port")
    parser.add_argument("--ua", help="Custom User-Agent header")
    parser.add_argument("--xff", help="Custom X-Forwarded-For header")
    parser.add_argument("--log-dir", default='logs', help="Directory for access and error logs")
    return parser


def startup_panel(config):
    return Panel(
        f"[bold]Origin:[/bold] https://{config.origin}\n"
        f"[bold]Root:[/bold] {config.root}\n"
        f"[bold]Listen:[/bold] {config.bind}\n"
        f"[bold]SOCKS5:[/bold] {config.socks5 or 'direct'}",
        title=f"[bold cyan]misv v{__version__}[/bold cyan]",
        border_style="green",
        padding=(1, 2),
    )


def main(argv=None):
    """Parse the command line, prepare the root directory and run the server."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        logger = setup_logging(args.log_dir)
    except ConfigError as e:
        parser.print_usage(sys.stderr)
        print(f"misv: {e}", file=sys.stderr)
        return 2

    try:
        config = MirrorConfig.create(
            bind=args.bind,
            origin=args.origin,
            root=args.root,
            socks5=args.socks5,
            user_agent=args.ua,
            xff=args.xff,
            log_dir=args.log_dir,
        )
        prepare_root(config.root)
    except ConfigError as e:
        logger.error(str(e))
        parser.print_usage(sys.stderr)
        return 2

    Console().print(startup_panel(config))
    app = create_app(config)
    host, port = config.listen_address
    logger.info(f"Listen on {config.bind}")
    app.run(host=host, port=port, threaded=True)
    return 0


if __name__ == '__main__':
    sys.exit(main())
