import argparse
import asyncio
import logging
import sys

from livesync.core.config_manager import ConfigManager, ConfigError, HttpOptions, WatchOptions
from livesync.core.logging_setup import configure_logging
from livesync.preview.live_server import LiveServer

logger = logging.getLogger("livesync")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Keep a browser page in sync with the files on disk")
    parser.add_argument("--config", default="livesync.json", help="JSON or YAML configuration file")
    parser.add_argument("--directory", help="source directory (overrides the config)")
    parser.add_argument("--host", help="websocket host")
    parser.add_argument("--port", type=int, help="websocket port")
    parser.add_argument("--http-port", type=int, help="serve the directory over HTTP on this port")
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace):
    config = ConfigManager(args.config).config
    if args.directory:
        config.directory = args.directory
    if args.host:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.http_port is not None:
        config.http = config.http or HttpOptions(root=config.directory or ".")
        config.http.port = args.http_port
    if args.verbose:
        config.verbose = True
    if config.directory and not config.watch:
        config.watch = {config.directory: WatchOptions()}
    return config


async def serve(config):
    server = LiveServer(config)
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.close()


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        config = load_config(args)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2
    configure_logging(config.log_level, config.verbose)

    try:
        asyncio.run(serve(config))
    except (KeyError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    except OSError as e:
        logger.error(f"Cannot listen: {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
