import argparse
import logging
import sys

from httpdump.config import ConfigError, build_config
from httpdump.handler import DumpHandler
from httpdump.server import ThreadedHTTPServer as Server, create_ssl_context

logger = logging.getLogger("httpdump")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Dump incoming HTTP requests and reply with a canned response")
    parser.add_argument("--response", type=str, default="", help="the HTTP response body to return")
    parser.add_argument("--response-file", type=str, default="", help="file containing the HTTP response body to return")
    parser.add_argument("--response-code", type=int, default=200, help="the HTTP response code to return")
    parser.add_argument("--redirect", type=str, default="", help="URL to redirect users to (forces 302)")
    parser.add_argument("--tls", action="store_true", help="enable TLS (requires --tls-key and --tls-cert)")
    parser.add_argument("--tls-key", type=str, default="", help="path to TLS key file")
    parser.add_argument("--tls-cert", type=str, default="", help="path to TLS certificate file")
    parser.add_argument("--ip", type=str, default="0.0.0.0", help="IP to host the web service on")
    parser.add_argument("--port", type=int, default=9999, help="TCP port to host the web service on")
    parser.add_argument("--workers", "-w", type=int, default=4, help="number of worker threads")
    parser.add_argument("--debug", "-D", action="store_true", help="enable debug logging")
    return parser


def fatal(parser: argparse.ArgumentParser, message: str) -> None:
    print("Usage:")
    parser.print_help()
    print("")
    logger.critical("Error: %s", message)
    sys.exit(1)


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = build_config(
            response=args.response,
            response_file=args.response_file,
            response_code=args.response_code,
            redirect=args.redirect,
            tls=args.tls,
            tls_key=args.tls_key,
            tls_cert=args.tls_cert,
            host=args.ip,
            port=args.port,
            workers=args.workers,
            debug=args.debug,
        )
    except ConfigError as e:
        fatal(parser, str(e))

    ssl_context = None
    if config.tls:
        try:
            ssl_context = create_ssl_context(config.tls_cert, config.tls_key)
        except OSError as e:
            logger.critical("Error: unable to load TLS certificate/key: %s", e)
            sys.exit(1)

    server = Server(config, DumpHandler(config), ssl_context=ssl_context)
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
