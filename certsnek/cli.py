"""
Command line interface for certsnek.
"""

import os
import sys
import argparse
import logging

from .config import IssuanceConfig, load_config, save_config
from .errors import PipelineError
from .issuance import issue_certificate
from .responders import StandaloneResponder, WebrootResponder, port_available

logger = logging.getLogger(__name__)

PASSWORD_ENV = "CERTSNEK_KEYSTORE_PASSWORD"

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
VERBOSE_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(filename)s:%(lineno)d]: %(message)s"


def setup_logging(level: str = "INFO", verbose: bool = False):
    """
    Send log records of certsnek and the acme client to stderr.

    Args:
        level: Name of the logging level, unknown names fall back to INFO
        verbose: Debug output of certsnek and the acme client, with source locations
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(
        level=numeric_level,
        format=VERBOSE_LOG_FORMAT if verbose else LOG_FORMAT,
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    if verbose:
        for name in ("certsnek", "acme"):
            logging.getLogger(name).setLevel(logging.DEBUG)
    # Request-level noise, even in verbose mode
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args(argv=None):
    """
    Parse command line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="certsnek: obtain a Let's Encrypt certificate via the HTTP-01 challenge"
    )

    # Certificate options
    parser.add_argument(
        "--folder",
        default="certs",
        help="Directory holding keys, CSR, certificate and keystore (default: certs)"
    )
    parser.add_argument(
        "--domain",
        action="append",
        dest="domains",
        help="Domain name to include in the certificate (can be specified multiple times)"
    )
    parser.add_argument(
        "--key-size",
        type=int,
        default=2048,
        help="RSA key size for newly generated keys (default: 2048)"
    )
    parser.add_argument(
        "--keystore-password",
        help=f"Keystore password (default: ${PASSWORD_ENV}, else an insecure placeholder)"
    )

    # Certificate authority options
    parser.add_argument(
        "--staging",
        action="store_true",
        help="Use Let's Encrypt staging environment"
    )
    parser.add_argument(
        "--directory-url",
        help="ACME directory URL of another CA (overrides --staging)"
    )
    parser.add_argument(
        "--email",
        help="Email address for the ACME account"
    )

    # Challenge options
    parser.add_argument(
        "--responder",
        choices=["standalone", "webroot"],
        default="standalone",
        help="How HTTP-01 responses are served (default: standalone)"
    )
    parser.add_argument(
        "--webroot",
        help="Document root of an existing web server (webroot responder)"
    )
    parser.add_argument(
        "--http-port",
        type=int,
        default=80,
        help="Port of the standalone challenge server (default: 80)"
    )
    parser.add_argument(
        "--skip-port-check",
        action="store_true",
        help="Skip the port availability check (for setups with proxies/port forwarding)"
    )

    # Polling options
    parser.add_argument(
        "--poll-attempts",
        type=int,
        default=10,
        help="Status checks per challenge and per order (default: 10)"
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=3.0,
        help="Seconds between status checks (default: 3)"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Overall deadline in seconds for the polling loops"
    )

    # Logging options
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose output for debugging"
    )

    # Configuration file options
    parser.add_argument(
        "--config",
        help="Path to YAML configuration file"
    )
    parser.add_argument(
        "--save-config",
        help="Save configuration to YAML file and exit"
    )

    return parser.parse_args(argv)


def create_config_from_args(args) -> IssuanceConfig:
    """
    Create an IssuanceConfig object from parsed command line arguments.
    """
    return IssuanceConfig(
        folder=args.folder,
        domains=args.domains or [],
        key_size=args.key_size,
        keystore_password=args.keystore_password,
        staging=args.staging,
        directory_url=args.directory_url,
        email=args.email,
        responder=args.responder,
        webroot=args.webroot,
        http_port=args.http_port,
        poll_attempts=args.poll_attempts,
        poll_interval=args.poll_interval,
        timeout=args.timeout,
        log_level=args.log_level,
    )


def build_responder(config: IssuanceConfig):
    """Create the challenge responder selected by the configuration."""
    if config.responder == "webroot":
        return WebrootResponder(config.webroot)
    return StandaloneResponder(port=config.http_port)


def main(argv=None):
    """Main entry point for the CLI."""
    args = parse_args(argv)

    setup_logging(args.log_level, args.verbose)

    if args.config:
        try:
            config = load_config(args.config)
        except Exception as e:
            print(f"Error loading configuration file: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        config = create_config_from_args(args)

    if not config.keystore_password:
        config.keystore_password = os.environ.get(PASSWORD_ENV)

    if args.save_config:
        try:
            save_config(config, args.save_config)
            print(f"Configuration saved to {args.save_config}")
            sys.exit(0)
        except Exception as e:
            print(f"Error saving configuration: {e}", file=sys.stderr)
            sys.exit(1)

    try:
        config.validate()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    if config.responder == "standalone" and not args.skip_port_check and not port_available(config.http_port):
        print(f"Port {config.http_port} is already in use - the HTTP-01 challenge cannot be served",
              file=sys.stderr)
        sys.exit(1)

    responder = build_responder(config)
    try:
        if isinstance(responder, StandaloneResponder):
            with responder:
                context = issue_certificate(config, responder)
        else:
            context = issue_certificate(config, responder)
    except PipelineError as e:
        print(f"Certificate issuance failed in step {e.index} ({e.step}): {e.cause}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        sys.exit(1)

    files = context["files"]
    print(f"Certificate chain: {files.domain_chain_file}")
    print(f"Keystore: {context['keystore']}")


if __name__ == "__main__":
    main()
