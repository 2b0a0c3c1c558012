import argparse
import sys
import json
import logging
from pathlib import Path
from measurement_client.logger import logger, set_level
from measurement_client.config import load_config
from measurement_client.exceptions import FarolError
from visualization.report import format_result_line, render_pdf
from web.app import build_aggregator, create_app
from web.storage import MemStorage


def setup_logging(log_level: str) -> None:
    set_level(log_level)
    logging.getLogger().setLevel(logger.level)


def create_parser():
    parser = argparse.ArgumentParser(
        prog="farol",
        description='Farol Hybrid Connectivity Diagnostics (RIPE Atlas + Globalping)',
        epilog='Use "farol <command> --help" for command-specific options.'
    )

    # Global options
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='INFO',
        help='Set logging level (default: INFO)'
    )
    parser.add_argument(
        '--config',
        default=None,
        help='Configuration file path (default: measurement_client/config.yaml or $FAROL_CONFIG)'
    )

    subparsers = parser.add_subparsers(dest='command', required=True, help='Available commands')

    diagnose_parser = subparsers.add_parser('diagnose', help='Run one diagnostic for a domain')
    diagnose_parser.add_argument('domain', help='Domain to diagnose, e.g. example.com')
    diagnose_parser.add_argument(
        '--scope',
        default='GLOBAL',
        choices=['GLOBAL', 'BR', 'AWS', 'AZURE'],
        help='Probe scope (default: GLOBAL)'
    )
    diagnose_parser.add_argument(
        '--limit',
        type=int,
        default=None,
        help='Maximum number of probes across both providers (default from config)'
    )
    diagnose_parser.add_argument('--json', dest='json_path', help='Write the diagnostic as JSON to this file')
    diagnose_parser.add_argument('--pdf', dest='pdf_path', help='Write the PDF report to this file')

    serve_parser = subparsers.add_parser('serve', help='Run the web dashboard and API')
    serve_parser.add_argument('--host', default=None, help='Bind address (default from config)')
    serve_parser.add_argument('--port', type=int, default=None, help='Port (default from config)')
    serve_parser.add_argument('--debug', action='store_true', help='Run Flask in debug mode')

    return parser


# Runs the aggregator once and reports the ranked observations
def handle_diagnose_command(args, config):
    logger.info(f"=== Diagnosing {args.domain} ===")

    store = MemStorage()
    aggregator = build_aggregator(config, store)
    limit = args.limit if args.limit is not None else config["limits"]["default_probes"]

    diagnostic = aggregator.run(args.domain, args.scope, limit)

    logger.info(f"Summary: {diagnostic['summary']}")
    for name, outcome in diagnostic["providers"].items():
        detail = f" ({outcome['error']})" if outcome.get("error") else ""
        logger.info(f"  {name}: {outcome['state']}, {outcome['count']} observations{detail}")
    for i, result in enumerate(diagnostic["results"], start=1):
        logger.info("  " + format_result_line(i, result))

    if args.json_path:
        with open(args.json_path, "w") as f:
            json.dump(diagnostic, f, indent=2)
        logger.info(f"Diagnostic saved to {args.json_path}")

    if args.pdf_path:
        pdf_path = Path(args.pdf_path)
        if pdf_path.suffix.lower() != ".pdf":
            pdf_path = pdf_path.with_suffix(".pdf")
        pdf_path.write_bytes(render_pdf(diagnostic, thresholds=config.get("classification")))
        logger.info(f"PDF report saved to {pdf_path}")

    return diagnostic


def handle_serve_command(args, config):
    server = config.get("server", {})
    host = args.host or server.get("host", "0.0.0.0")
    port = args.port or int(server.get("port", 5000))

    logger.info(f"=== Serving dashboard on {host}:{port} ===")
    app = create_app(config)
    app.run(host=host, port=port, debug=args.debug)


# Main entry point for Farol
def main(argv=None):
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        setup_logging(args.log_level)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    logger.info(f"Farol Connectivity Diagnostics - Command: {args.command}")

    try:
        config = load_config(args.config)

        if args.command == 'diagnose':
            handle_diagnose_command(args, config)
        elif args.command == 'serve':
            handle_serve_command(args, config)
        else:
            parser.print_help()
            sys.exit(1)

        logger.info("Command completed successfully")

    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        sys.exit(1)
    except FarolError as e:
        logger.error(f"Command failed: {e.message}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        if args.log_level == 'DEBUG':
            logger.exception("Full traceback:")
        sys.exit(1)


if __name__ == "__main__":
    main()
