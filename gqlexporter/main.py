"""Main entry point for the GraphQL Prometheus exporter."""
import argparse
import logging
import sys

import structlog

from gqlexporter.config import load_config
from gqlexporter.engine import ScrapeEngine
from gqlexporter.control_api import ExporterAPI


def build_formatter(log_format: str) -> logging.Formatter:
    """Formatter for the given log format; json renders one object per line."""
    if log_format == "json":
        return structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
            ],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.EventRenamer("message"),
                structlog.processors.JSONRenderer(),
            ],
        )

    return logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter(log_format))
    logging.basicConfig(level=level, handlers=[handler])

    # Reduce noise from some libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main(argv=None):
    """Main function."""
    parser = argparse.ArgumentParser(
        description="GraphQL exporter for Prometheus - expose GraphQL query results as gauges"
    )
    parser.add_argument(
        "--config",
        "-c",
        default=None,
        help="Path to configuration YAML file (environment variables override it)"
    )

    args = parser.parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info("GraphQL exporter for Prometheus")
    if args.config:
        logger.info(f"Configuration loaded from: {args.config}")
    if config.graphql.url:
        logger.info(f"Default GraphQL endpoint: {config.graphql.url}")
    logger.info(f"Query files directory: {config.graphql.queries_dir}")

    try:
        engine = ScrapeEngine(config)
    except OSError as e:
        logger.error(f"Failed to initialize scrape engine: {e}", exc_info=True)
        sys.exit(1)

    api = ExporterAPI(engine)

    scheme = "https" if config.server.tls_enabled else "http"
    logger.info(f"Listening on {scheme}://{config.server.bind_address}:{config.server.port}")
    try:
        api.run(
            host=config.server.bind_address,
            port=config.server.port,
            ssl_certfile=config.server.tls_cert_file,
            ssl_keyfile=config.server.tls_key_file
        )
    except Exception as e:
        logger.critical(f"Exporter API error: {e}", exc_info=True)
        engine.close()
        sys.exit(1)


if __name__ == "__main__":
    main()
