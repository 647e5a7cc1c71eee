"""
Command-line interface for ct-monitor.

Commands:
- run: Perform one polling pass over all configured domains
- config: Configuration management (show, init, validate)
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Optional

import idna
from dotenv import load_dotenv

from . import __version__
from .audit_logger import AuditLogger
from .certspotter_client import CertSpotterClient
from .config import (
    CERTSPOTTER_TOKEN_ENV,
    DEFAULT_BODY_TEMPLATE,
    DEFAULT_CERTSPOTTER_ENDPOINT,
    DEFAULT_CONFIG_FILE,
    DEFAULT_FILTER_START_TIMEOUT,
    DEFAULT_POSITION_FILE,
    DEFAULT_SUBJECT_TEMPLATE,
    AlertConfig,
    AmazonSESConfig,
    FilterConfig,
    LoggingConfig,
    MailTemplate,
    MetricsConfig,
    MonitorConfig,
    PositionConfig,
    SendgridConfig,
    SMTPConfig,
)
from .enums import LogLevel
from .exceptions import ConfigurationError, PersistenceError
from .mailers import parse_mailer_kind
from .models import DomainDescriptor
from .orchestrator import MonitorOrchestrator
from .watermark_store import WatermarkStore


def canonicalize_domain(name: str) -> str:
    """
    Lowercase and IDNA-encode a configured domain name.

    Raises:
        ConfigurationError: If the name is empty or not a valid IDNA name
    """
    stripped = str(name).strip().rstrip(".")
    if not stripped:
        raise ConfigurationError(code="invalid_domain", message="Empty domain name")
    try:
        return idna.encode(stripped, uts46=True).decode("ascii")
    except idna.IDNAError as e:
        raise ConfigurationError(
            code="invalid_domain",
            message=f"Invalid domain name {name!r}: {e}",
            details={"domain": name},
        )


def _section(data: dict, key: str) -> dict:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(
            code="invalid_config",
            message=f"Section {key!r} must be an object",
        )
    return value


def parse_domains(raw_domains: Any) -> list[DomainDescriptor]:
    """Parse the ``domains`` list of the configuration file."""
    if not isinstance(raw_domains, list):
        raise ConfigurationError(code="invalid_config", message="'domains' must be a list")

    domains = []
    seen = set()
    for entry in raw_domains:
        if isinstance(entry, str):
            entry = {"name": entry}
        if not isinstance(entry, dict) or "name" not in entry:
            raise ConfigurationError(
                code="invalid_config",
                message=f"Invalid domain entry: {entry!r}",
            )

        name = canonicalize_domain(entry["name"])
        if name in seen:
            continue
        seen.add(name)

        mailer = entry.get("mailer")
        domains.append(DomainDescriptor(
            name=name,
            match_wildcards=bool(entry.get("match_wildcards", False)),
            include_subdomains=bool(entry.get("include_subdomains", False)),
            mailer=parse_mailer_kind(mailer) if mailer else None,
        ))
    return domains


def config_from_dict(data: dict) -> MonitorConfig:
    """
    Build a MonitorConfig from parsed JSON.

    The API token falls back to the CERTSPOTTER_TOKEN environment variable.

    Raises:
        ConfigurationError: If the data is invalid
    """
    if not isinstance(data, dict):
        raise ConfigurationError(code="invalid_config", message="Configuration must be an object")

    try:
        alert_data = _section(data, "alert_config")
        position_data = _section(data, "position_config")
        filter_data = _section(data, "filter_config")
        template_data = _section(data, "mail_template")
        smtp_data = _section(data, "smtp")
        ses_data = _section(data, "amazonses")
        sendgrid_data = _section(data, "sendgrid")
        metrics_data = _section(data, "metrics")
        logging_data = _section(data, "logging")

        filters = filter_data.get("filters", [])
        if not isinstance(filters, list) or not all(isinstance(f, str) for f in filters):
            raise ConfigurationError(
                code="invalid_config",
                message="'filter_config.filters' must be a list of paths",
            )

        call_timeout = filter_data.get("call_timeout_seconds")
        if call_timeout is not None:
            call_timeout = float(call_timeout)

        token = data.get("certspotter_token") or os.environ.get(CERTSPOTTER_TOKEN_ENV, "")

        return MonitorConfig(
            domains=parse_domains(data.get("domains", [])),
            certspotter_endpoint=data.get("certspotter_endpoint", DEFAULT_CERTSPOTTER_ENDPOINT),
            certspotter_token=token,
            alert_config=AlertConfig(
                mailer=parse_mailer_kind(alert_data.get("mailer", "none")),
            ),
            position_config=PositionConfig(
                filename=Path(position_data.get("filename", DEFAULT_POSITION_FILE)),
            ),
            filter_config=FilterConfig(
                filters=filters,
                start_timeout_seconds=float(
                    filter_data.get("start_timeout_seconds", DEFAULT_FILTER_START_TIMEOUT)
                ),
                call_timeout_seconds=call_timeout,
            ),
            mail_template=MailTemplate(
                subject=template_data.get("subject", DEFAULT_SUBJECT_TEMPLATE),
                body=template_data.get("body", DEFAULT_BODY_TEMPLATE),
            ),
            smtp=SMTPConfig(
                from_address=smtp_data.get("from", ""),
                to_address=smtp_data.get("to", ""),
                server=smtp_data.get("server", "localhost"),
                port=int(smtp_data.get("port", 25)),
                username=smtp_data.get("username", ""),
                password=smtp_data.get("password", ""),
                ca_cert_file=smtp_data.get("ca_cert_file"),
                require_encryption=bool(smtp_data.get("require_encryption", False)),
            ),
            amazonses=AmazonSESConfig(
                from_address=ses_data.get("from", ""),
                to_address=ses_data.get("to", ""),
                region=ses_data.get("region", "us-east-1"),
            ),
            sendgrid=SendgridConfig(
                from_address=sendgrid_data.get("from", ""),
                to_address=sendgrid_data.get("to", ""),
                api_key=sendgrid_data.get("api_key", ""),
            ),
            metrics=MetricsConfig(
                pushgateway_url=metrics_data.get("pushgateway_url"),
                job=metrics_data.get("job", "ct_monitor"),
            ),
            logging=LoggingConfig(
                level=logging_data.get("level", "info"),
                output_format=logging_data.get("output_format", "text"),
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            code="invalid_config",
            message=f"Invalid configuration value: {e}",
        )


def load_config_from_file(config_path: Path) -> MonitorConfig:
    """
    Load configuration from a JSON file.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(
            code="not_found",
            message=f"Configuration file not found: {config_path}",
        )
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            code="invalid_config",
            message=f"Failed to read configuration {config_path}: {e}",
        )
    return config_from_dict(data)


def config_to_dict(config: MonitorConfig) -> dict:
    """Serialize a MonitorConfig into the configuration file shape."""
    return {
        "domains": [
            {
                "name": d.name,
                "match_wildcards": d.match_wildcards,
                "include_subdomains": d.include_subdomains,
                **({"mailer": d.mailer.value} if d.mailer else {}),
            }
            for d in config.domains
        ],
        "certspotter_endpoint": config.certspotter_endpoint,
        "alert_config": {"mailer": config.alert_config.mailer.value},
        "position_config": {"filename": str(config.position_config.filename)},
        "filter_config": {
            "filters": list(config.filter_config.filters),
            "start_timeout_seconds": config.filter_config.start_timeout_seconds,
            "call_timeout_seconds": config.filter_config.call_timeout_seconds,
        },
        "mail_template": {
            "subject": config.mail_template.subject,
            "body": config.mail_template.body,
        },
        "smtp": {
            "from": config.smtp.from_address,
            "to": config.smtp.to_address,
            "server": config.smtp.server,
            "port": config.smtp.port,
            "username": config.smtp.username,
            "password": config.smtp.password,
            "ca_cert_file": config.smtp.ca_cert_file,
            "require_encryption": config.smtp.require_encryption,
        },
        "amazonses": {
            "from": config.amazonses.from_address,
            "to": config.amazonses.to_address,
            "region": config.amazonses.region,
        },
        "sendgrid": {
            "from": config.sendgrid.from_address,
            "to": config.sendgrid.to_address,
            "api_key": config.sendgrid.api_key,
        },
        "metrics": {
            "pushgateway_url": config.metrics.pushgateway_url,
            "job": config.metrics.job,
        },
        "logging": {
            "level": config.logging.level,
            "output_format": config.logging.output_format,
        },
    }


def save_config_to_file(config: MonitorConfig, config_path: Path) -> bool:
    """Save configuration to a JSON file. The token is never written."""
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(config_to_dict(config), f, indent=2, ensure_ascii=False)
        return True
    except OSError as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def create_logger(logging_config: LoggingConfig, verbose: bool = False) -> AuditLogger:
    """
    Raises:
        ConfigurationError: If the level or format is unknown
    """
    try:
        level = LogLevel.DEBUG if verbose else LogLevel(logging_config.level.lower())
    except ValueError:
        raise ConfigurationError(
            code="invalid_config",
            message=f"Unknown log level {logging_config.level!r}",
        )
    try:
        return AuditLogger(output_format=logging_config.output_format, min_level=level)
    except ValueError as e:
        raise ConfigurationError(code="invalid_config", message=str(e))


async def run_monitor(config: MonitorConfig, logger: AuditLogger) -> int:
    """
    Perform one polling pass.

    Returns:
        Exit code (0 if every domain succeeded and positions were written)
    """
    logger.log(LogLevel.INFO, "cli", "ct-monitor", {"version": __version__})

    position_file = config.position_config.filename
    try:
        store = WatermarkStore.load(position_file)
    except PersistenceError as e:
        logger.log_error("cli", "Failed to load position file", error=e)
        return 1

    logger.log(
        LogLevel.INFO,
        "cli",
        "using position file",
        {"path": str(position_file), "entries": len(store)},
    )

    async with CertSpotterClient(
        endpoint=config.certspotter_endpoint,
        token=config.certspotter_token,
    ) as source:
        try:
            orchestrator = MonitorOrchestrator.from_config(config, store, source, logger)
        except ConfigurationError as e:
            logger.log_error("cli", "Invalid configuration", error=e)
            return 1
        summary = await orchestrator.run()

    failed = [r.domain for r in summary.reports if not r.succeeded]
    logger.log(
        LogLevel.INFO if summary.succeeded else LogLevel.WARN,
        "cli",
        "run finished",
        {
            "domains": len(summary.reports),
            "failed": failed,
            "persisted": summary.persisted,
        },
    )
    return 0 if summary.succeeded else 1


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the 'run' command."""
    load_dotenv()
    try:
        config = load_config_from_file(Path(args.config))
        logger = create_logger(config.logging, verbose=args.verbose)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    logger.log(LogLevel.INFO, "cli", "loaded configuration", {"config": str(args.config)})
    return asyncio.run(run_monitor(config, logger))


def create_default_config() -> MonitorConfig:
    """Configuration written by ``config init``."""
    return MonitorConfig(
        domains=[DomainDescriptor(name="example.com")],
        position_config=PositionConfig(filename=DEFAULT_POSITION_FILE),
    )


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_FILE

    if args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1
        if save_config_to_file(create_default_config(), config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    load_dotenv()
    try:
        config = load_config_from_file(config_path)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if args.action == "show":
        print(f"Configuration from: {config_path}")
        print(f"  Endpoint: {config.certspotter_endpoint}")
        print(f"  Token: {'set' if config.certspotter_token else 'not set'}")
        print(f"  Domains: {', '.join(d.name for d in config.domains) or '(none)'}")
        print(f"  Default mailer: {config.alert_config.mailer.value}")
        print(f"  Filters: {', '.join(config.filter_config.filters) or '(none)'}")
        print(f"  Position file: {config.position_config.filename}")
        print(f"  Log level: {config.logging.level}")
        return 0

    print(f"Configuration at {config_path} is valid.")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="ct-monitor",
        description="ct-monitor queries the Cert Spotter API for new certificate issuances",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser(
        "run",
        help="Check all configured domains once",
    )
    run_parser.add_argument(
        "--config", "-c",
        default=str(DEFAULT_CONFIG_FILE),
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_FILE})",
    )
    run_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    run_parser.set_defaults(func=cmd_run)

    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
