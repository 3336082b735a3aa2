#!/usr/bin/env python3
"""
Command-line interface for workermailer.

Usage:
    workermailer send --from FROM --to TO --subject SUBJECT --text TEXT

Transport settings come from ``SMTP_*`` environment variables or a TOML
file (``--config`` or ``WORKERMAILER_CONFIG_FILE``).
"""

import argparse
import asyncio
import base64
import logging
import sys
from pathlib import Path
from typing import Optional

from workermailer import __version__
from workermailer.common.config import (
    LoggingSettings,
    MailerSettings,
    get_settings,
)
from workermailer.common.exceptions import ConfigurationError, WorkerMailerError
from workermailer.common.models import Attachment, EmailOptions
from workermailer.smtp.composer import EmailComposer
from workermailer.smtp.sender import WorkerMailer

logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for the command line.

    Args:
        debug: Enable debug logging, including the SMTP conversation.
    """
    settings = LoggingSettings.from_env()
    log_level = logging.DEBUG if debug else getattr(logging, settings.level)

    logging.basicConfig(
        level=log_level,
        format=settings.format,
        handlers=[
            logging.StreamHandler(sys.stderr),
        ],
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog="workermailer",
        description="workermailer - send email over SMTP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    Send a plain text email:
        workermailer send --from me@example.com --to you@example.com \\
            --subject Hello --text "Hi there"

    Print the rendered message instead of sending it:
        workermailer send ... --dry-run

Environment Variables:
    SMTP_HOST, SMTP_PORT, SMTP_USERNAME, SMTP_PASSWORD, ...
    WORKERMAILER_CONFIG_FILE    TOML file with an [smtp] table
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"workermailer {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    send = subparsers.add_parser("send", help="Send one email")

    send.add_argument("--from", dest="sender", required=True, help="Sender")
    send.add_argument(
        "--to", action="append", required=True, help="Recipient (repeatable)"
    )
    send.add_argument("--cc", action="append", help="Cc recipient (repeatable)")
    send.add_argument(
        "--bcc", action="append", help="Bcc recipient (repeatable)"
    )
    send.add_argument("--reply-to", dest="reply", help="Reply-To address")
    send.add_argument("--subject", default="", help="Subject line")

    text = send.add_mutually_exclusive_group()
    text.add_argument("--text", help="Plain text body")
    text.add_argument("--text-file", type=Path, help="Read the text body from a file")

    html = send.add_mutually_exclusive_group()
    html.add_argument("--html", help="HTML body")
    html.add_argument("--html-file", type=Path, help="Read the HTML body from a file")

    send.add_argument(
        "--attach",
        action="append",
        type=Path,
        default=[],
        help="Attach a file (repeatable)",
    )
    send.add_argument("--config", type=Path, help="TOML configuration file")
    send.add_argument("--host", help="Override the SMTP host")
    send.add_argument("--port", type=int, help="Override the SMTP port")
    send.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the rendered message instead of sending it",
    )
    send.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


def load_attachment(path: Path) -> Attachment:
    """Read a file into a base64 Attachment."""
    content = base64.b64encode(path.read_bytes()).decode("ascii")
    return Attachment(filename=path.name, content=content)


def build_email_options(args: argparse.Namespace) -> EmailOptions:
    """
    Build EmailOptions from parsed arguments.

    Raises:
        OSError: If a body or attachment file cannot be read.
    """
    text = args.text_file.read_text("utf-8") if args.text_file else args.text
    html = args.html_file.read_text("utf-8") if args.html_file else args.html

    return EmailOptions(
        sender=args.sender,
        to=args.to,
        cc=args.cc,
        bcc=args.bcc,
        reply=args.reply,
        subject=args.subject,
        text=text,
        html=html,
        attachments=[load_attachment(p) for p in args.attach] or None,
    )


def load_settings(args: argparse.Namespace) -> MailerSettings:
    """Load settings and apply command-line overrides."""
    settings = (
        MailerSettings.from_toml(args.config) if args.config else get_settings()
    )

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    return settings.model_copy(update=overrides) if overrides else settings


def run_send(args: argparse.Namespace) -> int:
    """Execute the ``send`` command."""
    email_options = build_email_options(args)

    if args.dry_run:
        composer = EmailComposer()
        document = composer.render(composer.build(email_options))
        sys.stdout.write(document.decode("utf-8"))
        return 0

    options = load_settings(args).to_mailer_options()
    logger.info("Sending via %s:%d", options.host, options.port)
    response = asyncio.run(WorkerMailer.send(options, email_options))
    print(response)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the workermailer command.

    Returns:
        Exit code (0 for success, 1 for failure, 2 for usage errors).
    """
    args = parse_args(argv)

    try:
        setup_logging(args.debug)
        return run_send(args)

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1

    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    except WorkerMailerError as e:
        logger.error("Send failed: %s", e)
        return 1

    except OSError as e:
        logger.error("Failed to read input file: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
