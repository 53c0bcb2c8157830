"""
Sync entry point — load the metadata once and write the payload cache.

Composition root for the command line: configures structlog, loads
MdsSettings from the environment, builds a client with the bundled defaults
and loads it. The verified payload is written to the configured payload file
as part of the load.

Exit status: 0 on success, 1 on any configuration or metadata error.
"""

from __future__ import annotations

import logging
import sys

import structlog
from pydantic import ValidationError

from fido_mds import __version__
from fido_mds.builder import MetadataClientBuilder
from fido_mds.config import MdsSettings
from fido_mds.errors import MdsError


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog once for the process.

    Console renderer with ISO timestamps; events below log_level are dropped.
    An unknown level name falls back to INFO.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def sync(settings: MdsSettings) -> int:
    """Load the metadata with the given settings; return the process exit status."""
    log = structlog.get_logger()
    log.info(
        "sync.starting",
        version=__version__,
        access_mds=settings.mds.access,
        access_root_certificate=settings.root.access,
        payload_file=str(settings.payload.file),
    )
    try:
        client = MetadataClientBuilder(settings).build_loaded()
    except MdsError as e:
        log.error("sync.failed", error_code=e.code.value, error=e.message)
        return 1

    payload = client.payload
    if payload is None:
        log.error("sync.failed", error="No metadata payload after load.")
        return 1

    family_counts = {
        f"{family.value}_entries": count for family, count in payload.count_by_family().items()
    }
    log.info(
        "sync.completed",
        serial_number=payload.serial_number,
        next_update=payload.next_update.isoformat(),
        entries=payload.total_entries,
        quarantined=len(payload.quarantined),
        **family_counts,
    )
    return 0


def main() -> None:
    """Console script: fido-mds-sync."""
    try:
        settings = MdsSettings()
    except ValidationError as e:
        print(f"FATAL: Configuration error: {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    sys.exit(sync(settings))


if __name__ == "__main__":
    main()
