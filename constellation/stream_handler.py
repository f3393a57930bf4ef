"""
Change feed entry point: DynamoDB Streams -> archive mirror.
"""

from dataclasses import asdict
from typing import Any, Dict, Optional

from .services.backup_propagator import BackupPropagator
from .utils.logging_config import get_logger

logger = get_logger(__name__)

_propagator: Optional[BackupPropagator] = None


def get_propagator() -> BackupPropagator:
    global _propagator
    if _propagator is None:
        _propagator = BackupPropagator()
    return _propagator


def lambda_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, int]:
    """Mirror one stream batch. Never raises for a single bad record."""
    report = get_propagator().handle_stream_event(event)
    if report.failed:
        logger.warning(f'{report.failed} record(s) could not be mirrored; they will be retried on replay')
    return asdict(report)
