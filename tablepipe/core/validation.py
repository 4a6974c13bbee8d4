"""Schema validation and auto-migration step of a pipeline run."""

from typing import Optional

from tablepipe.config import PipelineOptions
from tablepipe.core.errors import SchemaIncompatibleError
from tablepipe.logging import get_logger
from tablepipe.schema.compatibility import SchemaCompatibilityReport, classify, log_report
from tablepipe.writers.base import DataWriter

logger = get_logger(__name__)


def validate_and_migrate(
    writer: DataWriter, options: PipelineOptions
) -> Optional[SchemaCompatibilityReport]:
    """Classify the writer's columns against its target and optionally migrate.

    Returns None when validation is disabled or the target has no schema to
    compare against (file targets).
    """
    if options.no_schema_validation:
        logger.debug("Schema validation disabled")
        return None
    snapshot = writer.inspect_target()
    if snapshot is None:
        return None

    identifiers = getattr(getattr(writer, "dialect", None), "identifiers", None)
    report = classify(writer.columns, snapshot, options.strict_schema, identifiers)
    log_report(report)

    if options.auto_migrate and report.missing_columns:
        names = ", ".join(c.name for c in report.missing_columns)
        logger.info(f"Auto-migrating target: adding {names}")
        writer.migrate_schema(report)
        report = classify(
            writer.columns, writer.inspect_target(), options.strict_schema, identifiers
        )
        log_report(report)

    if options.strict_schema and not report.is_compatible:
        raise SchemaIncompatibleError(report)
    return report
