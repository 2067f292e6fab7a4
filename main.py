"""Main entry point: store one batch of processed records in the staging store."""
import asyncio
import sys

from etl.app import run_batch
from etl.config import get_settings
from etl.errors import ConfigurationError
from etl.logging_config import setup_logging

if __name__ == "__main__":
    settings = get_settings()
    setup_logging(settings.logging, debug=settings.debug)
    path = sys.argv[1] if len(sys.argv) > 1 else settings.batch.input_path
    url = settings.staging_db.url

    print(f"Starting {settings.app_name} v{settings.version}")
    print(f"Staging: {url.split('@')[-1] if '@' in url else url}")
    print(f"Input: {path} (chunks of {settings.batch.size}, {settings.batch.max_concurrency} in flight)")
    print("-" * 50)

    try:
        report = asyncio.run(run_batch(settings, path))
    except ConfigurationError as e:
        print(f"❌ {e}")
        sys.exit(2)

    print(f"Succeeded: {report.succeeded}  Failed: {report.failed}{'  (aborted)' if report.aborted else ''}")
    for failure in report.errors:
        print(f"  ✗ {failure.record_id} [{failure.component}/{failure.kind}] {failure.entity}: {failure.message}")
    counts = report.counts
    print(
        f"Created: {counts.companies} companies, {counts.roles} roles, {counts.jobs_created} jobs "
        f"({counts.jobs_updated} versioned), {counts.skills} skills, {counts.capabilities} capabilities, "
        f"{counts.links} links"
    )
    if counts.failures:
        print("Failed: " + ", ".join(f"{n} {entity}" for entity, n in sorted(counts.failures.items())))
    if report.drift.error:
        print(f"Sync drift unavailable: {report.drift.error}")
    else:
        print(f"Pending promotion: {report.drift.total_pending} rows")
        for table, drift in report.drift.tables.items():
            if drift.pending:
                print(f"  {table}: staging={drift.staging} live={drift.live}")
    sys.exit(1 if report.failed else 0)
