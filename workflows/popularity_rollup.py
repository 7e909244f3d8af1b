"""
Prefect Workflow Orchestration - Popularity Rollup

Scheduled workflow for the daily popularity batch with:
- Retries around the rollup itself
- Backfill over a date range
- Alerting on failures and critical view anomalies
"""

from datetime import date, timedelta
from typing import List, Optional

from prefect import flow, task, get_run_logger

from gear_popularity.aggregation.rollup import run_daily_rollup
from gear_popularity.clock import utc_today
from gear_popularity.config import get_settings
from gear_popularity.database.connection import init_database

settings = get_settings()


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="run_popularity_rollup",
    description="Aggregate D-1 (and the D-2 correction), materialize windows, refresh lifetime",
    retries=3,
    retry_delay_seconds=60,
)
async def run_popularity_rollup(base_date: date) -> dict:
    """Run one rollup and return its summary"""
    logger = get_run_logger()

    result = await run_daily_rollup(base_date)
    summary = result.summary()
    summary["critical_anomalies"] = [
        a.to_dict() for a in (result.anomaly_report.anomalies if result.anomaly_report else [])
        if a.is_critical
    ]
    if result.lifetime:
        summary["lifetime_anomalies"] = [a.to_dict() for a in result.lifetime.anomalies]

    logger.info(
        f"Rollup for {summary['as_of_date']}: {summary['daily_rows']} daily rows, "
        f"{summary['windows_rows']} window rows, {summary['failures']} failures"
    )
    return summary


@task(
    name="check_rollup_anomalies",
    description="Raise alerts for critical anomalies and item failures",
)
async def check_rollup_anomalies(summary: dict) -> int:
    """Alert on what the rollup flagged; returns the number of alerts sent"""
    alerts = 0

    critical = summary.get("critical_anomalies", [])
    if critical:
        await send_alert(
            alert_type="View Anomaly Detected",
            message=f"{len(critical)} critical anomalies as of {summary['as_of_date']}: "
                    f"{critical[0]['message']}",
            severity="critical",
        )
        alerts += 1

    lifetime = summary.get("lifetime_anomalies", [])
    if lifetime:
        await send_alert(
            alert_type="Lifetime Totals Decreased",
            message=f"{len(lifetime)} items skipped, lifetime views would have dropped",
            severity="warning",
        )
        alerts += 1

    if summary.get("failures"):
        await send_alert(
            alert_type="Rollup Item Failures",
            message=f"{summary['failures']} items failed as of {summary['as_of_date']}; re-run the date",
            severity="warning",
        )
        alerts += 1

    return alerts


@task(
    name="send_alert",
    description="Send alert notification",
)
async def send_alert(
    alert_type: str,
    message: str,
    severity: str = "info",
) -> None:
    """Send alert notification"""
    logger = get_run_logger()

    # Notification delivery lives outside this service; the run log is the sink
    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="daily_popularity_rollup",
    description="Daily popularity rollup for the gear catalog",
    retries=1,
    retry_delay_seconds=300,
)
async def daily_popularity_rollup(base_date: Optional[date] = None) -> dict:
    """
    Daily popularity rollup.

    Steps:
    1. Correction pass over D-2
    2. Main pass over D-1
    3. 7d/30d windows and lifetime totals
    4. Alerts for anything the run flagged
    """
    logger = get_run_logger()
    base_date = base_date or utc_today()

    logger.info(f"Starting popularity rollup for base date {base_date}")
    await init_database()

    try:
        summary = await run_popularity_rollup(base_date)
        summary["alerts"] = await check_rollup_anomalies(summary)
    except Exception as e:
        logger.error(f"Popularity rollup failed: {e}")
        await send_alert(
            alert_type="Rollup Failed",
            message=f"Popularity rollup for {base_date} failed: {e}",
            severity="critical",
        )
        raise

    return summary


@flow(
    name="backfill_popularity",
    description="Re-run the rollup for every base date in a range",
)
async def backfill_popularity(start: date, end: Optional[date] = None) -> List[dict]:
    """
    Backfill rollups for base dates ``start`` through ``end`` inclusive.

    Runs oldest first so lifetime totals grow in order.
    """
    logger = get_run_logger()
    end = end or utc_today()
    if end < start:
        raise ValueError(f"end {end} is before start {start}")

    await init_database()

    summaries = []
    current = start
    while current <= end:
        summaries.append(await run_popularity_rollup(current))
        current += timedelta(days=1)

    logger.info(f"Backfilled {len(summaries)} rollups from {start} to {end}")
    return summaries


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    import asyncio

    asyncio.run(daily_popularity_rollup())
