"""
Digest Cron Job: flushes the email digest queue.

Users with a daily or weekly email frequency get their notifications queued
in ``emailDigestQueue``. This job sends one digest email per user covering
every due frequency, then deletes exactly the rows that went out.

Typical cron schedule: 0 8 * * * (daily at 8 AM). Weekly digests are sent on
``weekly_digest_weekday`` runs only, unless requested explicitly.
"""

import asyncio
import logging
import os
import traceback
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy import delete, distinct, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import get_settings, to_async_url
from ..core.database import build_engine
from ..models import EmailDigestQueue, EmailFrequency, Notification, utcnow
from ..services.email_service import EmailDeliveryError, EmailService, build_digest_email
from ..services.notifications import NotificationService

logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
) -> None:
    """
    Send an alert when the cron job fails.

    Supports multiple channels:
    - Slack webhook (SLACK_ALERTS_WEBHOOK_URL)
    - Generic webhook (ALERT_WEBHOOK_URL)
    - Logs (always)
    """
    log_message = f"[CRON ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    slack_webhook_url = os.getenv("SLACK_ALERTS_WEBHOOK_URL")
    if slack_webhook_url:
        try:
            await _send_slack_alert(slack_webhook_url, title, message, severity, details)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send Slack alert: {e}")

    alert_webhook_url = os.getenv("ALERT_WEBHOOK_URL")
    if alert_webhook_url:
        try:
            await _send_webhook_alert(alert_webhook_url, title, message, severity, details)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook alert: {e}")


async def _send_slack_alert(
    webhook_url: str,
    title: str,
    message: str,
    severity: str,
    details: dict | None,
) -> None:
    color = "#dc2626" if severity == "critical" else "#f59e0b"

    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": title}},
        {"type": "section", "text": {"type": "mrkdwn", "text": message}},
    ]
    if details:
        details_text = "\n".join(f"• *{k}*: {v}" for k, v in details.items())
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": details_text}})
    blocks.append({
        "type": "context",
        "elements": [
            {"type": "mrkdwn", "text": f"Severity: *{severity.upper()}* | Time: {datetime.now(timezone.utc).isoformat()}"},
        ],
    })

    async with httpx.AsyncClient(timeout=10) as client:
        await client.post(webhook_url, json={"attachments": [{"color": color, "blocks": blocks}]})


async def _send_webhook_alert(
    webhook_url: str,
    title: str,
    message: str,
    severity: str,
    details: dict | None,
) -> None:
    payload = {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": "delphi-digest-cron",
        "details": details or {},
    }
    async with httpx.AsyncClient(timeout=10) as client:
        await client.post(webhook_url, json=payload)


# =============================================================================
# DIGEST SWEEP
# =============================================================================


def due_frequencies(now: datetime, weekly_weekday: int) -> list[EmailFrequency]:
    """Daily digests go out on every run, weekly ones on the configured weekday."""
    frequencies = [EmailFrequency.DAILY]
    if now.weekday() == weekly_weekday:
        frequencies.append(EmailFrequency.WEEKLY)
    return frequencies


async def _flush_group(
    session_factory: async_sessionmaker[AsyncSession],
    email_service: EmailService,
    user_id: str,
    entry_ids: list[str],
) -> int:
    """Send one digest and delete its rows. Returns the number of rows sent.

    A user who switched frequency can have daily and weekly rows queued at
    once; they go out together, labelled with the longest frequency present.
    """
    async with session_factory() as session:
        result = await session.execute(
            select(EmailDigestQueue)
            .where(EmailDigestQueue.id.in_(entry_ids))
            .order_by(EmailDigestQueue.created_at.asc())
        )
        entries = list(result.scalars().all())
        if not entries:
            return 0

        frequency = (
            EmailFrequency.WEEKLY
            if any(e.frequency == EmailFrequency.WEEKLY for e in entries)
            else EmailFrequency.DAILY
        )

        message = build_digest_email(
            to=entries[-1].email,
            frequency=frequency.value,
            entries=entries,
            config=email_service.config,
        )
        await email_service.send(message)

        await session.execute(
            delete(EmailDigestQueue).where(EmailDigestQueue.id.in_([e.id for e in entries]))
        )
        await session.commit()

    logger.info(f"Sent {frequency.value} digest with {len(entries)} entries to {user_id}")
    return len(entries)


async def _prune_notifications(
    session_factory: async_sessionmaker[AsyncSession],
    days_old: int,
) -> int:
    async with session_factory() as session:
        result = await session.execute(select(distinct(Notification.user_id)))
        service = NotificationService(session)
        deleted = 0
        for user_id in result.scalars().all():
            deleted += await service.delete_old(user_id, days_old=days_old)
        await session.commit()
    return deleted


async def run_digest_job(
    database_url: str,
    frequencies: list[EmailFrequency] | None = None,
    email_service: EmailService | None = None,
    now: datetime | None = None,
    prune: bool = False,
) -> dict[str, Any]:
    """
    Main entry point for the digest cron job.

    This function:
    1. Picks the frequencies that are due (or the ones requested)
    2. Groups queued rows per user across the due frequencies
    3. Sends one digest per group and deletes its rows after a successful send
    4. Optionally deletes notifications past the retention window
    5. Alerts when any send failed or the job crashed

    Args:
        database_url: Database connection string
        frequencies: Frequencies to flush; defaults to the ones due at ``now``
        email_service: Email sender (defaults to SendGrid from settings)
        now: Clock override
        prune: Also delete notifications older than the retention window

    Returns:
        Job result summary
    """
    settings = get_settings()
    start_time = now or utcnow()
    email_service = email_service or EmailService()
    if frequencies is None:
        frequencies = due_frequencies(start_time, settings.weekly_digest_weekday)

    logger.info(
        f"Starting digest job at {start_time.isoformat()} for "
        f"{', '.join(f.value for f in frequencies) or 'no frequencies'}"
    )

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "frequencies": [f.value for f in frequencies],
        "digests_sent": 0,
        "digests_failed": 0,
        "entries_sent": 0,
        "notifications_pruned": 0,
        "errors": [],
    }

    engine = build_engine(to_async_url(database_url))
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    try:
        groups: dict[str, list[str]] = defaultdict(list)
        if frequencies:
            async with session_factory() as session:
                result = await session.execute(
                    select(EmailDigestQueue.id, EmailDigestQueue.user_id)
                    .where(EmailDigestQueue.frequency.in_(frequencies))
                )
                for entry_id, user_id in result.all():
                    groups[user_id].append(entry_id)

        if groups and not email_service.is_configured:
            logger.warning(f"Email delivery not configured; leaving {len(groups)} digests queued")
            results["errors"].append("Email delivery not configured")
        elif groups:
            for user_id, entry_ids in groups.items():
                try:
                    sent = await _flush_group(session_factory, email_service, user_id, entry_ids)
                except EmailDeliveryError as e:
                    results["digests_failed"] += 1
                    results["errors"].append(f"{user_id}: {e}")
                    logger.error(f"Failed to send digest to {user_id}: {e}")
                    continue
                if sent:
                    results["digests_sent"] += 1
                    results["entries_sent"] += sent

        if prune:
            results["notifications_pruned"] = await _prune_notifications(
                session_factory, settings.notification_retention_days
            )

    except Exception as e:
        error_msg = f"Digest job failed: {e}"
        logger.error(error_msg)
        results["errors"].append(error_msg)

        await send_alert(
            title="Digest Cron Job Failed",
            message="The email digest job crashed unexpectedly.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
                "started_at": results["started_at"],
                "digests_sent_before_crash": results["digests_sent"],
            },
        )
        raise

    finally:
        await engine.dispose()

    end_time = utcnow()
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Digest job completed: {results['digests_sent']} digests sent "
        f"({results['entries_sent']} entries), {results['digests_failed']} failed"
    )

    if results["digests_failed"] > 0:
        await send_alert(
            title="Digest Job Completed with Warnings",
            message=f"{results['digests_failed']} digest emails failed to send and stay queued.",
            severity="warning",
            details={
                "digests_sent": results["digests_sent"],
                "digests_failed": results["digests_failed"],
                "errors": results["errors"][:5],
            },
        )

    return results


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the digest job."""
    import argparse

    parser = argparse.ArgumentParser(description="Send queued daily/weekly notification digests")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="Database connection string",
    )
    parser.add_argument(
        "--frequency",
        choices=[EmailFrequency.DAILY.value, EmailFrequency.WEEKLY.value],
        action="append",
        help="Flush only this frequency (repeatable). Defaults to the frequencies due today.",
    )
    parser.add_argument(
        "--prune",
        action="store_true",
        help="Also delete notifications older than the retention window",
    )

    args = parser.parse_args()

    if not args.database_url:
        print("Error: DATABASE_URL is required")
        raise SystemExit(1)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    frequencies = [EmailFrequency(f) for f in args.frequency] if args.frequency else None

    try:
        results = asyncio.run(run_digest_job(
            database_url=args.database_url,
            frequencies=frequencies,
            prune=args.prune,
        ))
        print(f"Job completed: {results}")
    except Exception as e:
        print(f"Job failed: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
