# FILE: medkit/services/drug_alerts.py
"""
Expiry alert primitives: scan, compose, send, mark.

Nothing here touches the cache. Callers go through
medkit.services.drugs (send_expiry_alerts_for_current_user /
send_expiry_alerts_for_all_users), which evicts around these calls.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medkit.core.emailer import EmailSender
from medkit.core.exceptions import EmailSendingError
from medkit.crud import crud_drugs
from medkit.models.drug import Drug
from medkit.models.user import User
from medkit.schemas.drug import AlertRunSummary

logger = logging.getLogger(__name__)


def is_alert_eligible(user: Optional[User]) -> bool:
    if user is None:
        return False
    if not bool(user.alerts_enabled):
        return False
    return bool((user.email or "").strip())


def compose_alert(drugs: Sequence[Drug]) -> Tuple[str, str]:
    subject = f"Drug Expiry Alert - {len(drugs)} drug(s) expiring soon"

    lines: List[str] = [
        "Attention!",
        "",
        "The following drugs in your first aid kit are about to expire.",
        "Please check them as soon as possible.",
        "",
    ]
    for i, drug in enumerate(drugs, start=1):
        lines.append(f"{i}. {drug.name}")
        lines.append(f"   Expiration date: {drug.expires_at.date().isoformat()}")
        if drug.description and drug.description.strip():
            lines.append(f"   Description: {drug.description.strip()}")
        lines.append("")
    lines.append("Please check these items and replace expired drugs.")
    lines.append("")
    lines.append("Take care of your health!")
    lines.append("Your First Aid Kit")

    return subject, "\n".join(lines)


def notify_owner(
    db: Session,
    user: User,
    drugs: Sequence[Drug],
    *,
    now: datetime,
    sender: EmailSender,
    timeout: Optional[float] = None,
) -> int:
    """
    One consolidated email for `drugs`, then mark them all.

    Compose-send-mark is all or nothing: if the send fails nothing is marked
    and EmailSendingError is raised.
    """
    to_alert = [d for d in drugs if not d.alert_sent]
    if not to_alert:
        # ends the transaction holding the pending-row locks
        db.rollback()
        logger.info("All drugs of user %s already notified. Skipping email.", user.id)
        return 0

    subject, body = compose_alert(to_alert)
    try:
        sender(user.email, subject, body, timeout=timeout)
    except Exception as e:
        db.rollback()
        logger.error("Failed to send consolidated alert email to %s", user.email, exc_info=True)
        raise EmailSendingError(
            f"Could not send expiry alert email to {user.email}: {e}") from e

    try:
        for drug in to_alert:
            drug.alert_sent = True
            drug.alert_sent_at = now
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Consolidated alert sent for %d drugs to %s", len(to_alert), user.email)
    return len(to_alert)


def dispatch_for_owner(
    db: Session,
    user: User,
    cutoff: datetime,
    *,
    now: datetime,
    sender: EmailSender,
    timeout: Optional[float] = None,
) -> int:
    if not is_alert_eligible(user):
        logger.warning("Skipping user %s - alerts disabled or no valid email address", user.id)
        return 0

    drugs = crud_drugs.pending_alerts_for_owner(db, user.id, cutoff)
    logger.info("Found %d drugs to alert for user %s (cutoff %s)", len(drugs), user.id, cutoff)
    return notify_owner(db, user, drugs, now=now, sender=sender, timeout=timeout)


def dispatch_for_all_owners(
    db: Session,
    cutoff: datetime,
    *,
    now: datetime,
    sender: EmailSender,
    timeout: Optional[float] = None,
) -> AlertRunSummary:
    owner_ids = crud_drugs.owners_with_pending_alerts(db, cutoff)
    summary = AlertRunSummary(cutoff=cutoff, owners_found=len(owner_ids))
    logger.info("Found %d users with expiring drugs (cutoff %s)", len(owner_ids), cutoff)

    for owner_id in owner_ids:
        try:
            user = crud_drugs.get_user(db, owner_id)
            if not is_alert_eligible(user):
                logger.warning("Skipping user %s - alerts disabled or no valid email address",
                               owner_id)
                summary.owners_skipped += 1
                continue

            drugs = crud_drugs.pending_alerts_for_owner(db, owner_id, cutoff)
            sent = notify_owner(db, user, drugs, now=now, sender=sender, timeout=timeout)
        except EmailSendingError as e:
            logger.error("Failed to send alert for user %s: %s", owner_id, e.msg)
            summary.owners_failed += 1
            continue
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error while alerting user %s", owner_id)
            summary.owners_failed += 1
            continue

        if sent:
            summary.owners_notified += 1
            summary.drugs_notified += sent

    logger.info(
        "Alert run finished: found=%d notified=%d skipped=%d failed=%d drugs=%d",
        summary.owners_found,
        summary.owners_notified,
        summary.owners_skipped,
        summary.owners_failed,
        summary.drugs_notified,
    )
    return summary
