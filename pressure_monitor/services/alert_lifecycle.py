"""
Alert lifecycle: creation with quiet-window deduplication, and acknowledgment.

Deduplication prevents alert storms from consecutive breaching readings: a
breach is suppressed while an unacknowledged alert of the same type exists for
the session and the reading falls inside the quiet window measured from that
alert. Acknowledging the alert re-arms the type immediately.
"""

from datetime import datetime, timedelta

import structlog

from pressure_monitor.config import AlertPolicyConfig, EngineConfig
from pressure_monitor.domain.errors import AlertNotFound, AlreadyAcknowledged, ValidationError
from pressure_monitor.domain.models import (
    Alert,
    AlertOutcome,
    AlertStatus,
    Breach,
    MonitoringSession,
    Reading,
    as_utc,
    highest_status,
)
from pressure_monitor.services.store import PressureStore, StoreTransaction, TransactionRunner

logger = structlog.get_logger(__name__)


class AlertLifecycleController:
    """Creates, deduplicates and acknowledges alerts."""

    def __init__(
        self,
        store: PressureStore,
        policy: AlertPolicyConfig | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.policy = policy or AlertPolicyConfig()
        self._transactions = TransactionRunner(store, config)
        self.logger = logger.bind(component="alert_lifecycle")

    def raise_alert(
        self, tx: StoreTransaction, session: MonitoringSession, reading: Reading, breach: Breach
    ) -> AlertOutcome:
        """
        Record a breach inside the caller's ingestion transaction.

        Suppression is not an error: the outcome comes back with ``suppressed=True``
        and no alert id.
        """
        severity = self.policy.severity_for(breach.alert_type)
        window = timedelta(seconds=self.policy.quiet_window_for(breach.alert_type))

        latest = tx.latest_unacknowledged_alert(session.id, breach.alert_type)
        in_window = latest is not None and reading.timestamp < latest.timestamp + window
        if in_window and window > timedelta(0):
            self.logger.info(
                "alert_suppressed",
                session_id=session.id,
                reading_id=reading.id,
                alert_type=breach.alert_type.value,
                open_alert_id=latest.id,
            )
            return AlertOutcome(breach=breach, severity=severity, suppressed=True)

        alert = tx.add_alert(
            session_id=session.id,
            reading_id=reading.id,
            breach=breach,
            timestamp=reading.timestamp,
        )
        self.logger.info(
            "alert_raised",
            alert_id=alert.id,
            session_id=session.id,
            reading_id=reading.id,
            alert_type=breach.alert_type.value,
            threshold=breach.threshold_value,
            actual=breach.actual_value,
            severity=severity.value,
        )
        return AlertOutcome(breach=breach, severity=severity, alert_id=alert.id)

    def reading_status(self, outcomes: list[AlertOutcome]) -> AlertStatus:
        """Highest severity among the breaches that count toward a reading's status."""
        counted = [
            outcome.severity
            for outcome in outcomes
            if not outcome.suppressed or self.policy.suppressed_breaches_mark_reading
        ]
        return highest_status(counted)

    async def acknowledge_alert(self, alert_id: int, actor: str, at_time: datetime) -> Alert:
        """
        Mark an alert acknowledged.

        Raises:
            ValidationError: blank actor.
            AlertNotFound: unknown alert id.
            AlreadyAcknowledged: the alert was acknowledged before.
        """
        if not actor or not actor.strip():
            raise ValidationError("actor is required to acknowledge an alert", field="actor")
        when = as_utc(at_time)

        def work(tx: StoreTransaction) -> Alert:
            if not tx.acknowledge_alert(alert_id, actor.strip(), when):
                existing = tx.get_alert(alert_id)
                if existing is None:
                    raise AlertNotFound("alert does not exist", alert_id=alert_id)
                raise AlreadyAcknowledged(
                    "alert is already acknowledged",
                    alert_id=alert_id,
                    acknowledged_by=existing.acknowledged_by,
                )
            alert = tx.get_alert(alert_id)
            if alert is None:
                raise AlertNotFound("alert does not exist", alert_id=alert_id)
            return alert

        alert = await self._transactions.run(work, "acknowledge_alert")
        self.logger.info("alert_acknowledged", alert_id=alert_id, actor=alert.acknowledged_by)
        return alert
