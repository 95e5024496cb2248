import pytest
from sqlalchemy import select

from borne_biometrique.config import RoutingSettings
from borne_biometrique.models.audit_event import AuditEvent
from borne_biometrique.models.risk_alert import AlertSeverity
from borne_biometrique.models.session import SessionStatus
from borne_biometrique.schemas.risk import SessionScores
from borne_biometrique.schemas.routing import RoutingContext, RoutingDestination, RoutingPriority
from borne_biometrique.schemas.session import SessionCreate
from borne_biometrique.services.risk_service import RiskAggregator
from borne_biometrique.services.routing_service import RoutingEngine


@pytest.fixture
def engine_rules(audit, sessions):
    return RoutingEngine(audit=audit, sessions=sessions)


def context(**kwargs):
    data = dict(session_id="session-1", terminal_id="KIOSK-01")
    data.update(kwargs)
    return RoutingContext(**data)


class TestDecide:

    def test_critical_alert_wins_over_everything(self, engine_rules):
        decision = engine_rules.decide(context(
            alert_severities=[AlertSeverity.MEDIUM, AlertSeverity.CRITICAL],
            risk_score=0.95,
            terminal_type="KIOSK_LAB",
            service_requested="URGENCES",
        ))
        assert decision.destination == RoutingDestination.AUDIT_OFFICE
        assert decision.priority == RoutingPriority.URGENT

    def test_high_risk_goes_to_document_window(self, engine_rules):
        decision = engine_rules.decide(context(risk_score=0.8, terminal_type="KIOSK_LAB"))
        assert decision.destination == RoutingDestination.DOCUMENT_WINDOW
        assert decision.priority == RoutingPriority.PRIORITY

    def test_high_risk_threshold_is_configurable(self, audit, sessions):
        strict = RoutingEngine(audit=audit, sessions=sessions, routing_settings=RoutingSettings(high_risk_score=0.5))
        assert strict.decide(context(risk_score=0.6)).destination == RoutingDestination.DOCUMENT_WINDOW
        assert strict.decide(context(risk_score=0.49)).destination == RoutingDestination.WAITING_ROOM

    def test_non_critical_alerts_do_not_divert(self, engine_rules):
        decision = engine_rules.decide(context(alert_severities=[AlertSeverity.HIGH], risk_score=0.79))
        assert decision.destination == RoutingDestination.WAITING_ROOM

    @pytest.mark.parametrize("terminal_type, destination", [
        ("KIOSK_LAB", RoutingDestination.LABORATORY),
        ("KIOSK_PHARMACY", RoutingDestination.PHARMACY),
        ("KIOSK_IMAGING", RoutingDestination.IMAGING),
    ])
    def test_terminal_type_routes(self, engine_rules, terminal_type, destination):
        decision = engine_rules.decide(context(terminal_type=terminal_type, service_requested="URGENCES"))
        assert decision.destination == destination
        assert decision.priority == RoutingPriority.NORMAL

    @pytest.mark.parametrize("service, destination", [
        ("URGENCES", RoutingDestination.EMERGENCY),
        ("urgences", RoutingDestination.EMERGENCY),
        ("Consultation_Specialiste", RoutingDestination.SPECIALIST),
        ("TRIAGE", RoutingDestination.TRIAGE),
        ("ORTHOPEDIE", RoutingDestination.WAITING_ROOM),
    ])
    def test_requested_service_routes(self, engine_rules, service, destination):
        decision = engine_rules.decide(context(terminal_type="KIOSK_ACCUEIL", service_requested=service))
        assert decision.destination == destination

    def test_default_destination(self, engine_rules):
        decision = engine_rules.decide(context())
        assert decision.destination == RoutingDestination.WAITING_ROOM
        assert decision.priority == RoutingPriority.NORMAL
        assert decision.reason == "Enregistrement terminé avec succès"

    def test_every_decision_has_instructions(self, engine_rules):
        for destination in RoutingDestination:
            assert engine_rules._decision(destination, "r", RoutingPriority.NORMAL).instructions


async def test_route_completes_session_and_audits(db, engine_rules, sessions):
    session = await sessions.create(db, SessionCreate(terminal_id="KIOSK-07", terminal_type="KIOSK_PHARMACY"))

    ctx = await engine_rules.build_context(db, session)
    decision = await engine_rules.route(db, ctx)

    assert decision.destination == RoutingDestination.PHARMACY
    assert session.status == SessionStatus.COMPLETED
    assert session.routing_decision == "PHARMACY"
    assert session.routing_reason == decision.reason
    assert session.completed_at is not None

    event = (await db.execute(select(AuditEvent).where(AuditEvent.action == "ROUTING_DECISION"))).scalar_one()
    assert event.session_id == session.id
    assert event.terminal_id == "KIOSK-07"
    assert event.details["destination"] == "PHARMACY"


async def test_fraudulent_session_keeps_its_status(db, engine_rules, sessions, audit, risk_thresholds):
    session = await sessions.create(db, SessionCreate(terminal_id="KIOSK-01"))
    aggregator = RiskAggregator(risk_thresholds, audit=audit, sessions=sessions)
    await aggregator.evaluate_session(db, session.id, SessionScores(
        liveness_score=0.1, face_match_score=0.1, document_match_score=0.1
    ))

    ctx = await engine_rules.build_context(db, session, service_requested="PHARMACIE")
    assert AlertSeverity.CRITICAL in ctx.alert_severities
    assert ctx.risk_score == 1.0

    decision = await engine_rules.route(db, ctx)

    assert decision.destination == RoutingDestination.AUDIT_OFFICE
    assert session.status == SessionStatus.FRAUD_DETECTED
    assert session.routing_decision == "AUDIT_OFFICE"


async def test_resolved_alerts_are_ignored(db, engine_rules, sessions, audit, risk_thresholds):
    session = await sessions.create(db, SessionCreate(terminal_id="KIOSK-01"))
    aggregator = RiskAggregator(risk_thresholds, audit=audit, sessions=sessions)
    result = await aggregator.evaluate_session(db, session.id, SessionScores(liveness_score=0.1))
    await aggregator.resolve_alert(db, result.alert_ids[0], "operateur-1", "Vérifié au guichet")

    ctx = await engine_rules.build_context(db, session)
    assert ctx.alert_severities == []
    assert engine_rules.decide(ctx).destination == RoutingDestination.WAITING_ROOM
