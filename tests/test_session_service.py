import pytest

from borne_biometrique.exceptions import InvalidTransitionError, NotFoundError
from borne_biometrique.models.session import SessionStatus
from borne_biometrique.schemas.session import SessionCreate


async def test_create_and_fetch(db, sessions):
    created = await sessions.create(db, SessionCreate(terminal_id="KIOSK-01", terminal_type="KIOSK_LAB"))

    assert created.status == SessionStatus.INITIATED
    assert created.started_at is not None
    assert (await sessions.get(db, created.id)) is created
    assert (await sessions.get_by_code(db, created.session_code)).id == created.id


async def test_unknown_session(db, sessions):
    with pytest.raises(NotFoundError):
        await sessions.get(db, "inconnue")
    with pytest.raises(NotFoundError):
        await sessions.get_by_code(db, "inconnu")


async def test_status_only_moves_forward(db, sessions):
    session = await sessions.create(db, SessionCreate(terminal_id="KIOSK-01"))

    await sessions.advance(db, session, SessionStatus.LIVENESS_CHECK, liveness_score=0.9)
    await sessions.advance(db, session, SessionStatus.ANTISPOOF_CHECK)
    assert session.liveness_score == 0.9

    with pytest.raises(InvalidTransitionError):
        await sessions.advance(db, session, SessionStatus.LIVENESS_CHECK)
    assert session.status == SessionStatus.ANTISPOOF_CHECK

    # Même statut : mise à jour des scores autorisée
    await sessions.update_scores(db, session, spoof_score=0.1)
    assert session.status == SessionStatus.ANTISPOOF_CHECK
    assert session.spoof_score == 0.1


async def test_terminal_states_cannot_be_swapped(db, sessions):
    session = await sessions.create(db, SessionCreate(terminal_id="KIOSK-01"))
    await sessions.advance(db, session, SessionStatus.SPOOF_DETECTED)

    with pytest.raises(InvalidTransitionError):
        await sessions.advance(db, session, SessionStatus.DIRECT_DECISION)

    await sessions.advance(db, session, SessionStatus.COMPLETED)
    with pytest.raises(InvalidTransitionError):
        await sessions.mark_fraud(db, session)


async def test_unknown_field_is_rejected(db, sessions):
    session = await sessions.create(db, SessionCreate(terminal_id="KIOSK-01"))
    with pytest.raises(ValueError):
        await sessions.advance(db, session, SessionStatus.LIVENESS_CHECK, terminal_id="KIOSK-99")


async def test_completion_sets_timestamp_and_routing(db, sessions):
    session = await sessions.create(db, SessionCreate(terminal_id="KIOSK-01"))
    assert session.completed_at is None

    await sessions.complete(db, session, "WAITING_ROOM", "Enregistrement terminé avec succès")

    assert session.status == SessionStatus.COMPLETED
    assert session.completed_at is not None
    assert session.routing_decision == "WAITING_ROOM"


async def test_listing_and_stats(db, sessions):
    a = await sessions.create(db, SessionCreate(terminal_id="KIOSK-01"))
    b = await sessions.create(db, SessionCreate(terminal_id="KIOSK-01"))
    c = await sessions.create(db, SessionCreate(terminal_id="KIOSK-02"))
    d = await sessions.create(db, SessionCreate(terminal_id="KIOSK-02"))

    await sessions.complete(db, a, "WAITING_ROOM", "ok")
    await sessions.advance(db, b, SessionStatus.LIVENESS_FAILED)
    await sessions.mark_fraud(db, c)
    await sessions.advance(db, d, SessionStatus.ERROR)

    assert {s.id for s in await sessions.list_by_terminal(db, "KIOSK-01")} == {a.id, b.id}
    assert len(await sessions.list_by_terminal(db, "KIOSK-01", limit=1)) == 1

    stats = await sessions.stats(db)
    assert stats.total == 4
    assert stats.completed == 1
    assert stats.failed == 2
    assert stats.fraud_detected == 1
    assert stats.success_rate == pytest.approx(25.0)
    assert stats.fraud_rate == pytest.approx(25.0)

    kiosk_two = await sessions.stats(db, terminal_id="KIOSK-02")
    assert kiosk_two.total == 2
    assert kiosk_two.completed == 0


async def test_empty_stats(db, sessions):
    stats = await sessions.stats(db)
    assert stats.total == 0
    assert stats.success_rate == 0.0
