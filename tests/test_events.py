from __future__ import annotations

from datetime import UTC, datetime

from sqlmodel import Session, SQLModel, create_engine, select

from ambulink.domain.models import EventEnvelope, EventRecord
from ambulink.infra import redis_state
from ambulink.infra.events import EventBus


def test_event_bus_publish_and_subscribe() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []
    everything: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_id)

    event = EventEnvelope(
        event_type="onboarded",
        organization_id="org-a",
        payload={"trip_id": "trip-1"},
    )
    bus.subscribe("onboarded", handler)
    bus.subscribe("*", lambda received: everything.append(received.event_type))

    with Session(engine) as session:
        bus.publish(event, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert len(stored) == 1
    assert stored[0].event_id == event.event_id
    assert stored[0].organization_id == "org-a"
    assert seen == [event.event_id]
    assert everything == ["onboarded"]


def test_failing_subscriber_does_not_reach_publisher() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    bus = EventBus()

    def broken(_event: EventEnvelope) -> None:
        raise RuntimeError("subscriber down")

    bus.subscribe("offboarded", broken)
    event = EventEnvelope(event_type="offboarded", organization_id="org-a", payload={})

    with Session(engine) as session:
        bus.publish(event, session=session)
        session.commit()
        assert session.exec(select(EventRecord)).one().event_id == event.event_id


def test_fanout_reaches_every_named_organization() -> None:
    event = EventEnvelope(
        event_type="onboarded",
        organization_id="hospital-a",
        ts=datetime(2026, 1, 1, tzinfo=UTC),
        payload={
            "destination_organization_id": "hospital-b",
            "vehicle_organization_id": "fleet-a",
            "fleet_id": "fleet-a",
        },
    )

    assert redis_state.fanout_channels(event) == [
        redis_state.organization_channel("hospital-a"),
        redis_state.organization_channel("hospital-b"),
        redis_state.organization_channel("fleet-a"),
    ]
