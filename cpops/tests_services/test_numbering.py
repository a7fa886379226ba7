# tests_services/test_numbering.py
import pytest
from sqlalchemy import text

from cpops.services import catalog, lifecycle, numbering
from cpops.services.errors import NotFound

from .conftest import at


def _numbers(conn, event_id):
    return conn.execute(
        text("""
            SELECT intervention_number FROM interventions
            WHERE event_id = :eid ORDER BY created_at, id
        """),
        {"eid": event_id},
    ).scalars().all()


def test_numbers_are_sequential_per_event(conn, event):
    other = catalog.create_event(conn, name="Other", date="2024-07-01")
    for i in range(3):
        lifecycle.create_intervention(conn, event["id"], f"Case {i}", now=at(i))
    lifecycle.create_intervention(conn, other, "Elsewhere", now=at(5))

    assert _numbers(conn, event["id"]) == [1, 2, 3]
    assert _numbers(conn, other) == [1]


def test_next_number_after_delete_uses_max(conn, event):
    a = lifecycle.create_intervention(conn, event["id"], "A", now=at(0))
    lifecycle.create_intervention(conn, event["id"], "B", now=at(1))
    lifecycle.delete_intervention(conn, a, now=at(2))

    assert numbering.next_intervention_number(conn, event["id"]) == 3


def test_next_number_unknown_event(conn):
    with pytest.raises(NotFound):
        numbering.next_intervention_number(conn, 777)


def test_repair_renumbers_by_creation_order(conn, event):
    ids = [lifecycle.create_intervention(conn, event["id"], f"Case {i}", now=at(i * 10)) for i in range(4)]
    lifecycle.delete_intervention(conn, ids[1], now=at(50))
    conn.execute(
        text("UPDATE interventions SET intervention_number = 9 WHERE id = :iid"), {"iid": ids[3]}
    )
    assert _numbers(conn, event["id"]) == [1, 3, 9]

    rewritten = numbering.repair_intervention_numbering(conn, event["id"])

    assert rewritten == 2
    assert _numbers(conn, event["id"]) == [1, 2, 3]
    assert numbering.repair_intervention_numbering(conn, event["id"]) == 0


def test_repair_all_numbering(conn, event):
    other = catalog.create_event(conn, name="Other", date="2024-07-01")
    lifecycle.create_intervention(conn, event["id"], "A", now=at(0))
    lifecycle.create_intervention(conn, other, "B", now=at(1))
    conn.execute(text("UPDATE interventions SET intervention_number = intervention_number + 4"))

    assert numbering.repair_all_numbering(conn) == 2
    assert _numbers(conn, event["id"]) == [1]
    assert _numbers(conn, other) == [1]
