# tests_services/test_catalog.py
import pytest
from sqlalchemy import text

from cpops.services import action_log, catalog, history, lifecycle, links, messages
from cpops.services.errors import (
    BadRequest,
    InvalidReassignTarget,
    MinimumCardinalityViolation,
    NotFound,
    StatusLinked,
)

from .conftest import ROW_LOCK, at, closed_at


def test_create_event_seeds_defaults(conn):
    event_id = catalog.create_event(conn, name=" Fair ", date="2024-08-10", now=at(0))

    statuses = catalog.list_statuses(conn, event_id)
    assert [s["name"] for s in statuses] == [s["name"] for s in catalog.DEFAULT_STATUSES]
    assert [s["name"] for s in statuses if s["is_closed"]] == ["Arrived at first-aid post"]

    names = [t["name"] for t in catalog.list_team_types(conn, event_id)]
    assert names == sorted(catalog.DEFAULT_TEAM_TYPES)

    stored = conn.execute(text("SELECT name FROM events WHERE id = :eid"), {"eid": event_id}).scalar_one()
    assert stored == "Fair"


def test_create_event_requires_name_and_date(conn):
    with pytest.raises(BadRequest):
        catalog.create_event(conn, name="", date="2024-08-10")
    with pytest.raises(BadRequest):
        catalog.create_event(conn, name="Fair", date=None)


def test_list_events_newest_date_first(conn):
    first = catalog.create_event(conn, name="Spring Fair", date="2024-04-01")
    second = catalog.create_event(conn, name="Autumn Fair", date="2024-10-01")
    assert [e["id"] for e in catalog.list_events(conn)] == [second, first]


def test_get_missing_event(conn):
    with pytest.raises(NotFound):
        catalog.get_event(conn, 777)


def test_update_event_normalises_fields(conn, event):
    catalog.update_event(
        conn, event["id"], name=" Summer Fest ", date="2024-06-02",
        end_date="  ", location=" Park ", organizer=None, description="  as typed  ", now=at(5),
    )
    stored = catalog.get_event(conn, event["id"])
    assert stored["name"] == "Summer Fest"
    assert stored["date"] == "2024-06-02"
    assert stored["end_date"] is None
    assert stored["location"] == "Park"
    assert stored["organizer"] is None
    assert stored["description"] == "  as typed  "
    logged = [i["message"] for i in action_log.list_logs(conn, event["id"], limit=100)["items"]]
    assert "Event details updated" in logged


@pytest.mark.parametrize("fields", [
    {"name": "", "date": "2024-06-02"},
    {"name": "Fest", "date": None},
    {"name": "Fest", "date": "2024-06-02", "location": 12},
    {"name": "Fest", "date": "2024-06-02", "description": ["x"]},
])
def test_update_event_rejects_bad_fields(conn, event, fields):
    with pytest.raises(BadRequest):
        catalog.update_event(conn, event["id"], **fields)
    assert catalog.get_event(conn, event["id"])["name"] == "Summer Festival"


def test_delete_event_removes_everything_it_owns(conn, event):
    iid = lifecycle.create_intervention(
        conn, event["id"], "Nosebleed", status_id=event["S3"], team_ids=[event["T1"]], now=at(0)
    )
    messages.post_message(conn, iid, "Patient seated", now=at(1))
    catalog.add_team_member(conn, event["T1"], "Jan", "Nurse", now=at(2))
    other = catalog.create_event(conn, name="Other", date="2024-07-01")

    catalog.delete_event(conn, event["id"])

    with pytest.raises(NotFound):
        catalog.get_event(conn, event["id"])
    for table in (
        "interventions", "intervention_teams", "intervention_status_history",
        "intervention_messages", "team_members", "teams", "team_types", "statuses", "logs",
    ):
        left = conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()
        if table in ("team_types", "statuses", "logs"):
            owned = conn.execute(
                text(f"SELECT COUNT(*) FROM {table} WHERE event_id = :eid"), {"eid": other}
            ).scalar_one()
            assert left == owned, table
        else:
            assert left == 0, table


def test_delete_missing_event(conn):
    with pytest.raises(NotFound):
        catalog.delete_event(conn, 31337)


def test_create_status_unknown_event(conn):
    with pytest.raises(NotFound):
        catalog.create_status(conn, 555, "Ghost")


def test_create_status_default_color(conn, event):
    sid = catalog.create_status(conn, event["id"], "Waiting")
    status = catalog.get_status(conn, sid)
    assert status["color"] == "#3b82f6"
    assert status["is_closed"] is False


def test_update_status_requires_a_field(conn, event):
    with pytest.raises(BadRequest):
        catalog.update_status(conn, event["S1"], name="  ")


def test_update_status_rename_only(conn, event):
    catalog.update_status(conn, event["S3"], name="Holding", color="#111111")
    status = catalog.get_status(conn, event["S3"])
    assert status["name"] == "Holding"
    assert status["color"] == "#111111"


def test_closing_a_status_closes_interventions(conn, event):
    iid = lifecycle.create_intervention(
        conn, event["id"], "Heat stroke", status_id=event["S1"], team_ids=[event["T1"]], now=at(0)
    )
    lifecycle.transition_team_status(conn, iid, event["T1"], event["S3"], now=at(100))
    assert closed_at(conn, iid) is None

    catalog.update_status(conn, event["S3"], is_closed=True, now=at(150))
    assert closed_at(conn, iid) == at(150)
    assert history.open_team_ids(conn, iid) == set()


def test_reopening_a_status_reopens_interventions(conn, event):
    iid = lifecycle.create_intervention(
        conn, event["id"], "Cut finger", status_id=event["S2"], team_ids=[event["T1"]], now=at(0)
    )
    assert closed_at(conn, iid) == at(0)

    catalog.update_status(conn, event["S2"], is_closed=False, now=at(30))
    assert closed_at(conn, iid) is None
    running = [r for r in history.list_history(conn, iid) if r.ended_at is None]
    assert len(running) == 1
    assert running[0].started_at == at(30)
    assert running[0].status_id == event["S2"]


def test_delete_linked_status_without_policy_is_rejected(conn, event):
    iid = lifecycle.create_intervention(
        conn, event["id"], "Fainting", status_id=event["S3"], team_ids=[event["T1"]], now=at(0)
    )

    with pytest.raises(StatusLinked) as exc:
        catalog.delete_status(conn, event["S3"], now=at(10))
    assert exc.value.options == ["set_null", "reassign"]
    assert exc.value.to_dict()["error"] == "status_linked"

    # nothing changed
    assert catalog.get_status(conn, event["S3"])["name"] == "Standby"
    assert links.get_link(conn, iid, event["T1"]).status_id == event["S3"]


def test_reassign_to_closing_status_closes_and_rolls_history(conn, event):
    iid = lifecycle.create_intervention(
        conn, event["id"], "Allergic reaction", status_id=event["S3"], team_ids=[event["T1"]], now=at(0)
    )

    catalog.delete_status(conn, event["S3"], policy="reassign", reassign_to=event["S2"], now=at(40))

    assert links.get_link(conn, iid, event["T1"]).status_id == event["S2"]
    assert closed_at(conn, iid) == at(40)
    rows = history.list_history(conn, iid)
    assert [(r.status_id, r.started_at, r.ended_at) for r in rows] == [
        (event["S3"], at(0), at(40)),
        (event["S2"], at(40), at(40)),
    ]
    with pytest.raises(NotFound):
        catalog.get_status(conn, event["S3"])


def test_reassign_closing_status_to_open_one_reopens(conn, event):
    iid = lifecycle.create_intervention(
        conn, event["id"], "Concussion", status_id=event["S1"], team_ids=[event["T1"]], now=at(0)
    )
    lifecycle.transition_team_status(conn, iid, event["T1"], event["S2"], now=at(10))
    assert closed_at(conn, iid) == at(10)

    catalog.delete_status(conn, event["S2"], policy="reassign", reassign_to=event["S3"], now=at(20))

    assert links.get_link(conn, iid, event["T1"]).status_id == event["S3"]
    assert closed_at(conn, iid) is None
    running = [r for r in history.list_history(conn, iid) if r.ended_at is None]
    assert [(r.status_id, r.started_at) for r in running] == [(event["S3"], at(20))]


def test_delete_with_set_null_keeps_intervention_open(conn, event):
    iid = lifecycle.create_intervention(
        conn, event["id"], "Sprain", status_id=event["S3"], team_ids=[event["T1"]], now=at(0)
    )

    catalog.delete_status(conn, event["S3"], policy="set_null", now=at(20))

    link = links.get_link(conn, iid, event["T1"])
    assert link.status_id is None
    assert link.is_closed is False
    assert closed_at(conn, iid) is None
    running = [r for r in history.list_history(conn, iid) if r.ended_at is None]
    assert [(r.status_id, r.started_at) for r in running] == [(None, at(20))]


@pytest.mark.parametrize("target", [None, "abc", "self", 99999])
def test_delete_reassign_rejects_bad_targets(conn, event, target):
    lifecycle.create_intervention(
        conn, event["id"], "Bee sting", status_id=event["S3"], team_ids=[event["T1"]], now=at(0)
    )
    if target == "self":
        target = event["S3"]
    with pytest.raises(InvalidReassignTarget):
        catalog.delete_status(conn, event["S3"], policy="reassign", reassign_to=target, now=at(5))


def test_delete_reassign_rejects_status_of_other_event(conn, event):
    other = catalog.create_event(conn, name="Other", date="2024-07-01")
    foreign = catalog.list_statuses(conn, other)[0]["id"]
    lifecycle.create_intervention(
        conn, event["id"], "Bee sting", status_id=event["S3"], team_ids=[event["T1"]], now=at(0)
    )
    with pytest.raises(InvalidReassignTarget):
        catalog.delete_status(conn, event["S3"], policy="reassign", reassign_to=foreign, now=at(5))


def test_delete_unused_status(conn, event):
    catalog.delete_status(conn, event["S3"], now=at(1))
    ids = [s["id"] for s in catalog.list_statuses(conn, event["id"])]
    assert event["S3"] not in ids


def test_delete_last_status_is_refused(conn):
    event_id = catalog.create_event(conn, name="Tiny", date="2024-09-01")
    statuses = catalog.list_statuses(conn, event_id)
    for s in statuses[:-1]:
        catalog.delete_status(conn, s["id"])

    with pytest.raises(MinimumCardinalityViolation):
        catalog.delete_status(conn, statuses[-1]["id"])


def test_delete_missing_status(conn, event):
    with pytest.raises(NotFound):
        catalog.delete_status(conn, 424242)


def test_history_keeps_label_of_deleted_status(conn, event):
    from cpops.services import durations

    iid = lifecycle.create_intervention(
        conn, event["id"], "Dehydration", status_id=event["S3"], team_ids=[event["T1"]], now=at(0)
    )
    catalog.delete_status(conn, event["S3"], policy="reassign", reassign_to=event["S1"], now=at(25))

    totals = {d.status_name: d.total_seconds for d in durations.status_durations(conn, iid, now=at(60))}
    assert totals == {
        f"Status {event['S3']}": 25,
        "Available at first-aid post": 35,
    }


# ---------- team types / teams ----------

def _type_id(conn, event_id, name):
    return next(t["id"] for t in catalog.list_team_types(conn, event_id) if t["name"] == name)


def test_rename_team_type_relabels_teams(conn, event):
    catalog.rename_team_type(conn, _type_id(conn, event["id"], "Field"), "Foot patrol")

    by_name = {t["name"]: t["type"] for t in catalog.list_teams(conn, event["id"])}
    assert by_name == {"Alpha": "Foot patrol", "Bravo": "Foot patrol", "Charlie": "Medical"}


def test_delete_used_team_type_requires_reassign(conn, event):
    field_id = _type_id(conn, event["id"], "Field")

    with pytest.raises(StatusLinked) as exc:
        catalog.delete_team_type(conn, field_id)
    assert exc.value.code == "team_type_linked"
    assert exc.value.options == ["reassign"]

    with pytest.raises(StatusLinked):
        catalog.delete_team_type(conn, field_id, policy="set_null")


def test_delete_team_type_with_reassign(conn, event):
    field_id = _type_id(conn, event["id"], "Field")
    mobile_id = _type_id(conn, event["id"], "Mobile")

    with pytest.raises(InvalidReassignTarget):
        catalog.delete_team_type(conn, field_id, policy="reassign", reassign_to=field_id)

    catalog.delete_team_type(conn, field_id, policy="reassign", reassign_to=mobile_id)

    types = [t["name"] for t in catalog.list_team_types(conn, event["id"])]
    assert "Field" not in types
    assert {t["type"] for t in catalog.list_teams(conn, event["id"]) if t["name"] != "Charlie"} == {"Mobile"}


def test_delete_unused_team_type(conn, event):
    catalog.delete_team_type(conn, _type_id(conn, event["id"], "Command"))
    assert "Command" not in [t["name"] for t in catalog.list_team_types(conn, event["id"])]


def test_delete_last_team_type_is_refused(conn):
    event_id = catalog.create_event(conn, name="Tiny", date="2024-09-01")
    types = catalog.list_team_types(conn, event_id)
    for t in types[:-1]:
        catalog.delete_team_type(conn, t["id"])
    with pytest.raises(MinimumCardinalityViolation):
        catalog.delete_team_type(conn, types[-1]["id"])


def test_create_team_with_unknown_type(conn, event):
    with pytest.raises(BadRequest):
        catalog.create_team(conn, event["id"], "Delta", "Helicopter")


def test_list_teams_sorted_by_name(conn, event):
    names = [t["name"] for t in catalog.list_teams(conn, event["id"])]
    assert names == ["Alpha", "Bravo", "Charlie"]


def test_status_delete_locks_interventions_before_repointing(conn, event, statements):
    lifecycle.create_intervention(
        conn, event["id"], "Cramp", status_id=event["S3"], team_ids=[event["T1"]], now=at(0)
    )
    statements.clear()

    catalog.delete_status(conn, event["S3"], policy="reassign", reassign_to=event["S1"], now=at(5))

    lock = next(i for i, s in enumerate(statements) if "FROM interventions" in s and ROW_LOCK in s)
    repoint = next(i for i, s in enumerate(statements) if s.startswith("UPDATE intervention_teams"))
    assert lock < repoint


def test_team_members_listed_with_their_team(conn, event):
    jan = catalog.add_team_member(conn, event["T1"], " Jan ", "Nurse", now=at(1))
    catalog.add_team_member(conn, event["T2"], "Els", None, now=at(2))

    teams = {t["name"]: t["members"] for t in catalog.list_teams(conn, event["id"])}
    assert teams["Alpha"] == [{"id": jan, "team_id": event["T1"], "name": "Jan", "role": "Nurse"}]
    assert [m["name"] for m in teams["Bravo"]] == ["Els"]
    assert teams["Charlie"] == []

    logged = [i["message"] for i in action_log.list_logs(conn, event["id"], limit=100)["items"]]
    assert 'Member added to team "Alpha": Jan (Nurse)' in logged
    assert 'Member added to team "Bravo": Els' in logged


def test_add_member_validation(conn, event):
    with pytest.raises(BadRequest):
        catalog.add_team_member(conn, event["T1"], "  ")
    with pytest.raises(NotFound):
        catalog.add_team_member(conn, 9999, "Jan")


def test_remove_team_member(conn, event):
    member_id = catalog.add_team_member(conn, event["T1"], "Jan", now=at(1))
    catalog.remove_team_member(conn, member_id, now=at(2))

    alpha = next(t for t in catalog.list_teams(conn, event["id"]) if t["name"] == "Alpha")
    assert alpha["members"] == []
    logged = [i["message"] for i in action_log.list_logs(conn, event["id"], limit=100)["items"]]
    assert 'Member removed from team "Alpha": Jan' in logged

    with pytest.raises(NotFound):
        catalog.remove_team_member(conn, member_id)
