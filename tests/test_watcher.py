from bson import ObjectId

import database
import watcher


def _change(operation, coll="leads", before=None, after=None):
    return {
        "operationType": operation,
        "ns": {"db": "crm", "coll": coll},
        "documentKey": {"_id": ObjectId("65f000000000000000000001")},
        "fullDocumentBeforeChange": before,
        "fullDocument": after,
    }


def test_event_from_change_kinds():
    created = watcher.event_from_change(_change("insert", after={"name": "x"}))
    assert created.kind == "created"
    assert created.collection == "leads"
    assert created.document_id == "65f000000000000000000001"
    assert watcher.event_from_change(_change("update")).kind == "updated"
    assert watcher.event_from_change(_change("replace")).kind == "updated"
    assert watcher.event_from_change(_change("delete")) is None
    assert watcher.event_from_change({"operationType": "invalidate"}) is None


def test_change_event_drives_assignment_trigger(push, agent_id, monkeypatch):
    monkeypatch.setattr(database, "TRIGGER_MODE", "change_stream")
    lead_id = database.create_document("leads", {"name": "Nisha Rao", "status": "New"})
    before = database.get_document("leads", lead_id)
    after = dict(before, assigned_to=agent_id)
    change = _change("update", before=before, after=after)
    change["documentKey"]["_id"] = before["_id"]

    watcher.triggers.dispatch(watcher.event_from_change(change))
    assert [m["token"] for m in push.sent] == ["device-ravi"]
