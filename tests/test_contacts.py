from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

import contacts
from errors import BadRequest, NotFound


def contact_doc(i=0, **overrides):
    doc = {
        "name": f"Buyer {chr(65 + i % 26)}",
        "email": f"buyer{i}@example.com",
        "phone": f"+1555000{i:04d}",
        "interestedUnit": None,
        "message": "Looking for a family villa with a garden.",
        "status": "Pending",
        "priority": "Medium",
        "source": "Website",
        "tags": [],
        "createdAt": datetime(2024, 5, 1, tzinfo=timezone.utc) + timedelta(minutes=i),
        "updatedAt": datetime(2024, 5, 1, tzinfo=timezone.utc) + timedelta(minutes=i),
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def twenty_five(db):
    db["contact"].insert_many([contact_doc(i) for i in range(25)])
    return db


def test_create_contact_applies_defaults_and_ignores_admin_fields(db):
    doc = contacts.create_contact(db, {
        "name": "  John Smith ",
        "email": "John@Example.com",
        "phone": "+15551234567",
        "message": "Please call me about the lake villas.",
        "status": "Resolved",
        "priority": "Urgent",
        "salesComment": "sneaky",
    })

    stored = db["contact"].find_one({"_id": doc["_id"]})
    assert stored["name"] == "John Smith"
    assert stored["email"] == "john@example.com"
    assert stored["status"] == "Pending"
    assert stored["priority"] == "Medium"
    assert stored["source"] == "Website"
    assert stored["salesComment"] is None
    assert isinstance(stored["createdAt"], datetime)
    assert stored["createdAt"].utcoffset() == timedelta(0)


def test_pagination_first_page(twenty_five):
    result = contacts.list_contacts(twenty_five, page=1, limit=10)
    assert len(result["contacts"]) == 10
    assert result["pagination"] == {
        "current": 1, "total": 3, "hasNext": True, "hasPrev": False, "totalItems": 25,
    }


def test_pagination_last_page(twenty_five):
    result = contacts.list_contacts(twenty_five, page=3, limit=10)
    assert len(result["contacts"]) == 5
    assert result["pagination"]["hasNext"] is False
    assert result["pagination"]["hasPrev"] is True


def test_limit_is_clamped(twenty_five):
    assert contacts.list_contacts(twenty_five, limit=500)["pagination"]["total"] == 1
    result = contacts.list_contacts(twenty_five, limit=0)
    assert len(result["contacts"]) == 1
    assert result["pagination"]["total"] == 25


def test_default_sort_newest_first(twenty_five):
    items = contacts.list_contacts(twenty_five, limit=3)["contacts"]
    assert [c["email"] for c in items] == ["buyer24@example.com", "buyer23@example.com", "buyer22@example.com"]


def test_sort_override(twenty_five):
    items = contacts.list_contacts(twenty_five, limit=2, sort_by="createdAt", sort_order="asc")["contacts"]
    assert [c["email"] for c in items] == ["buyer0@example.com", "buyer1@example.com"]


def test_filters_are_anded(db):
    db["contact"].insert_many([
        contact_doc(0, status="Pending", priority="High"),
        contact_doc(1, status="Pending", priority="Low"),
        contact_doc(2, status="Resolved", priority="High"),
    ])
    result = contacts.list_contacts(db, status="Pending", priority="High")
    assert [c["email"] for c in result["contacts"]] == ["buyer0@example.com"]


def test_search_across_fields(db):
    db["contact"].insert_many([
        contact_doc(0, interestedUnit="Cluster A villa 7"),
        contact_doc(1, message="Do you have PENTHOUSE options?"),
        contact_doc(2, phone="+4477001122"),
    ])
    assert contacts.list_contacts(db, search="villa 7")["pagination"]["totalItems"] == 1
    assert contacts.list_contacts(db, search="penthouse")["pagination"]["totalItems"] == 1
    assert contacts.list_contacts(db, search="+44")["pagination"]["totalItems"] == 1
    assert contacts.list_contacts(db, search="buyer1@")["pagination"]["totalItems"] == 1


def test_get_contact_unknown_or_malformed(db):
    with pytest.raises(NotFound):
        contacts.get_contact(db, str(ObjectId()))
    with pytest.raises(NotFound):
        contacts.get_contact(db, "not-an-id")


def test_update_stamps_actor_snapshot(db, admin):
    contact_id = db["contact"].insert_one(contact_doc()).inserted_id
    updated = contacts.update_contact(db, str(contact_id), {"status": "In Progress", "salesComment": "Called"}, admin)

    assert updated["status"] == "In Progress"
    assert updated["salesComment"] == "Called"
    assert updated["updatedBy"] == {
        "username": "admin", "email": "admin@example.com", "userId": str(admin["_id"]),
    }
    assert updated["updatedAt"] > datetime(2024, 5, 2, tzinfo=timezone.utc)


def test_any_status_transition_is_accepted(db, admin):
    contact_id = db["contact"].insert_one(contact_doc(status="Resolved")).inserted_id
    updated = contacts.update_contact(db, contact_id, {"status": "Pending"}, admin)
    assert updated["status"] == "Pending"


def test_update_missing_contact(db, admin):
    with pytest.raises(NotFound):
        contacts.update_contact(db, str(ObjectId()), {"status": "Resolved"}, admin)


def test_delete_contact(db, admin):
    contact_id = db["contact"].insert_one(contact_doc()).inserted_id
    contacts.delete_contact(db, str(contact_id), admin)
    assert db["contact"].count_documents({}) == 0
    with pytest.raises(NotFound):
        contacts.delete_contact(db, str(contact_id), admin)


def test_bulk_update_counts_only_existing(db, admin):
    id1 = db["contact"].insert_one(contact_doc(1)).inserted_id
    id2 = db["contact"].insert_one(contact_doc(2)).inserted_id
    modified = contacts.bulk_update(db, [str(id1), str(id2), str(ObjectId()), "nonexistent"],
                                    {"status": "Resolved"}, admin)

    assert modified == 2
    for doc in db["contact"].find():
        assert doc["status"] == "Resolved"
        assert doc["updatedBy"]["username"] == "admin"


@pytest.mark.parametrize("ids", [None, [], "abc"])
def test_bulk_update_requires_id_list(db, admin, ids):
    with pytest.raises(BadRequest):
        contacts.bulk_update(db, ids, {"status": "Resolved"}, admin)


def test_contact_stats(db):
    now = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)
    db["contact"].insert_many([
        contact_doc(0, status="Pending", priority="High", createdAt=now - timedelta(days=1)),
        contact_doc(1, status="In Progress", source="Phone", createdAt=now - timedelta(days=1, hours=2)),
        contact_doc(2, status="In Progress", createdAt=now - timedelta(days=3)),
        contact_doc(3, status="Cancelled", createdAt=now - timedelta(days=10)),
    ])
    stats = contacts.contact_stats(db, now=now)

    assert stats["statusStats"] == {
        "total": 4, "pending": 1, "inProgress": 2, "resolved": 0, "cancelled": 1,
    }
    assert {s["_id"]: s["count"] for s in stats["priorityStats"]} == {"High": 1, "Medium": 3}
    assert {s["_id"]: s["count"] for s in stats["sourceStats"]} == {"Website": 3, "Phone": 1}
    assert stats["recentActivity"] == [
        {"_id": "2024-05-07", "count": 1},
        {"_id": "2024-05-09", "count": 2},
    ]


def test_csv_export_format(db):
    db["contact"].insert_many([
        contact_doc(0, createdAt=datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)),
        contact_doc(1, interestedUnit="A-7", message='He said "ASAP"',
                    createdAt=datetime(2024, 5, 2, tzinfo=timezone.utc)),
    ])
    csv_text = contacts.to_csv(contacts.export_contacts(db))
    lines = csv_text.split("\n")

    assert lines[0] == "Name,Email,Phone,Interested Unit,Message,Status,Priority,Source,Created At"
    assert lines[1] == (
        '"Buyer B","buyer1@example.com","+15550000001","A-7","He said "ASAP"",'
        '"Pending","Medium","Website","2024-05-02T00:00:00+00:00"'
    )
    assert lines[2].startswith('"Buyer A","buyer0@example.com","+15550000000","",')
    assert len(lines) == 3


def test_csv_writes_missing_values_as_empty(db):
    db["contact"].insert_one({**contact_doc(0, source=None), "createdAt": None})
    row = contacts.to_csv(contacts.export_contacts(db)).split("\n")[1]

    assert "None" not in row
    assert row.endswith('"Pending","Medium","",""')


def test_export_filters(db):
    db["contact"].insert_many([contact_doc(0, source="Referral"), contact_doc(1)])
    assert [c["source"] for c in contacts.export_contacts(db, source="Referral")] == ["Referral"]
