import pytest

import crud


def _notifications(client, headers):
    r = client.get("/notifications", headers=headers)
    assert r.status_code == 200
    return r.json()


def test_assignees_are_notified_except_creator(api, client, acme):
    admin, admin_h = acme["admin"]
    alice, alice_h = acme["alice"]
    api.todo(admin_h, "acme", "Angebot", assignee_ids=[alice["id"], admin["id"]])

    assert _notifications(client, admin_h) == []
    notes = _notifications(client, alice_h)
    assert len(notes) == 1
    assert notes[0]["type"] == "todo_assigned"
    assert notes[0]["title"] == "Neues ToDo zugewiesen"
    assert notes[0]["message"] == 'Sie wurden "Angebot" zugewiesen'
    assert notes[0]["read"] is False


def test_later_assignment_notifies_only_new_assignees(api, client, acme):
    _, admin_h = acme["admin"]
    alice, alice_h = acme["alice"]
    bob, bob_h = acme["bob"]
    todo = api.todo(admin_h, "acme", "Angebot", assignee_ids=[alice["id"]])

    client.post(
        f"/companies/acme/todos/{todo['id']}/assignees",
        json={"user_ids": [alice["id"], bob["id"]]},
        headers=admin_h,
    )
    assert len(_notifications(client, alice_h)) == 1
    assert len(_notifications(client, bob_h)) == 1


def test_status_change_notifies_creator_and_assignees(api, client, acme):
    _, admin_h = acme["admin"]
    alice, alice_h = acme["alice"]
    bob, bob_h = acme["bob"]
    todo = api.todo(admin_h, "acme", "Angebot", assignee_ids=[alice["id"], bob["id"]])
    client.post("/notifications/read-all", headers=alice_h)
    client.delete("/notifications", headers=bob_h)

    r = client.put(f"/companies/acme/todos/{todo['id']}/status", json={"status": "in_progress"}, headers=alice_h)
    assert r.status_code == 200

    admin_notes = _notifications(client, admin_h)
    assert [n["type"] for n in admin_notes] == ["todo_status_changed"]
    assert admin_notes[0]["message"] == '"Angebot" wurde von Offen zu In Bearbeitung geändert'
    assert [n["type"] for n in _notifications(client, bob_h)] == ["todo_status_changed"]
    # the acting user is never notified
    assert client.get("/notifications/unread-count", headers=alice_h).json() == {"unread": 0}


def test_same_status_does_not_notify(api, client, acme):
    _, admin_h = acme["admin"]
    alice, alice_h = acme["alice"]
    todo = api.todo(admin_h, "acme", "Angebot", assignee_ids=[alice["id"]])

    client.put(f"/companies/acme/todos/{todo['id']}/status", json={"status": "open", "note": "noch offen"}, headers=alice_h)
    assert _notifications(client, admin_h) == []


def test_comment_notifies_others(api, client, acme):
    _, admin_h = acme["admin"]
    alice, alice_h = acme["alice"]
    todo = api.todo(admin_h, "acme", "Angebot", assignee_ids=[alice["id"]])

    client.post(f"/companies/acme/todos/{todo['id']}/comments", json={"content": "Frage"}, headers=alice_h)

    notes = _notifications(client, admin_h)
    assert [n["type"] for n in notes] == ["todo_comment"]
    assert notes[0]["message"] == 'Alice hat "Angebot" kommentiert'
    assert [n["type"] for n in _notifications(client, alice_h)] == ["todo_assigned"]


def test_read_and_delete(api, client, acme):
    _, admin_h = acme["admin"]
    alice, alice_h = acme["alice"]
    _, bob_h = acme["bob"]
    api.todo(admin_h, "acme", "Eins", assignee_ids=[alice["id"]])
    api.todo(admin_h, "acme", "Zwei", assignee_ids=[alice["id"]])

    notes = _notifications(client, alice_h)
    assert [n["message"] for n in notes] == ['Sie wurden "Zwei" zugewiesen', 'Sie wurden "Eins" zugewiesen']
    assert client.get("/notifications/unread-count", headers=alice_h).json() == {"unread": 2}

    first_id = notes[0]["id"]
    # other users cannot touch alice's notifications
    assert client.post(f"/notifications/{first_id}/read", headers=bob_h).status_code == 404
    assert client.delete(f"/notifications/{first_id}", headers=bob_h).status_code == 404

    r = client.post(f"/notifications/{first_id}/read", headers=alice_h)
    assert r.status_code == 200
    assert r.json()["read"] is True
    assert r.json()["read_at"] is not None
    assert client.get("/notifications/unread-count", headers=alice_h).json() == {"unread": 1}

    assert client.post("/notifications/read-all", headers=alice_h).json()["updated"] == 1
    assert client.get("/notifications/unread-count", headers=alice_h).json() == {"unread": 0}

    assert client.delete(f"/notifications/{first_id}", headers=alice_h).status_code == 200
    assert len(_notifications(client, alice_h)) == 1
    assert client.delete("/notifications", headers=alice_h).json()["deleted"] == 1
    assert _notifications(client, alice_h) == []


def test_limit(api, client, acme):
    _, admin_h = acme["admin"]
    alice, alice_h = acme["alice"]
    for i in range(3):
        api.todo(admin_h, "acme", f"ToDo {i}", assignee_ids=[alice["id"]])

    r = client.get("/notifications", params={"limit": 2}, headers=alice_h)
    assert len(r.json()) == 2
    assert client.get("/notifications", params={"limit": 0}, headers=alice_h).status_code == 422


def test_unknown_notification_type_is_rejected(db, acme):
    admin, _ = acme["admin"]
    with pytest.raises(ValueError):
        crud.create_notification(db, admin["id"], None, "spam", "t", "m")
