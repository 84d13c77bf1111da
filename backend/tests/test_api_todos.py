import pytest


@pytest.fixture()
def board(api, acme):
    """
    admin: "Angebot" assigned to alice
    bob:   "Bobs Liste" (private)
    alice: "Alices Idee" (own)
    """
    _, admin_h = acme["admin"]
    alice, alice_h = acme["alice"]
    _, bob_h = acme["bob"]
    return {
        "assigned": api.todo(admin_h, "acme", "Angebot", assignee_ids=[alice["id"]], priority="high"),
        "bobs": api.todo(bob_h, "acme", "Bobs Liste"),
        "own": api.todo(alice_h, "acme", "Alices Idee"),
    }


def _titles(client, headers, **params):
    r = client.get("/companies/acme/todos", params=params, headers=headers)
    assert r.status_code == 200, r.text
    return [t["title"] for t in r.json()]


# ------------------------------------------------------------------
# Visibility
# ------------------------------------------------------------------

def test_plain_user_sees_own_and_assigned(client, acme, board):
    _, alice_h = acme["alice"]
    assert sorted(_titles(client, alice_h)) == ["Alices Idee", "Angebot"]


@pytest.mark.parametrize("username", ["admin", "gl", "superuser"])
def test_elevated_roles_see_everything(client, acme, board, username):
    _, headers = acme[username]
    assert sorted(_titles(client, headers)) == ["Alices Idee", "Angebot", "Bobs Liste"]


def test_list_is_newest_first(client, acme, board):
    _, admin_h = acme["admin"]
    assert _titles(client, admin_h) == ["Alices Idee", "Bobs Liste", "Angebot"]


def test_non_member_gets_empty_list(api, client, board):
    _, outsider_h = api.user("outsider")
    assert _titles(client, outsider_h) == []


def test_hidden_todo_is_forbidden(client, acme, board):
    _, alice_h = acme["alice"]
    r = client.get(f"/companies/acme/todos/{board['bobs']['id']}", headers=alice_h)
    assert r.status_code == 403
    assert client.get("/companies/acme/todos/99999", headers=alice_h).status_code == 404


def test_todo_of_other_company_is_forbidden_even_for_admin(api, client, acme):
    _, admin_h = acme["admin"]
    api.company(admin_h, "beta", "Beta KG")
    foreign = api.todo(admin_h, "beta", "Nur Beta")

    r = client.get(f"/companies/acme/todos/{foreign['id']}", headers=admin_h)
    assert r.status_code == 403
    r = client.put(f"/companies/acme/todos/{foreign['id']}", json={"title": "x"}, headers=admin_h)
    assert r.status_code == 403
    assert client.get(f"/companies/beta/todos/{foreign['id']}", headers=admin_h).status_code == 200


def test_filters(client, acme, board):
    _, admin_h = acme["admin"]
    _, alice_h = acme["alice"]
    client.put(
        f"/companies/acme/todos/{board['own']['id']}/status",
        json={"status": "done"},
        headers=alice_h,
    )
    assert _titles(client, admin_h, status="done") == ["Alices Idee"]
    assert _titles(client, alice_h, assigned_to_me=True) == ["Angebot"]

    r = client.get("/companies/acme/todos", params={"status": "kaputt"}, headers=admin_h)
    assert r.status_code == 400


def test_archived_todos_are_hidden_by_default(client, acme, board):
    _, admin_h = acme["admin"]
    _, alice_h = acme["alice"]
    todo_id = board["bobs"]["id"]

    r = client.post(f"/companies/acme/todos/{todo_id}/archive", headers=admin_h)
    assert r.status_code == 200
    assert r.json()["archived"] is True
    assert "Bobs Liste" not in _titles(client, admin_h)
    assert "Bobs Liste" in _titles(client, admin_h, include_archived=True)

    # assignee without edit rights cannot archive
    r = client.post(f"/companies/acme/todos/{board['assigned']['id']}/archive", headers=alice_h)
    assert r.status_code == 403

    client.post(f"/companies/acme/todos/{todo_id}/unarchive", headers=admin_h)
    assert "Bobs Liste" in _titles(client, admin_h)


# ------------------------------------------------------------------
# Edit / status asymmetry
# ------------------------------------------------------------------

def test_assignee_flags(client, acme, board):
    _, alice_h = acme["alice"]
    r = client.get(f"/companies/acme/todos/{board['assigned']['id']}", headers=alice_h)
    body = r.json()
    assert (body["can_edit"], body["can_change_status"], body["can_delete"]) == (False, True, False)

    r = client.get(f"/companies/acme/todos/{board['own']['id']}", headers=alice_h)
    body = r.json()
    assert (body["can_edit"], body["can_change_status"], body["can_delete"]) == (True, True, True)


def test_assignee_can_change_status_but_not_edit_or_delete(client, acme, board):
    _, alice_h = acme["alice"]
    todo_id = board["assigned"]["id"]

    r = client.put(f"/companies/acme/todos/{todo_id}", json={"title": "Neu"}, headers=alice_h)
    assert r.status_code == 403
    assert client.delete(f"/companies/acme/todos/{todo_id}", headers=alice_h).status_code == 403

    r = client.put(
        f"/companies/acme/todos/{todo_id}/status",
        json={"status": "question", "note": "Welcher Kunde?"},
        headers=alice_h,
    )
    assert r.status_code == 200
    assert r.json()["status"] == "question"
    assert r.json()["question_note"] == "Welcher Kunde?"


def test_unrelated_user_cannot_change_status(client, acme, board):
    _, bob_h = acme["bob"]
    r = client.put(
        f"/companies/acme/todos/{board['assigned']['id']}/status",
        json={"status": "done"},
        headers=bob_h,
    )
    assert r.status_code == 403


def test_management_edits_and_deletes_foreign_todo(client, acme, board):
    _, gl_h = acme["gl"]
    todo_id = board["bobs"]["id"]

    r = client.put(
        f"/companies/acme/todos/{todo_id}",
        json={"title": "Bobs Liste (geprüft)", "priority": "urgent"},
        headers=gl_h,
    )
    assert r.status_code == 200
    assert r.json()["title"] == "Bobs Liste (geprüft)"
    assert r.json()["priority"] == "urgent"

    assert client.delete(f"/companies/acme/todos/{todo_id}", headers=gl_h).status_code == 200
    assert client.get(f"/companies/acme/todos/{todo_id}", headers=gl_h).status_code == 404


def test_invalid_values_are_rejected(client, acme, board):
    _, admin_h = acme["admin"]
    todo_id = board["assigned"]["id"]
    assert client.put(f"/companies/acme/todos/{todo_id}", json={"priority": "sofort"}, headers=admin_h).status_code == 400
    assert client.put(f"/companies/acme/todos/{todo_id}", json={"title": "  "}, headers=admin_h).status_code == 400
    r = client.put(f"/companies/acme/todos/{todo_id}/status", json={"status": "weg"}, headers=admin_h)
    assert r.status_code == 400
    r = client.post("/companies/acme/todos", json={"title": ""}, headers=admin_h)
    assert r.status_code == 400


def test_non_member_cannot_create_todo(api, client, acme):
    _, outsider_h = api.user("outsider")
    r = client.post("/companies/acme/todos", json={"title": "Eindringen"}, headers=outsider_h)
    assert r.status_code == 403


# ------------------------------------------------------------------
# Assignees
# ------------------------------------------------------------------

def test_assignees_must_be_company_members(api, client, acme):
    _, admin_h = acme["admin"]
    outsider, _ = api.user("outsider")
    r = client.post("/companies/acme/todos", json={"title": "X", "assignee_ids": [outsider["id"]]}, headers=admin_h)
    assert r.status_code == 400


def test_add_and_remove_assignees(client, acme, board):
    _, admin_h = acme["admin"]
    alice, _ = acme["alice"]
    bob, bob_h = acme["bob"]
    todo_id = board["assigned"]["id"]

    r = client.post(f"/companies/acme/todos/{todo_id}/assignees", json={"user_ids": [bob["id"], alice["id"]]}, headers=admin_h)
    assert r.status_code == 200
    assert sorted(a["user_id"] for a in r.json()["assignees"]) == sorted([alice["id"], bob["id"]])
    assert "Angebot" in _titles(client, bob_h)

    r = client.delete(f"/companies/acme/todos/{todo_id}/assignees/{bob['id']}", headers=admin_h)
    assert r.status_code == 200
    assert [a["user_id"] for a in r.json()["assignees"]] == [alice["id"]]
    assert "Angebot" not in _titles(client, bob_h)


# ------------------------------------------------------------------
# Timeline
# ------------------------------------------------------------------

def test_activities_follow_status_notes(client, acme, board):
    _, alice_h = acme["alice"]
    todo_id = board["assigned"]["id"]

    client.put(f"/companies/acme/todos/{todo_id}/status", json={"status": "in_progress", "note": "läuft"}, headers=alice_h)
    client.put(f"/companies/acme/todos/{todo_id}/status", json={"status": "done", "note": "erledigt"}, headers=alice_h)

    r = client.get(f"/companies/acme/todos/{todo_id}/activities", headers=alice_h)
    assert r.status_code == 200
    entries = r.json()
    assert [e["type"] for e in entries] == ["created", "status_change", "status_change"]
    assert [(e["old_value"], e["new_value"], e["note"]) for e in entries[1:]] == [
        ("open", "in_progress", "läuft"),
        ("in_progress", "done", "erledigt"),
    ]
    assert entries[0]["user"] == {"name": "Anna Admin", "email": "admin@example.com"}


def test_activities_need_view_rights(client, acme, board):
    _, alice_h = acme["alice"]
    r = client.get(f"/companies/acme/todos/{board['bobs']['id']}/activities", headers=alice_h)
    assert r.status_code == 403


# ------------------------------------------------------------------
# Subtasks
# ------------------------------------------------------------------

def test_subtasks(client, acme, board):
    _, admin_h = acme["admin"]
    alice, alice_h = acme["alice"]
    todo_id = board["assigned"]["id"]
    base = f"/companies/acme/todos/{todo_id}/subtasks"

    first = client.post(base, json={"title": "Preise prüfen", "assignee_ids": [alice["id"]]}, headers=admin_h).json()
    second = client.post(base, json={"title": "PDF erstellen"}, headers=admin_h).json()
    assert (first["order_index"], second["order_index"]) == (0, 1)

    # assignees may progress subtasks but not add them
    assert client.post(base, json={"title": "Mehr"}, headers=alice_h).status_code == 403
    r = client.put(f"{base}/{first['id']}/status", json={"status": "done", "note": "ok"}, headers=alice_h)
    assert r.status_code == 200
    assert r.json()["done_note"] == "ok"

    r = client.put(f"{base}/{second['id']}", json={"title": "PDF versenden"}, headers=admin_h)
    assert r.json()["title"] == "PDF versenden"

    todo = client.get(f"/companies/acme/todos/{todo_id}", headers=admin_h).json()
    assert [s["title"] for s in todo["subtasks"]] == ["Preise prüfen", "PDF versenden"]

    assert client.delete(f"{base}/{first['id']}", headers=alice_h).status_code == 403
    assert client.delete(f"{base}/{first['id']}", headers=admin_h).status_code == 200
    assert client.delete(f"{base}/{first['id']}", headers=admin_h).status_code == 404


# ------------------------------------------------------------------
# Comments
# ------------------------------------------------------------------

def test_comments(client, acme, board):
    _, admin_h = acme["admin"]
    _, alice_h = acme["alice"]
    _, bob_h = acme["bob"]
    base = f"/companies/acme/todos/{board['assigned']['id']}/comments"

    r = client.post(base, json={"content": "Bin dran"}, headers=alice_h)
    assert r.status_code == 200
    comment = r.json()
    assert comment["username"] == "alice"

    assert client.post(base, json={"content": "Hallo"}, headers=bob_h).status_code == 403
    assert client.post(base, json={"content": "   "}, headers=alice_h).status_code == 400
    assert [c["content"] for c in client.get(base, headers=admin_h).json()] == ["Bin dran"]

    admin_comment = client.post(base, json={"content": "Danke"}, headers=admin_h).json()
    # alice may not delete the admin's comment, the admin may delete any
    assert client.delete(f"{base}/{admin_comment['id']}", headers=alice_h).status_code == 403
    assert client.delete(f"{base}/{comment['id']}", headers=admin_h).status_code == 200
