from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from pageant.config import Settings
from pageant.main import create_app
from pageant.store import InMemoryStore

ADMIN = {"X-Admin-Key": "secret"}


@pytest.fixture
def client() -> TestClient:
    app = create_app(settings=Settings(admin_api_key="secret"), store=InMemoryStore.create())
    return TestClient(app)


def setup_event(client: TestClient) -> dict:
    event = client.post(
        "/api/admin/events", json={"name": "Pageant 2024", "event_date": "2024-12-15"}, headers=ADMIN
    ).json()
    eid = event["id"]
    c1 = client.post(
        f"/api/admin/events/{eid}/contestants",
        json={"name": "Maria Santos", "age": 20, "course": "BS CS", "year": "3rd Year"},
        headers=ADMIN,
    ).json()
    c2 = client.post(
        f"/api/admin/events/{eid}/contestants",
        json={"name": "Ana Rodriguez", "age": 19, "course": "BSBA", "year": "2nd Year"},
        headers=ADMIN,
    ).json()
    cat = client.post(
        f"/api/admin/events/{eid}/categories",
        json={"name": "Beauty & Poise", "max_score": 25, "weight": 0.25},
        headers=ADMIN,
    ).json()
    ja = client.post(
        f"/api/admin/events/{eid}/judges",
        json={"name": "Prof. Elena Cruz", "role": "Head Judge", "create_account": True},
        headers=ADMIN,
    ).json()
    jb = client.post(
        f"/api/admin/events/{eid}/judges",
        json={"name": "Dr. Roberto Santos", "role": "Faculty Judge", "create_account": True},
        headers=ADMIN,
    ).json()
    return {"event": event, "c1": c1, "c2": c2, "cat": cat, "ja": ja, "jb": jb}


def submit(client: TestClient, judge: dict, contestant: dict, scores: dict):
    return client.post(
        f"/api/judge/contestants/{contestant['id']}/scores",
        json={"scores": scores},
        headers={"X-Judge-Key": judge["judge_key"]},
    )


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


def test_admin_requires_key(client):
    """管理 API はキーなしで 401、誤ったキーで 403。"""

    assert client.get("/api/admin/events").status_code == 401
    assert client.get("/api/admin/events", headers={"X-Admin-Key": "nope"}).status_code == 403


def test_admin_disabled_without_configured_key():
    app = create_app(settings=Settings(admin_api_key=""), store=InMemoryStore.create())
    resp = TestClient(app).get("/api/admin/events", headers={"X-Admin-Key": "anything"})
    assert resp.status_code == 503


def test_scoring_flow_and_public_results(client):
    """2 名採点済み・1 名未採点のシナリオを API 経由で確認する。"""

    s = setup_event(client)
    assert submit(client, s["ja"], s["c1"], {s["cat"]["id"]: 20}).status_code == 200
    assert submit(client, s["jb"], s["c1"], {s["cat"]["id"]: 24}).status_code == 200

    resp = client.get("/api/public/active-event")
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "no-store, max-age=0"
    data = resp.json()
    assert [(r["contestant_id"], r["total"], r["rank"]) for r in data["rankings"]] == [
        (s["c1"]["id"], 5.5, 1),
        (s["c2"]["id"], 0.0, 2),
    ]
    assert data["rankings"][0]["candidate_number"] == 2
    assert data["rankings"][0]["label"] == "Winner"
    assert [j["name"] for j in data["judges"]] == ["Judge 1", "Judge 2"]
    assert all("judge_key" not in j for j in data["judges"])


def test_resubmission_replaces_previous_scores(client):
    s = setup_event(client)
    cat_id = s["cat"]["id"]
    submit(client, s["ja"], s["c1"], {cat_id: 20})
    submit(client, s["jb"], s["c1"], {cat_id: 24})
    submit(client, s["ja"], s["c1"], {cat_id: 23})

    report = client.get(f"/api/admin/events/{s['event']['id']}/report", headers=ADMIN).json()
    (c1,) = [d for d in report["detailed_scores"] if d["contestant"]["id"] == s["c1"]["id"]]
    assert c1["category_scores"][0]["average_score"] == 23.5
    assert report["statistics"]["total_scores_submitted"] == 2


def test_report_statistics(client):
    """4 件中 3 件採点済みで完了率 75%。"""

    s = setup_event(client)
    cat_id = s["cat"]["id"]
    submit(client, s["ja"], s["c1"], {cat_id: 20})
    submit(client, s["jb"], s["c1"], {cat_id: 24})
    submit(client, s["ja"], s["c2"], {cat_id: 10})

    report = client.get(f"/api/admin/events/{s['event']['id']}/report", headers=ADMIN).json()
    stats = report["statistics"]
    assert stats["completion_percentage"] == 75
    assert stats["total_possible_submissions"] == 4
    assert stats["total_possible_score"] == 25
    assert [c["name"] for c in report["contestants"]] == ["Ana Rodriguez", "Maria Santos"]


@pytest.mark.parametrize("value", [-1, 26, "abc", "1_5", 10**400])
def test_invalid_score_is_rejected_without_partial_write(client, value):
    """不正な値が 1 つでもあれば 400 で、何も保存されない。"""

    s = setup_event(client)
    eid = s["event"]["id"]
    talent = client.post(
        f"/api/admin/events/{eid}/categories",
        json={"name": "Talent", "max_score": 20, "weight": 0.2},
        headers=ADMIN,
    ).json()

    resp = submit(client, s["ja"], s["c1"], {talent["id"]: 15, s["cat"]["id"]: value})
    assert resp.status_code == 400

    data = client.get("/api/judge/event-data", headers={"X-Judge-Key": s["ja"]["judge_key"]}).json()
    assert data["scores"] == []


def test_boundary_scores_are_accepted(client):
    s = setup_event(client)
    assert submit(client, s["ja"], s["c1"], {s["cat"]["id"]: 0}).status_code == 200
    assert submit(client, s["ja"], s["c2"], {s["cat"]["id"]: 25}).status_code == 200


def test_cross_event_contestant_is_not_found(client):
    """別イベントの出場者には採点できない。"""

    old = setup_event(client)
    new = setup_event(client)  # 新しいイベントがアクティブになる

    resp = submit(client, new["ja"], old["c1"], {new["cat"]["id"]: 10})
    assert resp.status_code == 404


def test_unknown_category_is_rejected(client):
    s = setup_event(client)
    resp = submit(client, s["ja"], s["c1"], {"cat_missing": 10})
    assert resp.status_code == 400
    assert "invalid category" in resp.json()["detail"]


def test_judge_key_is_required_and_scoped_to_active_event(client):
    old = setup_event(client)
    setup_event(client)

    assert client.get("/api/judge/event-data").status_code == 401
    resp = client.get("/api/judge/event-data", headers={"X-Judge-Key": old["ja"]["judge_key"]})
    assert resp.status_code == 403


def test_placeholder_judge_cannot_score(client):
    """キーのない審査員はそもそも認証できない。"""

    s = setup_event(client)
    placeholder = client.post(
        f"/api/admin/events/{s['event']['id']}/judges",
        json={"name": "Guest", "role": "Guest Judge"},
        headers=ADMIN,
    ).json()
    assert placeholder["judge_key"] is None
    resp = client.get("/api/judge/event-data", headers={"X-Judge-Key": "None"})
    assert resp.status_code == 403


def test_judge_contestant_view(client):
    s = setup_event(client)
    submit(client, s["ja"], s["c1"], {s["cat"]["id"]: 18})

    resp = client.get(
        f"/api/judge/contestants/{s['c1']['id']}", headers={"X-Judge-Key": s["ja"]["judge_key"]}
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["contestant"]["candidate_number"] == 2
    assert data["scores"] == {s["cat"]["id"]: 18.0}

    other = client.get(
        f"/api/judge/contestants/{s['c1']['id']}", headers={"X-Judge-Key": s["jb"]["judge_key"]}
    ).json()
    assert other["scores"] == {}


def test_deleting_category_removes_its_scores(client):
    s = setup_event(client)
    eid = s["event"]["id"]
    submit(client, s["ja"], s["c1"], {s["cat"]["id"]: 20})

    resp = client.delete(f"/api/admin/events/{eid}/categories/{s['cat']['id']}", headers=ADMIN)
    assert resp.status_code == 200

    report = client.get(f"/api/admin/events/{eid}/report", headers=ADMIN).json()
    assert report["statistics"]["total_scores_submitted"] == 0
    assert all(r["total"] == 0 for r in report["rankings"])


def test_activate_switches_active_event(client):
    first = setup_event(client)
    setup_event(client)

    resp = client.post(f"/api/admin/events/{first['event']['id']}/activate", headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["is_active"] is True

    active = client.get("/api/public/active-event").json()
    assert active["event"]["id"] == first["event"]["id"]
    events = client.get("/api/public/events").json()
    assert [e["is_active"] for e in events].count(True) == 1


def test_missing_entities_return_404(client):
    s = setup_event(client)
    eid = s["event"]["id"]

    assert client.get("/api/public/events/evt_missing").status_code == 404
    assert client.get(f"/api/admin/events/{eid}/contestants/c_missing", headers=ADMIN).status_code == 404
    assert client.delete(f"/api/admin/events/{eid}/judges/j_missing", headers=ADMIN).status_code == 404
    assert client.post("/api/admin/events/evt_missing/activate", headers=ADMIN).status_code == 404
    assert (
        client.post(
            "/api/admin/events/evt_missing/categories",
            json={"name": "X", "max_score": 10, "weight": 0.5},
            headers=ADMIN,
        ).status_code
        == 404
    )


def test_no_active_event_returns_404(client):
    assert client.get("/api/public/active-event").status_code == 404


def test_event_detail_reports_weight_total(client):
    """重みの合計が 1.0 でなくても保存でき、合計値として見える。"""

    s = setup_event(client)
    eid = s["event"]["id"]
    client.post(
        f"/api/admin/events/{eid}/categories",
        json={"name": "Talent", "max_score": 20, "weight": 0.2},
        headers=ADMIN,
    )
    detail = client.get(f"/api/admin/events/{eid}", headers=ADMIN).json()
    assert detail["weight_total"] == pytest.approx(0.45)
    assert [c["name"] for c in detail["contestants"]] == ["Ana Rodriguez", "Maria Santos"]


def test_update_contestant(client):
    s = setup_event(client)
    eid = s["event"]["id"]
    resp = client.put(
        f"/api/admin/events/{eid}/contestants/{s['c1']['id']}",
        json={"name": "Maria S.", "age": 21, "course": "BS CS", "year": "4th Year"},
        headers=ADMIN,
    )
    assert resp.status_code == 200
    assert resp.json()["name"] == "Maria S."
    assert resp.json()["id"] == s["c1"]["id"]


def test_admin_event_list_includes_counts(client):
    """管理画面の一覧には出場者・審査員・部門の件数を含める。"""

    s = setup_event(client)
    client.post(
        "/api/admin/events", json={"name": "Empty", "event_date": "2025-01-10"}, headers=ADMIN
    )

    events = {e["id"]: e for e in client.get("/api/admin/events", headers=ADMIN).json()}
    full = events[s["event"]["id"]]
    assert (full["contestant_count"], full["judge_count"], full["category_count"]) == (2, 2, 1)
    (empty,) = [e for e in events.values() if e["name"] == "Empty"]
    assert (empty["contestant_count"], empty["judge_count"], empty["category_count"]) == (0, 0, 0)


def test_event_detail_includes_score_count(client):
    s = setup_event(client)
    eid = s["event"]["id"]
    assert client.get(f"/api/admin/events/{eid}", headers=ADMIN).json()["score_count"] == 0

    submit(client, s["ja"], s["c1"], {s["cat"]["id"]: 20})
    submit(client, s["jb"], s["c1"], {s["cat"]["id"]: 21})
    assert client.get(f"/api/admin/events/{eid}", headers=ADMIN).json()["score_count"] == 2


def test_public_events_are_ordered_by_event_date(client):
    """公開一覧は作成順ではなく開催日の新しい順。"""

    for name, day in [("Spring", "2025-03-01"), ("Winter", "2024-12-15"), ("Summer", "2025-07-20")]:
        client.post("/api/admin/events", json={"name": name, "event_date": day}, headers=ADMIN)

    resp = client.get("/api/public/events")
    assert resp.headers["cache-control"] == "no-store, max-age=0"
    assert [e["name"] for e in resp.json()] == ["Summer", "Spring", "Winter"]
