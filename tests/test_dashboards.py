import json

import pytest

from app.tenanthub.db import session_scope
from app.tenanthub.models import Role, User
from app.tenanthub.modules.dashboards.models import Dashboard, DashboardVersion
from app.tenanthub.modules.dashboards.seeder import ContributionError, DashboardContributionSeeder, parse_contribution

LAYOUT = {
    "schema_version": 1,
    "columns": 12,
    "row_height": 80,
    "items": [
        {"id": "title", "widget_type": "heading", "params": {"text_key": "t", "level": "h1"}, "grid": {"x": 0, "y": 0, "w": 12, "h": 1}}
    ],
}


@pytest.fixture()
def seeded(app):
    with session_scope(app) as s:
        result = DashboardContributionSeeder(s).seed()
    return result


def _system_id(app, code, workbench):
    with session_scope(app) as s:
        return (
            s.query(Dashboard.id)
            .filter(Dashboard.tenant_id.is_(None), Dashboard.code == code, Dashboard.workbench == workbench)
            .scalar()
        )


def _create(sess, code="ops_home", **extra):
    payload = {"code": code, "titleKey": "dashboard.OPS.home", "moduleCode": "OPS", "workbench": "user", **extra}
    r = sess.post("/api/ui/dashboards", json=payload)
    assert r.status_code == 201, r.json
    return r.json["data"]["id"]


def test_seeder_creates_system_dashboards(app, seeded):
    assert seeded.to_dict() == {"files": 2, "seeded": 3, "errors": 0}
    with session_scope(app) as s:
        rows = s.query(Dashboard).order_by(Dashboard.code, Dashboard.workbench).all()
        assert [(d.code, d.workbench, d.visibility) for d in rows] == [
            ("cnt_storage", "admin", "system"),
            ("msg_overview", "admin", "system"),
            ("msg_overview", "user", "system"),
        ]
        assert all(d.tenant_id is None and d.created_by == "system" for d in rows)


def test_seeder_is_idempotent(app, seeded):
    with session_scope(app) as s:
        again = DashboardContributionSeeder(s).seed()
    assert again.seeded == 3
    with session_scope(app) as s:
        assert s.query(Dashboard).count() == 3
        assert s.query(DashboardVersion).count() == 3


def test_seeder_counts_bad_files(app, tmp_path):
    good = tmp_path / "good"
    good.mkdir()
    (good / "dashboard.contribution.json").write_text(
        json.dumps(
            {
                "module_code": "TST",
                "dashboards": [{"code": "tst", "title_key": "t", "workbenches": ["user"], "layout": LAYOUT}],
            }
        )
    )
    broken = tmp_path / "broken"
    broken.mkdir()
    (broken / "dashboard.contribution.json").write_text("{not json")
    invalid = tmp_path / "invalid"
    invalid.mkdir()
    (invalid / "dashboard.contribution.json").write_text(
        json.dumps(
            {
                "module_code": "BAD",
                "dashboards": [{"code": "bad", "title_key": "t", "workbenches": ["user"], "layout": {"columns": 12}}],
            }
        )
    )

    with session_scope(app) as s:
        result = DashboardContributionSeeder(s).seed(tmp_path)
    assert result.to_dict() == {"files": 3, "seeded": 1, "errors": 2}
    assert DashboardContributionSeeder.find_contribution_files(tmp_path / "missing") == []


def test_parse_contribution_rules():
    with pytest.raises(ContributionError):
        parse_contribution([])
    with pytest.raises(ContributionError):
        parse_contribution({"module_code": "X", "dashboards": []})
    with pytest.raises(ContributionError):
        parse_contribution({"module_code": "X", "dashboards": [{"code": "x", "title_key": "t", "workbenches": []}]})

    parsed = parse_contribution(
        {
            "module_code": "X",
            "dashboards": [
                {
                    "code": "x",
                    "title_key": "t",
                    "workbenches": ["user"],
                    "acl": [{"principal_type": "role", "principal_key": "member", "permission": "view"}],
                    "layout": LAYOUT,
                }
            ],
        }
    )
    dash = parsed["dashboards"][0]
    assert dash["sort_order"] == 100
    assert dash["acl"] == [{"principalType": "role", "principalKey": "member", "permission": "view"}]


def test_listing_respects_acl(seeded, alice, bob, login):
    r = bob.get("/api/ui/dashboards?workbench=user")
    assert r.status_code == 200
    data = r.json["data"]
    assert data["total"] == 1
    assert data["groups"][0]["moduleCode"] == "MSG"
    assert data["groups"][0]["dashboards"][0]["permission"] == "view"

    assert bob.get("/api/ui/dashboards?workbench=admin").json["data"]["total"] == 1

    data = alice.get("/api/ui/dashboards?workbench=admin").json["data"]
    assert data["total"] == 2
    assert [g["moduleCode"] for g in data["groups"]] == ["CNT", "MSG"]
    assert {d["permission"] for g in data["groups"] for d in g["dashboards"]} == {"edit"}

    assert login("vera@acme.test").get("/api/ui/dashboards").status_code == 403


def test_resolve_system_and_fallback(seeded, bob):
    r = bob.get("/api/ui/dashboards/resolve?code=msg_overview&workbench=user")
    data = r.json["data"]
    assert data["tier"] == "system"
    assert data["versionNo"] == 1
    assert len(data["layout"]["items"]) == 5
    assert data["layout"]["items"][4]["params"]["page_size"] == 10

    data = bob.get("/api/ui/dashboards/resolve?code=nope").json["data"]
    assert data == {
        "tier": "fallback",
        "dashboard": None,
        "versionNo": None,
        "layout": {"schema_version": 1, "columns": 12, "row_height": 80, "items": []},
    }

    r = bob.get("/api/ui/dashboards/resolve")
    assert r.status_code == 400


def test_fork_overrides_system_for_tenant(app, seeded, alice, bob, dave):
    system_id = _system_id(app, "msg_overview", "user")
    r = alice.post(f"/api/ui/dashboards/{system_id}/duplicate", json={"newCode": "msg_overview"})
    assert r.status_code == 201
    fork_id = r.json["data"]["id"]

    for sess in (alice, bob):
        data = sess.get("/api/ui/dashboards/resolve?code=msg_overview&workbench=user").json["data"]
        assert data["tier"] == "tenant_fork"
        assert data["dashboard"]["id"] == fork_id
        assert data["dashboard"]["forkedFromId"] == system_id

    assert dave.get("/api/ui/dashboards/resolve?code=msg_overview&workbench=user").json["data"]["tier"] == "system"

    acl = alice.get(f"/api/ui/dashboards/{fork_id}/acl").json["data"]
    assert {(a["principalType"], a["principalKey"], a["permission"]) for a in acl} == {
        ("role", "member", "view"),
        ("role", "admin", "edit"),
    }

    r = alice.post(f"/api/ui/dashboards/{system_id}/duplicate", json={"newCode": "msg_overview"})
    assert r.status_code == 409
    assert r.json["error"]["code"] == "DASHBOARD_CODE_EXISTS"

    r = alice.post(f"/api/ui/dashboards/{system_id}/duplicate")
    assert r.status_code == 201


def test_user_dashboard_wins_for_owner_only(app, seeded, alice, bob, ids):
    with session_scope(app) as s:
        d = Dashboard(
            tenant_id=ids["tenant:acme"],
            code="msg_overview",
            title_key="mine",
            module_code="MSG",
            workbench="user",
            visibility="user",
            owner_id=str(ids["bob"]),
            created_by=str(ids["bob"]),
        )
        s.add(d)
        s.flush()
        s.add(DashboardVersion(tenant_id=d.tenant_id, dashboard_id=d.id, version_no=1, status="published", layout=LAYOUT, created_by=str(ids["bob"])))

    assert bob.get("/api/ui/dashboards/resolve?code=msg_overview&workbench=user").json["data"]["tier"] == "user"
    assert alice.get("/api/ui/dashboards/resolve?code=msg_overview&workbench=user").json["data"]["tier"] == "system"


def test_create_validation(alice):
    _create(alice)
    r = alice.post("/api/ui/dashboards", json={"code": "ops_home", "titleKey": "t", "moduleCode": "OPS", "workbench": "user"})
    assert r.status_code == 409

    r = alice.post("/api/ui/dashboards", json={"code": "x", "titleKey": "t", "moduleCode": "OPS"})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "MISSING_REQUIRED_FIELDS"

    r = alice.post(
        "/api/ui/dashboards",
        json={"code": "y", "titleKey": "t", "moduleCode": "OPS", "workbench": "user", "layout": {"schema_version": 1}},
    )
    assert r.status_code == 400
    assert r.json["error"]["code"] == "INVALID_LAYOUT"
    assert {i["path"] for i in r.json["error"]["issues"]} >= {"columns", "row_height", "items"}

    r = alice.post(
        "/api/ui/dashboards",
        json={
            "code": "z",
            "titleKey": "t",
            "moduleCode": "OPS",
            "workbench": "user",
            "acl": [{"principalType": "team", "principalKey": "x", "permission": "view"}],
        },
    )
    assert r.status_code == 400
    assert r.json["error"]["code"] == "INVALID_PRINCIPAL_TYPE"


@pytest.mark.parametrize(
    "override",
    [{"code": 5}, {"titleKey": ["t"]}, {"moduleCode": {"x": 1}}, {"workbench": True}, {"descriptionKey": 3}, {"icon": 1}],
)
def test_create_rejects_non_string_fields(alice, override):
    payload = {"code": "typed", "titleKey": "t", "moduleCode": "OPS", "workbench": "user", **override}
    r = alice.post("/api/ui/dashboards", json=payload)
    assert r.status_code == 400
    assert r.json["error"]["code"] == "VALIDATION_ERROR"
    assert r.json["error"]["field"] == next(iter(override))


def test_update_and_duplicate_reject_non_string_fields(alice):
    did = _create(alice)
    r = alice.patch(f"/api/ui/dashboards/{did}", json={"titleKey": 42})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "VALIDATION_ERROR"

    r = alice.post(f"/api/ui/dashboards/{did}/duplicate", json={"newCode": 7})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "VALIDATION_ERROR"


def test_member_cannot_create(bob):
    r = bob.post("/api/ui/dashboards", json={"code": "x", "titleKey": "t", "moduleCode": "OPS", "workbench": "user"})
    assert r.status_code == 403
    assert r.json["error"]["code"] == "PERMISSION_DENIED"


def test_draft_publish_cycle(app, alice):
    did = _create(alice)

    r = alice.get(f"/api/ui/dashboards/{did}")
    assert r.json["data"]["permission"] == "owner"
    assert r.json["data"]["versionNo"] == 1
    assert r.json["data"]["layout"]["items"] == []

    r = alice.get(f"/api/ui/dashboards/{did}/draft")
    assert r.json["data"]["status"] == "published"

    r = alice.post(f"/api/ui/dashboards/{did}/publish")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "NO_DRAFT"

    assert alice.put(f"/api/ui/dashboards/{did}/layout", json={"layout": LAYOUT}).json["data"]["versionNo"] == 2
    assert alice.put(f"/api/ui/dashboards/{did}/layout", json={"layout": LAYOUT}).json["data"]["versionNo"] == 2
    r = alice.get(f"/api/ui/dashboards/{did}/draft")
    assert r.json["data"]["status"] == "draft"

    r = alice.put(f"/api/ui/dashboards/{did}/layout", json={})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "MISSING_LAYOUT"

    r = alice.post(f"/api/ui/dashboards/{did}/publish")
    assert r.status_code == 200
    assert r.json["data"]["versionNo"] == 2
    r = alice.get(f"/api/ui/dashboards/{did}")
    assert r.json["data"]["versionNo"] == 2
    assert r.json["data"]["layout"]["items"][0]["id"] == "title"

    with session_scope(app) as s:
        statuses = dict(
            s.query(DashboardVersion.version_no, DashboardVersion.status).filter(DashboardVersion.dashboard_id == did).all()
        )
    assert statuses == {1: "archived", 2: "published"}

    alice.put(f"/api/ui/dashboards/{did}/layout", json={"layout": LAYOUT})
    assert alice.delete(f"/api/ui/dashboards/{did}/draft").json["data"] == {"ok": True, "removed": 1}
    assert alice.delete(f"/api/ui/dashboards/{did}/draft").json["data"] == {"ok": True, "removed": 0}
    assert alice.post(f"/api/ui/dashboards/{did}/publish").status_code == 400


def test_update_hides_dashboard(alice):
    did = _create(alice)
    r = alice.patch(f"/api/ui/dashboards/{did}", json={"titleKey": "renamed", "isHidden": True, "sortOrder": 5})
    assert r.status_code == 200
    assert alice.get("/api/ui/dashboards?workbench=user").json["data"]["total"] == 0
    assert alice.get(f"/api/ui/dashboards/{did}").json["data"]["titleKey"] == "renamed"

    r = alice.patch(f"/api/ui/dashboards/{did}", json={"sortOrder": "first"})
    assert r.status_code == 400


def test_system_dashboards_are_immutable(app, seeded, alice):
    system_id = _system_id(app, "msg_overview", "admin")
    for r in (
        alice.patch(f"/api/ui/dashboards/{system_id}", json={"titleKey": "x"}),
        alice.put(f"/api/ui/dashboards/{system_id}/layout", json={"layout": LAYOUT}),
        alice.post(f"/api/ui/dashboards/{system_id}/publish"),
        alice.delete(f"/api/ui/dashboards/{system_id}"),
    ):
        assert r.status_code == 403
        assert r.json["error"]["code"] == "SYSTEM_DASHBOARD_IMMUTABLE"

    acl = alice.get(f"/api/ui/dashboards/{system_id}/acl").json["data"]
    assert acl
    for r in (
        alice.post(f"/api/ui/dashboards/{system_id}/acl", json={"principalType": "user", "principalKey": "1", "permission": "edit"}),
        alice.delete(f"/api/ui/dashboards/{system_id}/acl/{acl[0]['id']}"),
    ):
        assert r.status_code == 403
        assert r.json["error"]["code"] == "SYSTEM_DASHBOARD_IMMUTABLE"
    assert len(alice.get(f"/api/ui/dashboards/{system_id}/acl").json["data"]) == len(acl)


def test_acl_management(alice, bob, ids):
    did = _create(alice)
    assert bob.get(f"/api/ui/dashboards/{did}").status_code == 403

    r = alice.post(f"/api/ui/dashboards/{did}/acl", json={"principalType": "user", "principalKey": str(ids["bob"]), "permission": "view"})
    assert r.status_code == 201
    acl_id = r.json["data"]["id"]
    assert bob.get(f"/api/ui/dashboards/{did}").json["data"]["permission"] == "view"

    r = alice.post(f"/api/ui/dashboards/{did}/acl", json={"principalType": "group", "principalKey": "ops", "permission": "admin"})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "INVALID_PERMISSION"

    assert [a["id"] for a in alice.get(f"/api/ui/dashboards/{did}/acl").json["data"]] == [acl_id]
    assert alice.delete(f"/api/ui/dashboards/{did}/acl/{acl_id}").status_code == 200
    r = alice.delete(f"/api/ui/dashboards/{did}/acl/{acl_id}")
    assert r.status_code == 404
    assert r.json["error"]["code"] == "ACL_NOT_FOUND"
    assert bob.get(f"/api/ui/dashboards/{did}").status_code == 403


def test_group_acl_grants_view(alice, bob, login):
    did = _create(alice)
    alice.post(f"/api/ui/dashboards/{did}/acl", json={"principalType": "group", "principalKey": "ops", "permission": "view"})
    assert bob.get(f"/api/ui/dashboards/{did}").status_code == 200
    assert login("carol@acme.test").get(f"/api/ui/dashboards/{did}").status_code == 403


def test_only_owner_deletes(app, alice, login):
    did = _create(alice)
    with session_scope(app) as s:
        carol = s.query(User).filter(User.email == "carol@acme.test").one()
        carol.roles.append(s.query(Role).filter(Role.key == "admin").one())
    carol = login("carol@acme.test")
    alice.post(f"/api/ui/dashboards/{did}/acl", json={"principalType": "role", "principalKey": "admin", "permission": "edit"})

    r = carol.delete(f"/api/ui/dashboards/{did}")
    assert r.status_code == 403
    assert r.json["error"]["code"] == "PERMISSION_DENIED"
    assert carol.patch(f"/api/ui/dashboards/{did}", json={"titleKey": "edited"}).status_code == 200

    assert alice.delete(f"/api/ui/dashboards/{did}").status_code == 200
    r = alice.get(f"/api/ui/dashboards/{did}")
    assert r.status_code == 404
    assert r.json["error"]["code"] == "DASHBOARD_NOT_FOUND"


def test_other_tenant_gets_404(alice, dave):
    did = _create(alice)
    r = dave.get(f"/api/ui/dashboards/{did}")
    assert r.status_code == 404
    assert r.json["error"]["code"] == "DASHBOARD_NOT_FOUND"
