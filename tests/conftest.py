import pytest
from werkzeug.security import generate_password_hash

from app.tenanthub import create_app
from app.tenanthub.db import session_scope
from app.tenanthub.models import Base, Group, Permission, Role, Tenant, User

PERMISSION_KEYS = (
    "admin.view",
    "messaging.view",
    "messaging.send",
    "notifications.view",
    "dashboards.view",
    "dashboards.edit",
    "content.view",
    "content.upload",
)
MEMBER_KEYS = (
    "messaging.view",
    "messaging.send",
    "notifications.view",
    "dashboards.view",
    "content.view",
    "content.upload",
)


class ApiSession:
    """Logged-in test client that sends the CSRF header on unsafe methods."""

    def __init__(self, client, csrf: str, user: dict):
        self.client = client
        self.csrf = csrf
        self.user = user

    @property
    def user_id(self) -> int:
        return self.user["id"]

    def _headers(self, headers):
        h = {"X-CSRF-Token": self.csrf}
        h.update(headers or {})
        return h

    def get(self, path, **kw):
        return self.client.get(path, **kw)

    def post(self, path, json=None, headers=None, **kw):
        return self.client.post(path, json=json, headers=self._headers(headers), **kw)

    def put(self, path, json=None, headers=None, **kw):
        return self.client.put(path, json=json, headers=self._headers(headers), **kw)

    def patch(self, path, json=None, headers=None, **kw):
        return self.client.patch(path, json=json, headers=self._headers(headers), **kw)

    def delete(self, path, headers=None, **kw):
        return self.client.delete(path, headers=self._headers(headers), **kw)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    for k in ("REDIS_URL", "LOG_FILE", "S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    app.config["TESTING"] = True

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = {key: Permission(key=key, name=key) for key in PERMISSION_KEYS}
        admin = Role(key="admin", name="Administrator")
        admin.permissions.extend(perms.values())
        member = Role(key="member", name="Member")
        member.permissions.extend(perms[k] for k in MEMBER_KEYS)

        acme = Tenant(key="acme", name="Acme")
        globex = Tenant(key="globex", name="Globex")
        s.add_all([*perms.values(), admin, member, acme, globex])
        s.flush()

        def user(email, name, tenant, role=None, persona=None, active=True):
            u = User(
                tenant_id=tenant.id,
                email=email,
                display_name=name,
                persona=persona,
                password_hash=generate_password_hash("pw"),
                is_active=active,
            )
            if role is not None:
                u.roles.append(role)
            s.add(u)
            return u

        user("alice@acme.test", "Alice", acme, admin, persona="module_admin")
        bob = user("bob@acme.test", "Bob", acme, member, persona="agent")
        user("carol@acme.test", "Carol", acme, member)
        user("erin@acme.test", "Erin", acme, member, active=False)
        user("vera@acme.test", "Vera", acme)
        user("dave@globex.test", "Dave", globex, member)
        s.flush()

        ops = Group(tenant_id=acme.id, key="ops", name="Operations")
        ops.members.append(bob)
        s.add(ops)

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def ids(app):
    """Name -> id for the seeded users and tenants."""
    with session_scope(app) as s:
        out = {u.email.split("@")[0]: u.id for u in s.query(User).all()}
        out.update({f"tenant:{t.key}": t.id for t in s.query(Tenant).all()})
    return out


@pytest.fixture()
def login(app):
    def _login(email: str, password: str = "pw") -> ApiSession:
        c = app.test_client()
        r = c.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.json
        data = r.json["data"]
        return ApiSession(c, data["csrfToken"], data["user"])

    return _login


@pytest.fixture()
def alice(login):
    return login("alice@acme.test")


@pytest.fixture()
def bob(login):
    return login("bob@acme.test")


@pytest.fixture()
def carol(login):
    return login("carol@acme.test")


@pytest.fixture()
def dave(login):
    return login("dave@globex.test")
