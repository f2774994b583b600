import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.tenanthub.models import Permission, Role, Tenant, User
from app.tenanthub.modules.dashboards.seeder import DashboardContributionSeeder
from app.tenanthub.modules.notifications.models import NotificationTemplate
from scripts._db_utils import script_session

PERMISSIONS = (
    ("admin.view", "Admin: view"),
    ("messaging.view", "Messaging: view conversations"),
    ("messaging.send", "Messaging: send and manage messages"),
    ("notifications.view", "Notifications: view"),
    ("dashboards.view", "Dashboards: view"),
    ("dashboards.edit", "Dashboards: edit and publish"),
    ("content.view", "Content: view attachments"),
    ("content.upload", "Content: upload attachments"),
)

MEMBER_PERMISSIONS = (
    "messaging.view",
    "messaging.send",
    "notifications.view",
    "dashboards.view",
    "content.view",
    "content.upload",
)

SYSTEM_TEMPLATES = (
    # (template_key, locale, subject, body_text)
    ("message.received", "en", "New message from {{sender.name}}", "{{message.preview}}"),
)


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions, roles, the default tenant, the admin user, system notification
    templates and system dashboards. Idempotent; never overwrites an existing password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@tenanthub.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    tenant_key = (os.environ.get("DEFAULT_TENANT_KEY") or "default").strip().lower()
    contributions_dir = (os.environ.get("DASHBOARD_CONTRIBUTIONS_DIR") or "").strip() or None

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///tenanthub.db").strip()

    with script_session(db_url) as s:
        def ensure_perm(key: str, name: str) -> Permission:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            return p

        def ensure_role(key: str, name: str) -> Role:
            r = s.query(Role).filter(Role.key == key).one_or_none()
            if not r:
                r = Role(key=key, name=name)
                s.add(r)
            return r

        perms = {key: ensure_perm(key, name) for key, name in PERMISSIONS}

        role_admin = ensure_role("admin", "Administrator")
        for p in perms.values():
            if p not in role_admin.permissions:
                role_admin.permissions.append(p)

        role_member = ensure_role("member", "Member")
        for key in MEMBER_PERMISSIONS:
            if perms[key] not in role_member.permissions:
                role_member.permissions.append(perms[key])

        tenant = s.query(Tenant).filter(Tenant.key == tenant_key).one_or_none()
        if not tenant:
            tenant = Tenant(key=tenant_key, name=tenant_key.title(), is_active=True)
            s.add(tenant)
            s.flush()

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                tenant_id=tenant.id,
                email=admin_email,
                display_name="Administrator",
                persona="module_admin",
                password_hash=generate_password_hash(admin_password),
                is_active=True,
            )
            s.add(user)
        if role_admin not in user.roles:
            user.roles.append(role_admin)

        for template_key, locale, subject, body_text in SYSTEM_TEMPLATES:
            exists = (
                s.query(NotificationTemplate)
                .filter(
                    NotificationTemplate.tenant_id.is_(None),
                    NotificationTemplate.template_key == template_key,
                    NotificationTemplate.channel == "in_app",
                    NotificationTemplate.locale == locale,
                )
                .first()
            )
            if not exists:
                s.add(
                    NotificationTemplate(
                        tenant_id=None,
                        template_key=template_key,
                        channel="in_app",
                        locale=locale,
                        version=1,
                        status="active",
                        subject=subject,
                        body_text=body_text,
                    )
                )
        s.commit()

        result = DashboardContributionSeeder(s).seed(contributions_dir)

    print("Initialized database (seed_only).")
    print(f"Tenant: {tenant_key}")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    print(f"System dashboards: {result.to_dict()}")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
