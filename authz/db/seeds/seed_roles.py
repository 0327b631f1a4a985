"""Seed default roles and their permission bundles."""

from sqlalchemy.orm import Session
from authz.models import Permission, Role, RolePermission
from authz.db.seeds.seed_permissions import SYSTEM_PERMISSIONS

ALL_PERMISSIONS = sorted(SYSTEM_PERMISSIONS)

ROLES = [
    {
        "name": "OWNER",
        "level": 1,
        "description": "System owner with full access",
        "is_system": True,
        "permissions": ALL_PERMISSIONS,
    },
    {
        "name": "ADMIN",
        "level": 2,
        "description": "Administrative access & management",
        "is_system": True,
        "permissions": [
            name for name in ALL_PERMISSIONS
            if not name.startswith(("settings.security", "permissions.create", "permissions.edit"))
        ],
    },
    {
        "name": "SUBDEALER",
        "level": 3,
        "description": "Manage customers & resell packages",
        "is_system": False,
        "permissions": [
            "dashboard.view",
            "customers.page.access", "customers.create", "customers.read", "customers.update",
            "packages.page.access", "packages.read",
            "subscriptions.page.access", "subscriptions.read", "subscriptions.create",
            "transactions.page.access", "transactions.read",
            "bizpoints.page.access", "bizpoints.read",
            "vouchers.page.access", "vouchers.read",
        ],
    },
    {
        "name": "CUSTOMER",
        "level": 4,
        "description": "Customer access to WhatsApp services",
        "is_system": False,
        "permissions": [
            "dashboard.view",
            "messages.send", "messages.bulk", "messages.history.read",
            "devices.read", "devices.create",
            "subscriptions.read", "bizpoints.read",
        ],
    },
]


def seed_roles(db: Session) -> None:
    """Insert default roles and grant their bundles; existing grant rows are left alone."""
    permission_ids = {name: pid for pid, name in db.query(Permission.id, Permission.name).all()}

    for role_data in ROLES:
        role = db.query(Role).filter(Role.name == role_data["name"]).first()
        if not role:
            role = Role(
                name=role_data["name"],
                level=role_data["level"],
                description=role_data["description"],
                is_system=role_data["is_system"],
            )
            db.add(role)
            db.flush()

        addressed = {
            pid for (pid,) in db.query(RolePermission.permission_id)
            .filter(RolePermission.role_id == role.id).all()
        }
        for name in role_data["permissions"]:
            pid = permission_ids.get(name)
            if pid is None:
                print(f"⚠️  Permission '{name}' missing from catalog, run seed_permissions first")
                continue
            if pid not in addressed:
                db.add(RolePermission(role_id=role.id, permission_id=pid, granted=True))

    db.commit()
    print(f"✅ Seeded {len(ROLES)} roles")
