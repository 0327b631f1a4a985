"""Seed the system permission catalog."""

from sqlalchemy.orm import Session
from authz.models.permission import Permission

# name -> (category, description)
SYSTEM_PERMISSIONS = {
    # Dashboard
    "dashboard.view": ("Analytics", "View the dashboard"),
    "dashboard.admin.access": ("Analytics", "Open the admin dashboard"),
    "dashboard.admin.read": ("Analytics", "Read admin dashboard metrics"),
    # Users
    "users.page.access": ("User Management", "Open the users page"),
    "users.create": ("User Management", "Create users"),
    "users.read": ("User Management", "View users"),
    "users.update": ("User Management", "Edit users"),
    "users.delete": ("User Management", "Delete users"),
    # Roles and permissions
    "roles.view": ("Role Management", "View roles and their permissions"),
    "roles.create": ("Role Management", "Create roles"),
    "roles.edit": ("Role Management", "Modify roles and their permissions"),
    "permissions.view": ("Role Management", "View the permission catalog"),
    "permissions.create": ("Role Management", "Create custom permissions"),
    "permissions.edit": ("Role Management", "Edit permissions"),
    "permissions.assign": ("Role Management", "Assign permissions to roles and users"),
    # Customers
    "customers.page.access": ("User Management", "Open the customers page"),
    "customers.create": ("User Management", "Create customers"),
    "customers.read": ("User Management", "View customers"),
    "customers.update": ("User Management", "Edit customers"),
    "customers.delete": ("User Management", "Delete customers"),
    # Packages and subscriptions
    "packages.page.access": ("Package Management", "Open the packages page"),
    "packages.create": ("Package Management", "Create packages"),
    "packages.read": ("Package Management", "View packages"),
    "packages.update": ("Package Management", "Edit packages"),
    "packages.delete": ("Package Management", "Delete packages"),
    "subscriptions.page.access": ("Package Management", "Open the subscriptions page"),
    "subscriptions.read": ("Package Management", "View subscriptions"),
    "subscriptions.create": ("Package Management", "Create subscriptions"),
    "subscriptions.update": ("Package Management", "Edit subscriptions"),
    # Financial
    "transactions.page.access": ("Financial", "Open the transactions page"),
    "transactions.read": ("Financial", "View transactions"),
    "transactions.create": ("Financial", "Record transactions"),
    "bizpoints.page.access": ("Financial", "Open the BizPoints page"),
    "bizpoints.read": ("Financial", "View BizPoints balances"),
    "bizpoints.create": ("Financial", "Add BizPoints"),
    "payouts.page.access": ("Financial", "Open the payouts page"),
    "vouchers.page.access": ("Financial", "Open the vouchers page"),
    "vouchers.read": ("Financial", "View vouchers"),
    "vouchers.create": ("Financial", "Create vouchers"),
    "vouchers.update": ("Financial", "Edit vouchers"),
    "vouchers.delete": ("Financial", "Delete vouchers"),
    "reports.export": ("Analytics", "Export reports"),
    # Messaging
    "messages.send": ("Messaging", "Send WhatsApp messages"),
    "messages.bulk": ("Messaging", "Send bulk messages"),
    "messages.history.read": ("Messaging", "Read message history"),
    "devices.read": ("Messaging", "View connected devices"),
    "devices.create": ("Messaging", "Connect new devices"),
    # Servers
    "servers.page.access": ("Server Management", "Open the servers page"),
    "servers.read": ("Server Management", "View WhatsApp servers"),
    "servers.create": ("Server Management", "Add WhatsApp servers"),
    "servers.update": ("Server Management", "Edit WhatsApp servers"),
    "servers.delete": ("Server Management", "Remove WhatsApp servers"),
    # System
    "settings.page.access": ("System", "Open the settings page"),
    "settings.read": ("System", "Read system settings"),
    "settings.update": ("System", "Change system settings"),
    "settings.security.access": ("System", "Open security settings"),
    "security.events.read": ("System", "Read security events"),
    "company.profile.read": ("System", "Read the company profile"),
    "company.profile.update": ("System", "Edit the company profile"),
}


def seed_permissions(db: Session) -> None:
    """Insert system permissions that don't already exist."""
    existing = {name for (name,) in db.query(Permission.name).all()}
    added = 0
    for name, (category, description) in SYSTEM_PERMISSIONS.items():
        if name in existing:
            continue
        resource, _, action = name.partition(".")
        db.add(Permission(
            name=name,
            description=description,
            category=category,
            resource=resource,
            action=action,
            is_system=True,
        ))
        added += 1

    db.commit()
    print(f"✅ Seeded {added} permissions ({len(SYSTEM_PERMISSIONS)} in catalog)")
