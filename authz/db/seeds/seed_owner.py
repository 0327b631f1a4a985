"""Seed the owner user from env vars."""

from sqlalchemy.orm import Session
from authz.models import Role, User, UserRole
from authz.core.config import settings


def seed_owner(db: Session) -> None:
    """Create the owner user with OWNER as primary role if not already present."""
    owner_role = db.query(Role).filter(Role.name == "OWNER").first()
    if not owner_role:
        print("⚠️  OWNER role not found. Run seed_roles first.")
        return

    email = settings.OWNER_EMAIL.strip().lower()
    existing = db.query(User).filter(User.email == email).first()
    if existing:
        print(f"ℹ️  Owner '{email}' already exists, skipping.")
        return

    owner = User(email=email, full_name=settings.OWNER_NAME, is_active=True)
    db.add(owner)
    db.flush()
    db.add(UserRole(user_id=owner.id, role_id=owner_role.id, is_primary=True))
    db.commit()
    print(f"✅ Created owner: {email}")
