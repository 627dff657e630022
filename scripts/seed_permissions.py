"""
Seed script to populate default permissions, roles and settings.

Run this script after database initialization to create:
- The permission catalog
- The default roles
- The default role/permission matrix (mode "all")
- The default settings categories

Existing rows are left untouched, so the script can be re-run safely.

Usage:
    python -m scripts.seed_permissions
"""
import asyncio
from typing import Any
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.permissions.models import Permission, PermissionMode, Role, RolePermission
from app.features.settings.models import SystemSetting
from app.utils import get_logger


log = get_logger(__name__)


# (key, label, group)
DEFAULT_PERMISSIONS = [
    # Users
    ("users.view", "View users", "users"),
    ("users.edit", "Edit users", "users"),
    ("users.create", "Create users", "users"),
    ("users.ban", "Ban users", "users"),
    ("users.delete", "Delete users", "users"),

    # Transactions
    ("transactions.view", "View transactions", "transactions"),
    ("transactions.approve", "Approve transactions", "transactions"),
    ("transactions.reject", "Reject transactions", "transactions"),
    ("transactions.adjust", "Adjust balances", "transactions"),
    ("transactions.create", "Create transactions", "transactions"),

    # Orders
    ("orders.view", "View orders", "orders"),
    ("orders.edit", "Edit orders", "orders"),
    ("orders.refund", "Refund orders", "orders"),
    ("orders.cancel", "Cancel orders", "orders"),

    # Tasks
    ("tasks.view", "View tasks", "tasks"),
    ("tasks.review", "Review task submissions", "tasks"),
    ("tasks.approve", "Approve task submissions", "tasks"),
    ("tasks.reject", "Reject task submissions", "tasks"),

    # Settings
    ("settings.view", "View settings", "settings"),
    ("settings.edit", "Edit settings", "settings"),

    # Audit
    ("audit_logs.view", "View audit logs", "audit"),
    ("action_logs.view", "View action logs", "audit"),

    # RBAC administration
    ("roles.view", "View roles", "rbac"),
    ("roles.edit", "Edit role permissions", "rbac"),
    ("permissions.view", "View permissions", "rbac"),
    ("roles.assign", "Assign roles to users", "rbac"),
]

ALL_PERMISSION_KEYS = [key for key, _, _ in DEFAULT_PERMISSIONS]


DEFAULT_ROLES = {
    "super_admin": {
        "label": "Super Admin",
        "permissions": ALL_PERMISSION_KEYS,
    },
    "admin": {
        "label": "Admin",
        "permissions": [key for key, _, group in DEFAULT_PERMISSIONS if group != "rbac"],
    },
    "moderator": {
        "label": "Moderator",
        "permissions": [
            "users.view",
            "transactions.view",
            "orders.view",
            "tasks.view",
            "tasks.review",
            "audit_logs.view",
            "action_logs.view",
        ],
    },
    "task_giver": {
        "label": "Task Giver",
        "permissions": [],
    },
    "task_doer": {
        "label": "Task Doer",
        "permissions": [],
    },
}


DEFAULT_SETTINGS: dict[str, dict[str, Any]] = {
    "features.transactions": {
        "moduleEnabled": True,
        "depositsEnabled": True,
        "withdrawalsEnabled": True,
    },
    "features.users": {
        "moduleEnabled": True,
    },
    "features.orders": {
        "moduleEnabled": True,
    },
    "features.tasks": {
        "moduleEnabled": True,
    },
    "limits": {
        "maxTasksPerUser": 100,
        "maxOrdersPerUser": 100,
        "minWithdrawalAmount": 10,
    },
    "modes": {
        "taskGiver": {"requireVerification": False, "minBalance": 0},
        "taskCompleter": {"requireEmailVerification": False},
    },
    "security": {
        "passwordPolicy": {
            "minLength": 8,
            "requireUppercase": True,
            "requireLowercase": True,
            "requireNumbers": True,
            "requireSymbols": True,
        },
        "authentication": {
            "emailVerificationRequired": False,
            "twoFactorRequired": False,
        },
    },
    "general": {
        "siteName": "Marketplace",
        "allowRegistration": True,
    },
    "maintenance": {
        "enabled": False,
    },
}


async def seed_permissions(db: AsyncSession) -> dict[str, Permission]:
    """
    Create the permission catalog.

    Returns:
        Permission key -> Permission
    """
    log.info("Seeding default permissions...")

    result = await db.execute(select(Permission))
    permissions_map = {p.key: p for p in result.scalars().all()}

    created = 0
    for key, label, group in DEFAULT_PERMISSIONS:
        if key in permissions_map:
            continue
        permission = Permission(key=key, label=label, group=group)
        db.add(permission)
        permissions_map[key] = permission
        created += 1

    await db.flush()
    log.info(f"Created {created} permissions ({len(permissions_map)} total)")
    return permissions_map


async def seed_roles(db: AsyncSession, permissions_map: dict[str, Permission]) -> dict[str, Role]:
    """Create the default roles and their `all`-mode matrix rows."""
    log.info("Seeding default roles...")

    result = await db.execute(select(Role))
    roles_map = {r.key: r for r in result.scalars().all()}

    for role_key, role_config in DEFAULT_ROLES.items():
        role = roles_map.get(role_key)
        if role is not None:
            log.info(f"Role '{role_key}' already exists, skipping")
            continue

        role = Role(key=role_key, label=role_config["label"])
        db.add(role)
        await db.flush()
        roles_map[role_key] = role

        granted = 0
        for permission_key in role_config["permissions"]:
            permission = permissions_map.get(permission_key)
            if permission is None:
                log.warning(f"Permission '{permission_key}' not found for role '{role_key}'")
                continue
            db.add(RolePermission(
                role_id=role.id,
                permission_id=permission.id,
                mode=PermissionMode.ALL,
                allow=True,
            ))
            granted += 1

        log.info(f"Created role '{role_key}' with {granted} permissions")

    await db.flush()
    return roles_map


async def seed_settings(db: AsyncSession) -> None:
    log.info("Seeding default settings...")

    result = await db.execute(select(SystemSetting.key))
    existing = set(result.scalars().all())

    for key, value in DEFAULT_SETTINGS.items():
        if key in existing:
            continue
        db.add(SystemSetting(key=key, value=value, description=f"Default {key} settings"))
        log.info(f"Created settings category '{key}'")

    await db.flush()


async def seed_all(db: AsyncSession) -> dict[str, Role]:
    """Seed everything and commit."""
    permissions_map = await seed_permissions(db)
    roles_map = await seed_roles(db, permissions_map)
    await seed_settings(db)
    await db.commit()
    return roles_map


async def main():
    """Main function to seed permissions, roles and settings."""
    log.info("Starting seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    # Get database session
    async for db in get_db():
        try:
            await seed_all(db)

            log.info("Seeding completed successfully!")
            log.info("")
            log.info("Default roles:")
            for role_key, role_config in DEFAULT_ROLES.items():
                log.info(f"  - {role_key}: {len(role_config['permissions'])} permissions")

        except Exception as e:
            log.error(f"Error seeding defaults: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
