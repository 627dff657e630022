from decimal import Decimal
from typing import Optional

import pytest
from fastapi import APIRouter, Depends, Request
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import AsyncSessionLocal
from app.features.enforcement.dependencies import (
    enforce_2fa,
    enforce_email_verification,
    enforce_feature_flag,
    enforce_limit,
    enforce_mode_requirements,
    pipeline,
    require_any_permission,
    require_permission,
    validate_password_policy,
)
from app.features.enforcement.gates import AccountMode
from app.features.permissions.evaluator import Principal
from app.features.users.models import User
from app.main import app
from tests.utils import auth_headers, create_user


# Marketplace routers consume the gates like this
tasks_router = APIRouter(
    prefix="/_gated/tasks",
    dependencies=pipeline(enforce_feature_flag("features.tasks.moduleEnabled", "Tasks module is currently disabled")),
)

TASK_COUNTS: dict[str, int] = {}


def current_task_count(_request: Request, principal: Optional[Principal]) -> int:
    return TASK_COUNTS.get(principal.user_id, 0) if principal else 0


@tasks_router.get("")
async def list_tasks():
    return {"tasks": []}


@tasks_router.post(
    "",
    dependencies=pipeline(
        enforce_mode_requirements(AccountMode.TASK_GIVER),
        enforce_limit("limits.maxTasksPerUser", current_task_count, "Task limit reached"),
    ),
)
async def create_task():
    return {"created": True}


@tasks_router.post("/submit", dependencies=pipeline(enforce_email_verification(), enforce_2fa()))
async def submit_task():
    return {"submitted": True}


@tasks_router.post("/password", dependencies=pipeline(validate_password_policy()))
async def change_password():
    return {"changed": True}


orders_router = APIRouter(
    prefix="/_gated/orders",
    dependencies=pipeline(enforce_feature_flag("features.orders.moduleEnabled", "Orders module is currently disabled")),
)


@orders_router.post("/{order_id}/refund")
async def refund_order(order_id: str, principal: Principal = Depends(require_permission("orders.refund"))):
    return {"refunded": order_id}


@orders_router.get("")
async def list_orders(principal: Principal = Depends(require_any_permission(["orders.view", "orders.edit"]))):
    return {"orders": []}


@pytest.fixture(autouse=True)
def gated_routes():
    """Mount the gated routers for the duration of a test."""
    routes = list(app.router.routes)
    app.include_router(tasks_router)
    app.include_router(orders_router)
    yield
    app.router.routes[:] = routes


async def put_setting(client: AsyncClient, user: User, category: str, value: dict):
    response = await client.put(f"/settings/{category}", json=value, headers=auth_headers(user))
    assert response.status_code == 200, response.text
    return response.json()


# ============================================================================
# Settings routes
# ============================================================================

async def test_get_settings_returns_tree_and_categories(client: AsyncClient, super_admin: User) -> None:
    response = await client.get("/settings", headers=auth_headers(super_admin))
    assert response.status_code == 200

    body = response.json()
    assert body["settings"]["features"]["tasks"]["moduleEnabled"] is True
    assert body["categories"]["features.tasks"] == {"moduleEnabled": True}
    assert body["settings"]["security"]["passwordPolicy"]["minLength"] == 8


async def test_settings_require_permission(client: AsyncClient, moderator: User) -> None:
    response = await client.get("/settings", headers=auth_headers(moderator))
    assert response.status_code == 403

    response = await client.put("/settings/limits", json={}, headers=auth_headers(moderator))
    assert response.status_code == 403


async def test_put_settings_category(client: AsyncClient, super_admin: User) -> None:
    body = await put_setting(client, super_admin, "limits", {"maxTasksPerUser": 3})
    assert body["created"] is False
    assert body["setting"]["key"] == "limits"
    assert body["setting"]["value"] == {"maxTasksPerUser": 3}
    assert body["setting"]["updatedBy"] == super_admin.id

    created = await put_setting(client, super_admin, "features.reports", {"moduleEnabled": False})
    assert created["created"] is True


async def test_put_settings_rejects_bad_category(client: AsyncClient, super_admin: User) -> None:
    response = await client.put("/settings/bad..key", json={}, headers=auth_headers(super_admin))
    assert response.status_code == 400


async def test_public_settings(client: AsyncClient, super_admin: User) -> None:
    await put_setting(client, super_admin, "general", {"allowRegistration": False})

    response = await client.get("/settings/public")
    assert response.status_code == 200
    body = response.json()
    assert body["registrationEnabled"] is False
    assert body["loginEnabled"] is True
    assert body["features"]["tasks"] is True
    assert body["passwordPolicy"]["requireSymbols"] is True


async def test_password_policy_check(client: AsyncClient) -> None:
    response = await client.post("/settings/password-policy/check", json={"password": "short"})
    body = response.json()
    assert body["valid"] is False
    assert "Password must be at least 8 characters long" in body["errors"]

    response = await client.post("/settings/password-policy/check", json={"password": "Val1d!pass"})
    assert response.json() == {"valid": True, "errors": [], "policy": response.json()["policy"]}


# ============================================================================
# Gates on consuming routers
# ============================================================================

async def test_disabled_tasks_module_is_rejected(client: AsyncClient, super_admin: User) -> None:
    response = await client.get("/_gated/tasks")
    assert response.status_code == 200

    await put_setting(client, super_admin, "features.tasks", {"enabled": False})

    response = await client.get("/_gated/tasks")
    assert response.status_code == 403
    assert response.json() == {
        "success": False,
        "code": "FEATURE_DISABLED",
        "message": "Tasks module is currently disabled",
        "feature": "features.tasks.moduleEnabled",
    }


async def test_feature_gate_runs_before_permission_gate(client: AsyncClient, super_admin: User) -> None:
    await put_setting(client, super_admin, "features.orders", {"moduleEnabled": False})

    response = await client.post("/_gated/orders/o1/refund")
    assert response.json()["code"] == "FEATURE_DISABLED"


async def test_refund_requires_permission(client: AsyncClient, super_admin: User, moderator: User) -> None:
    response = await client.post("/_gated/orders/o1/refund", headers=auth_headers(moderator))
    assert response.status_code == 403
    assert response.json()["code"] == "INSUFFICIENT_PERMISSIONS"

    listed = await client.get("/_gated/orders", headers=auth_headers(moderator))
    assert listed.status_code == 200

    refunded = await client.post("/_gated/orders/o1/refund", headers=auth_headers(super_admin))
    assert refunded.json() == {"refunded": "o1"}


async def test_task_limit(client: AsyncClient, db: AsyncSession, super_admin: User) -> None:
    giver = await create_user(db, "giver@example.com")
    await put_setting(client, super_admin, "limits", {"maxTasksPerUser": 2})

    TASK_COUNTS[giver.id] = 1
    ok = await client.post("/_gated/tasks", headers=auth_headers(giver))
    assert ok.status_code == 200

    TASK_COUNTS[giver.id] = 2
    response = await client.post("/_gated/tasks", headers=auth_headers(giver))
    assert response.status_code == 429
    assert response.json() == {
        "success": False,
        "code": "LIMIT_EXCEEDED",
        "message": "Task limit reached",
        "limit": 2,
        "current": 2,
    }


async def test_task_giver_minimum_balance(client: AsyncClient, db: AsyncSession, super_admin: User) -> None:
    poor = await create_user(db, "poor@example.com", balance=Decimal("5"))
    rich = await create_user(db, "rich@example.com", balance=Decimal("500"))
    await put_setting(client, super_admin, "modes", {"taskGiver": {"minBalance": 100}})

    response = await client.post("/_gated/tasks", headers=auth_headers(poor))
    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "INSUFFICIENT_BALANCE"
    assert body["required"] == 100
    assert body["current"] == 5

    assert (await client.post("/_gated/tasks", headers=auth_headers(rich))).status_code == 200


async def test_mode_gate_requires_authentication(client: AsyncClient) -> None:
    response = await client.post("/_gated/tasks")
    assert response.status_code == 401


async def test_email_and_two_factor_gates(client: AsyncClient, db: AsyncSession, super_admin: User) -> None:
    await put_setting(
        client,
        super_admin,
        "security",
        {"authentication": {"emailVerificationRequired": True, "twoFactorRequired": True}},
    )
    unverified = await create_user(db, "u1@example.com")
    no_tfa = await create_user(db, "u2@example.com", email_verified=True)
    tfa = await create_user(db, "u3@example.com", email_verified=True, two_factor_enabled=True)

    response = await client.post("/_gated/tasks/submit", headers=auth_headers(unverified))
    assert response.json()["code"] == "EMAIL_VERIFICATION_REQUIRED"

    response = await client.post("/_gated/tasks/submit", headers=auth_headers(no_tfa))
    assert response.json()["code"] == "TWO_FACTOR_REQUIRED"

    response = await client.post("/_gated/tasks/submit", headers=auth_headers(tfa))
    assert response.json()["code"] == "TWO_FACTOR_VERIFICATION_REQUIRED"

    response = await client.post("/_gated/tasks/submit", headers=auth_headers(tfa, two_factor_verified=True))
    assert response.json() == {"submitted": True}


async def test_password_policy_gate(client: AsyncClient) -> None:
    response = await client.post("/_gated/tasks/password", json={"password": "weak"})
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "PASSWORD_POLICY_VIOLATION"
    assert body["message"] == "Password does not meet security requirements"
    assert len(body["errors"]) == 4

    ok = await client.post("/_gated/tasks/password", json={"password": "Str0ng!pass"})
    assert ok.json() == {"changed": True}


async def test_password_policy_gate_falls_back_to_new_password(client: AsyncClient) -> None:
    response = await client.post("/_gated/tasks/password", json={"newPassword": "weak"})
    assert response.json()["code"] == "PASSWORD_POLICY_VIOLATION"

    ok = await client.post("/_gated/tasks/password", json={"newPassword": "Str0ng!pass"})
    assert ok.json() == {"changed": True}


async def test_password_policy_gate_rejects_non_string_password(client: AsyncClient) -> None:
    response = await client.post("/_gated/tasks/password", json={"password": 12345678})
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "PASSWORD_POLICY_VIOLATION"
    assert body["errors"] == ["Password must be a string"]


async def test_gates_do_not_write_to_the_user(client: AsyncClient, db: AsyncSession) -> None:
    user = await create_user(db, "reader@example.com")

    async def load_row():
        async with AsyncSessionLocal() as session:
            row = (await session.execute(select(User).where(User.id == user.id))).scalar_one()
            return row.last_login_at, row.updated_at

    before = await load_row()
    response = await client.post("/_gated/tasks/submit", headers=auth_headers(user))
    assert response.json() == {"submitted": True}
    assert await load_row() == before
