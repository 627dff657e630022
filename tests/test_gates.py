from dataclasses import dataclass
from decimal import Decimal

import pytest

from app.client.token_cache import AdvisoryPrincipal
from app.features.enforcement import gates
from app.features.enforcement.errors import EnforcementError, ErrorCode
from app.features.enforcement.gates import AccountMode
from app.features.permissions.evaluator import Principal
from app.features.settings.tree import SettingsTree


@dataclass
class Account:
    id: str = "u1"
    verified: bool = False
    email_verified: bool = False
    two_factor_enabled: bool = False
    balance: Decimal = Decimal("0")


def tree(**data) -> SettingsTree:
    return SettingsTree(data)


def test_feature_flag_disabled_module() -> None:
    settings = tree(features={"tasks": {"enabled": False}})
    with pytest.raises(EnforcementError) as excinfo:
        gates.check_feature_flag(settings, "features.tasks.moduleEnabled", "Tasks module is currently disabled")

    error = excinfo.value
    assert error.status_code == 403
    assert error.to_dict() == {
        "success": False,
        "code": "FEATURE_DISABLED",
        "message": "Tasks module is currently disabled",
        "feature": "features.tasks.moduleEnabled",
    }


def test_feature_flag_enabled_and_missing_pass() -> None:
    settings = tree(features={"orders": {"moduleEnabled": True}})
    gates.check_feature_flag(settings, "features.orders.moduleEnabled")
    gates.check_feature_flag(settings, "features.unknown.moduleEnabled")


def test_limit_exceeded_at_the_limit() -> None:
    settings = tree(limits={"maxTasksPerUser": 3})
    gates.check_limit(settings, "limits.maxTasksPerUser", 2)

    with pytest.raises(EnforcementError) as excinfo:
        gates.check_limit(settings, "limits.maxTasksPerUser", 3, "Task limit reached")

    assert excinfo.value.status_code == 429
    assert excinfo.value.to_dict()["code"] == "LIMIT_EXCEEDED"
    assert excinfo.value.context == {"limit": 3, "current": 3}


def test_missing_limit_is_unlimited() -> None:
    gates.check_limit(tree(), "limits.maxTasksPerUser", 10**9)


def test_password_policy_reports_every_violation() -> None:
    result = gates.check_password_policy(tree(), "abc")
    assert not result.valid
    assert result.errors == [
        "Password must be at least 8 characters long",
        "Password must contain at least one uppercase letter",
        "Password must contain at least one number",
        "Password must contain at least one special character",
    ]


def test_password_policy_uses_stored_policy() -> None:
    settings = tree(security={"passwordPolicy": {"minLength": 4, "requireSymbols": False}})
    result = gates.check_password_policy(settings, "Abc1")
    assert result.valid
    assert result.policy["minLength"] == 4


def test_enforce_password_policy_raises_400() -> None:
    with pytest.raises(EnforcementError) as excinfo:
        gates.enforce_password_policy(tree(), "password")

    body = excinfo.value.to_dict()
    assert excinfo.value.status_code == 400
    assert body["code"] == "PASSWORD_POLICY_VIOLATION"
    assert "Password must contain at least one uppercase letter" in body["errors"]
    assert body["policy"]["minLength"] == 8


def test_strong_password_passes() -> None:
    assert gates.enforce_password_policy(tree(), "Str0ng!pass").valid


def test_task_giver_requires_verification() -> None:
    settings = tree(modes={"taskGiver": {"requireVerification": True}})
    with pytest.raises(EnforcementError) as excinfo:
        gates.check_mode_requirements(settings, Account(), AccountMode.TASK_GIVER)
    assert excinfo.value.code is ErrorCode.VERIFICATION_REQUIRED

    gates.check_mode_requirements(settings, Account(verified=True), AccountMode.TASK_GIVER)


def test_task_giver_minimum_balance() -> None:
    settings = tree(modes={"taskGiver": {"minBalance": 50}})
    with pytest.raises(EnforcementError) as excinfo:
        gates.check_mode_requirements(settings, Account(balance=Decimal("20")), "task_giver")

    assert excinfo.value.code is ErrorCode.INSUFFICIENT_BALANCE
    assert excinfo.value.context == {"required": 50, "current": Decimal("20")}

    gates.check_mode_requirements(settings, Account(balance=Decimal("50")), "task_giver")


def test_task_completer_requires_email_verification() -> None:
    settings = tree(modes={"taskCompleter": {"requireEmailVerification": True}})
    with pytest.raises(EnforcementError) as excinfo:
        gates.check_mode_requirements(settings, Account(), AccountMode.TASK_COMPLETER)
    assert excinfo.value.code is ErrorCode.EMAIL_VERIFICATION_REQUIRED

    gates.check_mode_requirements(settings, Account(email_verified=True), AccountMode.TASK_COMPLETER)


def test_email_verification_only_when_required() -> None:
    gates.check_email_verification(tree(), Account())

    settings = tree(security={"authentication": {"emailVerificationRequired": True}})
    with pytest.raises(EnforcementError) as excinfo:
        gates.check_email_verification(settings, Account())
    assert excinfo.value.status_code == 403


def test_two_factor_states() -> None:
    settings = tree(security={"authentication": {"twoFactorRequired": True}})

    with pytest.raises(EnforcementError) as excinfo:
        gates.check_two_factor(settings, Account(), two_factor_verified=False)
    assert excinfo.value.code is ErrorCode.TWO_FACTOR_REQUIRED

    with pytest.raises(EnforcementError) as excinfo:
        gates.check_two_factor(settings, Account(two_factor_enabled=True), two_factor_verified=False)
    assert excinfo.value.code is ErrorCode.TWO_FACTOR_VERIFICATION_REQUIRED

    gates.check_two_factor(settings, Account(two_factor_enabled=True), two_factor_verified=True)
    gates.check_two_factor(tree(), Account(), two_factor_verified=False)


def test_permission_gates() -> None:
    principal = Principal(user_id="u1", role_keys=frozenset({"moderator"}), permission_keys=frozenset({"orders.view"}))
    gates.check_permission(principal, "orders.view")
    gates.check_any_permission(principal, ["orders.refund", "orders.view"])

    with pytest.raises(EnforcementError) as excinfo:
        gates.check_permission(principal, "orders.refund")
    assert excinfo.value.status_code == 403
    assert excinfo.value.code is ErrorCode.INSUFFICIENT_PERMISSIONS

    with pytest.raises(EnforcementError):
        gates.check_all_permissions(principal, ["orders.view", "orders.refund"])


def test_permission_gate_without_principal_requires_authentication() -> None:
    with pytest.raises(EnforcementError) as excinfo:
        gates.check_permission(None, "orders.view")
    assert excinfo.value.status_code == 401
    assert excinfo.value.code is ErrorCode.AUTH_REQUIRED


def test_advisory_principal_is_rejected_by_server_gates() -> None:
    advisory = AdvisoryPrincipal(user_id="u1", role_keys=frozenset({"super_admin"}))
    with pytest.raises(TypeError):
        gates.check_permission(advisory, "orders.view")


def test_registration_and_login_switches() -> None:
    assert gates.is_registration_allowed(tree())
    assert gates.is_login_allowed(tree())
    assert not gates.is_registration_allowed(tree(general={"allowRegistration": False}))
    assert not gates.is_login_allowed(tree(maintenance={"enabled": True}))
