"""Capability policy: role → capability table and the decorator's 401/403 split."""

import pytest
from conftest import auth_headers

from buildtrack.core.exceptions import PermissionDenied
from buildtrack.services.permission_service import (
    ROLE_CAPABILITIES,
    Capability,
    capabilities_for,
    check_capability,
    has_capability,
    is_staff_role,
)


class TestPolicyTable:
    def test_admin_has_everything(self):
        assert capabilities_for("admin") == frozenset(Capability)

    @pytest.mark.parametrize("cap", [
        Capability.USERS_SET_ROLE, Capability.SETTINGS_MANAGE, Capability.AUDIT_VIEW,
    ])
    def test_staff_lacks_admin_only(self, cap):
        assert not has_capability("staff", cap)

    def test_staff_has_the_rest(self):
        admin_only = {Capability.USERS_SET_ROLE, Capability.SETTINGS_MANAGE, Capability.AUDIT_VIEW}
        assert capabilities_for("staff") == frozenset(Capability) - admin_only

    @pytest.mark.parametrize("role,cap,expected", [
        ("factory", Capability.GUITARS_ADVANCE_STAGE, True),
        ("factory", Capability.NOTES_VIEW_INTERNAL, True),
        ("factory", Capability.GUITARS_MANAGE, False),
        ("factory", Capability.INVOICES_MANAGE, False),
        ("accounting", Capability.PAYMENTS_APPROVE, True),
        ("accounting", Capability.USERS_READ_INFO, True),
        ("accounting", Capability.USERS_LIST, False),
        ("accounting", Capability.GUITARS_ADVANCE_STAGE, False),
    ])
    def test_limited_roles(self, role, cap, expected):
        assert has_capability(role, cap) is expected

    def test_client_has_nothing(self):
        assert ROLE_CAPABILITIES["client"] == frozenset()

    @pytest.mark.parametrize("role", [None, "", "owner"])
    def test_unknown_role_denied(self, role):
        assert capabilities_for(role) == frozenset()
        assert not has_capability(role, Capability.RUNS_VIEW_ALL)

    def test_string_capability(self):
        assert has_capability("staff", "runs.manage")
        assert not has_capability("admin", "runs.teleport")

    def test_check_capability_raises(self, client_user):
        with pytest.raises(PermissionDenied):
            check_capability(client_user, Capability.RUNS_MANAGE)

    def test_staff_roles(self):
        assert is_staff_role("admin") and is_staff_role("staff")
        assert not is_staff_role("factory")


class TestDecorator:
    def test_no_token_is_401(self, client):
        res = client.get("/api/v1/clients")
        assert res.status_code == 401

    def test_missing_capability_is_403(self, client, make_user):
        factory = make_user("factory", "line@example.com")
        res = client.get("/api/v1/clients", headers=auth_headers(factory))
        assert res.status_code == 403

    def test_capability_granted(self, client, staff_headers):
        assert client.get("/api/v1/clients", headers=staff_headers).status_code == 200
