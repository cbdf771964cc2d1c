"""Tests for NegotiationAuthorizer."""

from types import SimpleNamespace

import pytest

from rental_pipeline.services.authorization import NegotiationAuthorizer


def _user(role: str, user_id: str = "u-1", is_active: bool = True):
    return SimpleNamespace(id=user_id, role=role, is_active=is_active)


def _property(owner_id: str = "u-1"):
    return SimpleNamespace(id="p-1", owner_id=owner_id)


@pytest.fixture
def authorizer():
    return NegotiationAuthorizer({"owner", "seller", "admin"}, {"admin", "seller"})


class TestCanNegotiate:
    def test_owner_of_property(self, authorizer):
        assert authorizer.can_negotiate(_user("owner"), _property("u-1")) is True

    def test_owner_of_other_property(self, authorizer):
        assert authorizer.can_negotiate(_user("owner"), _property("someone-else")) is False

    @pytest.mark.parametrize("role", ["admin", "seller"])
    def test_global_roles_act_on_any_property(self, authorizer, role):
        assert authorizer.can_negotiate(_user(role), _property("someone-else")) is True

    def test_client_never_negotiates(self, authorizer):
        assert authorizer.can_negotiate(_user("client"), _property("u-1")) is False

    def test_inactive_user(self, authorizer):
        assert authorizer.can_negotiate(_user("admin", is_active=False), _property()) is False

    def test_missing_property(self, authorizer):
        assert authorizer.can_negotiate(_user("owner"), None) is False

    def test_global_roles_limited_to_privileged(self):
        authorizer = NegotiationAuthorizer({"owner"}, {"admin"})
        assert authorizer.global_roles == set()
        assert authorizer.can_negotiate(_user("admin"), _property("other")) is False


class TestVisibility:
    @pytest.mark.parametrize("role,expected", [("admin", True), ("seller", True), ("owner", False), ("client", False)])
    def test_sees_all_properties(self, authorizer, role, expected):
        assert authorizer.sees_all_properties(_user(role)) is expected

    @pytest.mark.parametrize("role,expected", [("owner", True), ("admin", True), ("client", False)])
    def test_is_property_side(self, authorizer, role, expected):
        assert authorizer.is_property_side(_user(role)) is expected

    def test_inactive_user_sees_nothing_extra(self, authorizer):
        assert authorizer.sees_all_properties(_user("admin", is_active=False)) is False
        assert authorizer.is_property_side(_user("owner", is_active=False)) is False
