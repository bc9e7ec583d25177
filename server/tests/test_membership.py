"""Tests for MembershipStore.

Covers:
- seeded(): creator in every tier
- from_dict(): both serialized shapes, JSON text, containment repair
- validate(): InvariantViolation on broken containment
- copy(): independent of the original
- views: to_dict (sorted), role_map, effective/highest tiers
"""
import sys
import os
import json
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from modelhub.errors import InvariantViolation
from modelhub.membership import MembershipStore
from modelhub.roles import ResourceKind, Tier


def _make_store(**tiers) -> MembershipStore:
    return MembershipStore(ResourceKind.PROJECT, tiers)


class TestSeeded:

    def test_creator_holds_every_tier(self):
        store = MembershipStore.seeded(ResourceKind.ORGANIZATION, "alice")
        assert store.to_dict() == {"read": ["alice"], "write": ["alice"], "admin": ["alice"]}
        store.validate()  # should not raise


class TestFromDict:

    def test_tier_keyed_shape(self):
        store = MembershipStore.from_dict(
            ResourceKind.PROJECT,
            {"read": ["alice", "bob"], "write": ["alice"], "admin": ["alice"]},
        )
        assert store.highest_tier("alice") is Tier.ADMIN
        assert store.highest_tier("bob") is Tier.READ

    def test_user_keyed_shape(self):
        store = MembershipStore.from_dict(
            ResourceKind.ORGANIZATION, {"alice": ["read", "write"], "bob": ["read"]},
        )
        assert store.members(Tier.WRITE) == {"alice"}
        assert store.members(Tier.READ) == {"alice", "bob"}

    def test_json_text(self):
        text = json.dumps({"read": ["bob"], "write": [], "admin": []})
        store = MembershipStore.from_dict(ResourceKind.ELEMENT, text)
        assert store.usernames() == {"bob"}

    def test_empty_inputs(self):
        assert MembershipStore.from_dict(ResourceKind.PROJECT, None).usernames() == set()
        assert MembershipStore.from_dict(ResourceKind.PROJECT, "").usernames() == set()
        assert MembershipStore.from_dict(ResourceKind.PROJECT, {}).usernames() == set()

    def test_repairs_admin_only_entry(self):
        store = MembershipStore.from_dict(
            ResourceKind.PROJECT, {"read": [], "write": [], "admin": ["carol"]},
        )
        assert store.effective_tiers("carol") == (Tier.READ, Tier.WRITE, Tier.ADMIN)
        store.validate()  # should not raise


class TestValidate:

    def test_admin_without_write_is_violation(self):
        store = _make_store(read=["alice"], write=[], admin=["alice"])
        with pytest.raises(InvariantViolation) as exc_info:
            store.validate()
        assert "alice" in exc_info.value.message

    def test_write_without_read_is_violation(self):
        store = _make_store(read=[], write=["bob"], admin=[])
        with pytest.raises(InvariantViolation):
            store.validate()

    def test_empty_store_is_valid(self):
        _make_store().validate()


class TestCopy:

    def test_copy_is_independent(self):
        original = MembershipStore.seeded(ResourceKind.PROJECT, "alice")
        clone = original.copy()
        clone._raw_grant("bob", Tier.READ)
        assert "bob" not in original.usernames()
        assert clone != original

    def test_copy_compares_equal(self):
        original = MembershipStore.seeded(ResourceKind.PROJECT, "alice")
        assert original.copy() == original


class TestViews:

    def test_to_dict_lists_are_sorted(self):
        store = _make_store(read=["zed", "amy", "kim"])
        assert store.to_dict()["read"] == ["amy", "kim", "zed"]

    def test_role_map_lists_tiers_lowest_first(self):
        store = _make_store(read=["alice", "bob"], write=["alice"], admin=["alice"])
        assert store.role_map() == {
            "alice": ["read", "write", "admin"],
            "bob": ["read"],
        }

    def test_unknown_user_has_nothing(self):
        store = MembershipStore.seeded(ResourceKind.PROJECT, "alice")
        assert store.effective_tiers("bob") == ()
        assert store.highest_tier("bob") is Tier.NONE
        assert not store.has_tier("bob", Tier.READ)

    def test_members_is_read_only(self):
        store = MembershipStore.seeded(ResourceKind.PROJECT, "alice")
        assert isinstance(store.members(Tier.ADMIN), frozenset)
