"""Tests for usage_spine.core.namespace — per-user id namespacing."""

from __future__ import annotations

import uuid

import pytest

from usage_spine.core.errors import ValidationError
from usage_spine.core.namespace import (
    BASE_NAMESPACE,
    NamespaceTransformer,
    transform_id,
    user_namespace,
)


class TestTransformId:
    """The pure two-stage derivation."""

    def test_deterministic(self):
        """Same local id and user always give the same transformed id."""
        first = transform_id("session-1", "user-a")
        for _ in range(5):
            assert transform_id("session-1", "user-a") == first

    def test_isolates_users(self):
        """Different users never share a transformed id."""
        assert transform_id("session-1", "user-a") != transform_id("session-1", "user-b")

    def test_distinct_local_ids(self):
        assert transform_id("a", "user-a") != transform_id("b", "user-a")

    def test_matches_uuid5_two_stage(self):
        """Output is uuid5(uuid5(BASE, user), local)."""
        expected = uuid.uuid5(uuid.uuid5(BASE_NAMESPACE, "user-a"), "msg-1")
        assert transform_id("msg-1", "user-a") == str(expected)

    def test_output_is_canonical_uuid(self):
        value = transform_id("msg-1", "user-a")
        parsed = uuid.UUID(value)
        assert str(parsed) == value
        assert parsed.version == 5

    def test_base_namespace_constant(self):
        assert str(BASE_NAMESPACE) == "6ba7b810-9dad-11d1-80b4-00c04fd430c8"

    def test_empty_user_rejected(self):
        with pytest.raises(ValidationError):
            transform_id("msg-1", "")


class TestDegenerateInput:
    """Values uuid5 cannot encode take the keyed-hash fallback."""

    def test_lone_surrogate_is_deterministic(self):
        bad = "msg-\udc80"
        first = transform_id(bad, "user-a")
        assert transform_id(bad, "user-a") == first

    def test_fallback_is_uuid_shaped(self):
        value = transform_id("msg-\udc80", "user-a")
        parsed = uuid.UUID(value)
        assert parsed.version == 5
        assert str(parsed) == value

    def test_fallback_still_isolates_users(self):
        assert transform_id("msg-\udc80", "user-a") != transform_id("msg-\udc80", "user-b")

    def test_degenerate_user_id(self):
        ns = user_namespace("user-\udc80")
        assert isinstance(ns, uuid.UUID)
        assert ns == user_namespace("user-\udc80")


class TestNamespaceTransformer:
    """Session-scoped, memoising transformer."""

    def test_matches_pure_function(self):
        t = NamespaceTransformer("user-a")
        assert t("session-1") == transform_id("session-1", "user-a")
        assert t.transform("session-1") == t("session-1")

    def test_caches_results(self):
        t = NamespaceTransformer("user-a")
        t("x")
        t("x")
        assert list(t._cache) == ["x"]

    def test_empty_user_rejected(self):
        with pytest.raises(ValidationError):
            NamespaceTransformer("")

    def test_repr_has_no_user_id(self):
        assert "user-a" not in repr(NamespaceTransformer("user-a"))
