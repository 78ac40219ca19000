"""
Tests for key strategies (keys/strategies.py)
"""

from datetime import datetime, timedelta, timezone

import pytest

from table_entity_store.exceptions import MissingKeyError
from table_entity_store.keys import (
    KEY_SEPARATOR,
    ConstantKeyStrategy,
    PropertyKeyStrategy,
    format_key_value,
)
from tests.helpers.models import Employee, Organization, Team


class TestPropertyKeyStrategy:
    """Test keys built from entity properties."""

    def test_key_embeds_property_name(self):
        strategy = PropertyKeyStrategy(Organization, "id")
        org = Organization(id="org-1", name="Acme")

        assert strategy.get_key(org) == "id::org-1"
        assert strategy.build_key("org-1") == "id" + KEY_SEPARATOR + "org-1"

    def test_custom_prefix_and_accessor(self):
        strategy = PropertyKeyStrategy(
            Organization, "name", accessor=lambda org: org.name.lower(), key_prefix="Name"
        )
        assert strategy.get_key(Organization(id="1", name="ACME")) == "Name::acme"

    def test_none_value_raises_missing_key(self):
        strategy = PropertyKeyStrategy(Organization, "external_id")

        with pytest.raises(MissingKeyError) as exc_info:
            strategy.get_key(Organization(id="org-1", name="Acme"))

        assert exc_info.value.key_prefix == "external_id"
        assert "Organization" in str(exc_info.value)

    def test_owns(self):
        strategy = PropertyKeyStrategy(Employee, "department", is_unique=False)
        assert strategy.owns("department::Sales")
        assert not strategy.owns("departments::Sales")
        assert not strategy.owns("Root")

    def test_applies_to(self):
        strategy = PropertyKeyStrategy(Organization, "id")
        assert strategy.applies_to(Organization)
        assert not strategy.applies_to(Employee)


class TestConstantKeyStrategy:
    """Test the fixed-partition strategy."""

    def test_constant_value(self):
        strategy = ConstantKeyStrategy("Root")

        assert strategy.get_key() == "Root"
        assert strategy.get_key(Organization(id="1", name="x")) == "Root"
        assert strategy.is_constant
        assert not strategy.is_unique

    def test_untyped_constant_applies_to_everything(self):
        strategy = ConstantKeyStrategy("Root")
        assert strategy.applies_to(Organization)
        assert strategy.applies_to(Employee)

    def test_owns_exact_value_only(self):
        strategy = ConstantKeyStrategy("Root")
        assert strategy.owns("Root")
        assert not strategy.owns("Root::x")


class TestFormatKeyValue:
    def test_enum_uses_member_name(self):
        assert format_key_value(Team.DATA) == "DATA"

    def test_datetime_normalised_to_utc(self):
        dt = datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_key_value(dt) == "2024-01-01T10:00:00+00:00"

    def test_other_values_use_str(self):
        assert format_key_value(42) == "42"
