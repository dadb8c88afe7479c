"""
Unit tests for condition parsing.
"""

import pytest

from shared.errors import ConfigurationError
from service_authz.app.policies.conditions import (
    AttributeCondition, CompositeCondition, CompositeOperator, DefaultCondition,
    IpAllowlistCondition, OwnershipCondition, TimeCondition, parse_condition, parse_time_of_day
)


class TestParseCondition:
    """Test cases for parse_condition."""

    def test_time_window(self):
        condition = parse_condition({"type": "time", "startTime": "09:00", "endTime": "17:30"})

        assert condition == TimeCondition(start_minutes=540, end_minutes=1050)

    def test_days_of_week(self):
        condition = parse_condition({"type": "time", "daysOfWeek": [1, 2, 3]})

        assert condition == TimeCondition(days_of_week=(1, 2, 3))

    def test_time_without_fields(self):
        assert parse_condition({"type": "time", "startTime": "09:00"}) == TimeCondition()

    def test_ip_allowlist(self):
        condition = parse_condition({"type": "ip", "allowedIps": ["10.0.0.1", "10.0.0.2"]})

        assert condition == IpAllowlistCondition(allowed_ips=("10.0.0.1", "10.0.0.2"))

    def test_empty_lists_are_kept(self):
        assert parse_condition({"type": "ip", "allowedIps": []}) == IpAllowlistCondition(allowed_ips=())
        assert parse_condition({"type": "ip"}) == IpAllowlistCondition()
        assert parse_condition({"type": "time", "daysOfWeek": []}) == TimeCondition(days_of_week=())

    def test_attribute(self):
        condition = parse_condition({"type": "attribute", "attributes": {"department": "risk"}})

        assert isinstance(condition, AttributeCondition)
        assert condition.attributes == {"department": "risk"}

    def test_ownership(self):
        assert parse_condition({"type": "ownership", "resourceField": "ownerId"}) == \
            OwnershipCondition(resource_field="ownerId")
        assert parse_condition({"type": "ownership"}) == OwnershipCondition()

    def test_composite_accepts_children_or_conditions(self):
        """Test both spellings of the child list."""
        first = parse_condition({"type": "composite", "operator": "and", "children": [{"type": "time"}]})
        second = parse_condition({"type": "composite", "operator": "AND", "conditions": [{"type": "time"}]})

        assert first == second
        assert first.operator is CompositeOperator.AND
        assert first.children == (TimeCondition(),)

    def test_not_with_nested_condition(self):
        condition = parse_condition({
            "type": "composite",
            "operator": "NOT",
            "condition": {"type": "ip", "allowedIps": ["10.0.0.1"]}
        })

        assert condition == CompositeCondition(
            operator=CompositeOperator.NOT,
            children=(IpAllowlistCondition(allowed_ips=("10.0.0.1",)),)
        )

    def test_not_with_single_child(self):
        condition = parse_condition({"type": "composite", "operator": "NOT", "children": [{"userId": "u-1"}]})

        assert condition.children == (DefaultCondition(user_id="u-1"),)

    def test_json_string_document(self):
        condition = parse_condition('{"type": "ownership", "resourceField": "ownerId"}')

        assert condition == OwnershipCondition(resource_field="ownerId")

    def test_untyped_and_unknown_documents(self):
        assert parse_condition(None) == DefaultCondition()
        assert parse_condition({}) == DefaultCondition()
        assert parse_condition({"type": "geo", "userId": 42}) == DefaultCondition(user_id="42")

    @pytest.mark.parametrize("document", [
        "{not json",
        ["a", "list"],
        {"type": "composite", "operator": "XOR", "children": []},
        {"type": "composite", "operator": "AND", "children": {"type": "time"}},
        {"type": "composite", "operator": "NOT", "children": [{}, {}]},
        {"type": "time", "startTime": "9am", "endTime": "17:00"},
        {"type": "time", "daysOfWeek": [7]},
        {"type": "ip", "allowedIps": "10.0.0.1"},
        {"type": "attribute", "attributes": ["department"]},
    ])
    def test_malformed_documents_raise(self, document):
        """Test that malformed documents are configuration errors."""
        with pytest.raises(ConfigurationError):
            parse_condition(document)

    @pytest.mark.parametrize("value,minutes", [("00:00", 0), ("09:05", 545), ("23:59", 1439)])
    def test_parse_time_of_day(self, value, minutes):
        assert parse_time_of_day(value) == minutes

    def test_parse_time_of_day_out_of_range(self):
        with pytest.raises(ConfigurationError):
            parse_time_of_day("24:00")
