"""
Interception rule engine tests: parsing, evaluation order and each rule kind.
"""

from datetime import date

import pytest

from policyhub.models import InsurerApiConfig
from policyhub.services.interception import (
    AgeRestriction, ApplicationContext, InsuredPersonContext, InterceptRuleSet,
    InterceptViolation, MinInsuredCount, PolicyLimitCheck, RegionRestriction, RuleLookups,
    calculate_age, describe_rules, evaluate, load_rule_set
)

from tests.conftest import TODAY, FIXED_PRODUCT_ID, RATED_PRODUCT_ID, set_intercept_rules, add_existing_application


class StubLookups:
    """In-memory stand-in for the database lookups."""

    def __init__(self, open_ids=(), policy_counts=None):
        self.open_ids = set(open_ids)
        self.policy_counts = policy_counts or {}
        self.calls = []

    def has_open_application(self, id_number, product_id, statuses):
        self.calls.append(("duplicate", id_number))
        return id_number in self.open_ids

    def count_policies(self, id_number, product_id, statuses):
        self.calls.append(("policy", id_number))
        return self.policy_counts.get(id_number, 0)


def make_context(province="北京市", counts=(5,), persons=()):
    return ApplicationContext(
        product_id=FIXED_PRODUCT_ID,
        province=province,
        plan_insured_counts=list(counts),
        insured_persons=list(persons),
        today=TODAY,
    )


def person(id_number, birth_date, name="Zhang San"):
    return InsuredPersonContext(name=name, id_number=id_number, birth_date=birth_date)


ALL_RULES = {
    "region_restriction": {"denied_regions": ["西藏自治区"]},
    "min_insured_count": {"min_count": 3},
    "age_restriction": {"min_age": 16, "max_age": 65},
    "duplicate_application_check": {"check_scope": "platform_only"},
    "policy_limit_check": {"max_policies_per_employee": 1},
}


# ============================================================================
# 1. PARSING
# ============================================================================

class TestRuleSetParsing:

    def test_rules_in_evaluation_order(self):
        rule_set = InterceptRuleSet.parse({
            "policy_limit_check": {},
            "age_restriction": {},
            "region_restriction": {"denied_regions": []},
            "min_insured_count": {"min_count": 2},
        })
        assert [type(rule) for rule in rule_set] == [
            RegionRestriction, MinInsuredCount, AgeRestriction, PolicyLimitCheck
        ]

    def test_parse_json_string(self):
        rule_set = InterceptRuleSet.parse('{"min_insured_count": {"min_count": 7}}')
        assert len(rule_set) == 1
        assert rule_set.rules[0].effective_min_count == 7

    def test_empty_config_uses_defaults(self):
        rule_set = InterceptRuleSet.parse({"min_insured_count": {}, "age_restriction": {}})
        count_rule, age_rule = rule_set.rules
        assert count_rule.effective_min_count == 3
        assert age_rule.bounds == (16, 65)

    def test_disabled_keys_skipped(self):
        rule_set = InterceptRuleSet.parse({"min_insured_count": None, "age_restriction": False})
        assert len(rule_set) == 0

    def test_unknown_keys_ignored(self):
        rule_set = InterceptRuleSet.parse({"blacklist": {"ids": []}})
        assert len(rule_set) == 0
        assert rule_set.to_dict() == {"blacklist": {"ids": []}}

    @pytest.mark.parametrize("raw", [None, "", "{not json", "[1, 2]"])
    def test_missing_or_malformed_is_empty(self, raw):
        assert len(InterceptRuleSet.parse(raw)) == 0

    def test_description_override(self):
        rule = MinInsuredCount(min_count=5, description="Five or more")
        assert rule.description == "Five or more"
        assert rule.default_description() == "At least 5 insured persons"

    def test_null_denied_regions_is_empty(self):
        rule_set = InterceptRuleSet.parse({"region_restriction": {"denied_regions": None}})
        assert len(rule_set) == 1
        assert rule_set.rules[0].denied_regions == []

    def test_invalid_field_type_skips_rule(self):
        """A rule whose config cannot be read is dropped, the others still apply."""
        rule_set = InterceptRuleSet.parse({
            "min_insured_count": {"min_count": "三"},
            "age_restriction": {"min_age": 18},
        })
        assert [type(rule) for rule in rule_set] == [AgeRestriction]


# ============================================================================
# 2. AGE CALCULATION
# ============================================================================

class TestCalculateAge:

    def test_birthday_today(self):
        assert calculate_age(date(2009, 6, 15), TODAY) == 16

    def test_birthday_tomorrow(self):
        assert calculate_age(date(2009, 6, 16), TODAY) == 15

    def test_birthday_yesterday(self):
        assert calculate_age(date(1960, 6, 14), TODAY) == 65


# ============================================================================
# 3. EVALUATION
# ============================================================================

class TestEvaluate:

    def test_region_denied(self):
        rule_set = InterceptRuleSet.parse(ALL_RULES)
        with pytest.raises(InterceptViolation) as exc_info:
            evaluate(rule_set, make_context(province="西藏自治区"), StubLookups())
        assert exc_info.value.kind == "RegionDenied"

    def test_region_check_runs_first(self):
        """A denied region wins over a too-small group."""
        rule_set = InterceptRuleSet.parse(ALL_RULES)
        with pytest.raises(InterceptViolation) as exc_info:
            evaluate(rule_set, make_context(province="西藏自治区", counts=(1,)), StubLookups())
        assert exc_info.value.kind == "RegionDenied"

    def test_missing_province_passes_region_check(self):
        rule_set = InterceptRuleSet.parse({"region_restriction": {"denied_regions": ["西藏自治区"]}})
        evaluate(rule_set, make_context(province=None), StubLookups())

    def test_insured_count_summed_across_plans(self):
        rule_set = InterceptRuleSet.parse({"min_insured_count": {"min_count": 3}})
        evaluate(rule_set, make_context(counts=(1, 2)), StubLookups())
        with pytest.raises(InterceptViolation) as exc_info:
            evaluate(rule_set, make_context(counts=(1, 1)), StubLookups())
        assert exc_info.value.kind == "InsuredCountTooLow"

    @pytest.mark.parametrize("birth_date,allowed", [
        (date(2009, 6, 15), True),   # turns 16 today
        (date(2009, 6, 16), False),  # turns 16 tomorrow
        (date(1960, 6, 15), True),   # turns 65 today
        (date(1959, 6, 16), True),   # turns 66 tomorrow
        (date(1959, 6, 15), False),  # turned 66 today
    ])
    def test_age_boundaries(self, birth_date, allowed):
        rule_set = InterceptRuleSet.parse({"age_restriction": {"min_age": 16, "max_age": 65}})
        context = make_context(persons=[person("110101000000000001", birth_date)])
        if allowed:
            evaluate(rule_set, context, StubLookups())
        else:
            with pytest.raises(InterceptViolation) as exc_info:
                evaluate(rule_set, context, StubLookups())
            assert exc_info.value.kind == "AgeOutOfRange"
            assert exc_info.value.person["id_number"] == "110101000000000001"

    def test_person_without_birth_date_skipped(self):
        rule_set = InterceptRuleSet.parse({"age_restriction": {}})
        evaluate(rule_set, make_context(persons=[person("110101000000000001", None)]), StubLookups())

    def test_duplicate_application(self):
        rule_set = InterceptRuleSet.parse({"duplicate_application_check": {}})
        lookups = StubLookups(open_ids={"110101000000000002"})
        context = make_context(persons=[
            person("110101000000000001", date(1990, 1, 1)),
            person("110101000000000002", date(1990, 1, 1), name="Li Si"),
        ])
        with pytest.raises(InterceptViolation) as exc_info:
            evaluate(rule_set, context, lookups)
        assert exc_info.value.kind == "DuplicateApplication"
        assert "Li Si" in exc_info.value.message

    def test_policy_limit(self):
        rule_set = InterceptRuleSet.parse({"policy_limit_check": {"max_policies_per_employee": 2}})
        context = make_context(persons=[person("110101000000000001", date(1990, 1, 1))])
        evaluate(rule_set, context, StubLookups(policy_counts={"110101000000000001": 1}))
        with pytest.raises(InterceptViolation) as exc_info:
            evaluate(rule_set, context, StubLookups(policy_counts={"110101000000000001": 2}))
        assert exc_info.value.kind == "PolicyLimitExceeded"

    def test_roster_rules_skipped_without_roster(self):
        rule_set = InterceptRuleSet.parse(ALL_RULES)
        lookups = StubLookups(open_ids={"anything"})
        evaluate(rule_set, make_context(persons=[]), lookups)
        assert lookups.calls == []

    def test_first_violation_stops_evaluation(self):
        rule_set = InterceptRuleSet.parse(ALL_RULES)
        lookups = StubLookups()
        context = make_context(persons=[person("110101000000000001", date(2015, 1, 1))])
        with pytest.raises(InterceptViolation):
            evaluate(rule_set, context, lookups)
        assert lookups.calls == []

    def test_empty_rule_set_passes(self):
        evaluate(InterceptRuleSet.parse(None), make_context(province="西藏自治区", counts=(0,)))


# ============================================================================
# 4. DATABASE LOOKUPS
# ============================================================================

class TestRuleLookups:

    def test_open_application_found(self, session, engine):
        add_existing_application(engine, FIXED_PRODUCT_ID, "110101199001011234", status="active")
        lookups = RuleLookups(session)
        assert lookups.has_open_application("110101199001011234", FIXED_PRODUCT_ID, ["active"])
        assert not lookups.has_open_application("110101199001011234", RATED_PRODUCT_ID, ["active"])
        assert not lookups.has_open_application("110101199001011234", FIXED_PRODUCT_ID, ["draft"])

    def test_count_policies(self, session, engine):
        add_existing_application(engine, FIXED_PRODUCT_ID, "110101199001011234",
                                 status="expired", policy_status="active")
        add_existing_application(engine, FIXED_PRODUCT_ID, "110101199001011234",
                                 status="approved", policy_status="cancelled")
        lookups = RuleLookups(session)
        assert lookups.count_policies("110101199001011234", FIXED_PRODUCT_ID, ["active", "in_force"]) == 1
        assert lookups.count_policies("110101199009099999", FIXED_PRODUCT_ID, ["active"]) == 0


# ============================================================================
# 5. RULE CONFIGURATION READS
# ============================================================================

class TestRuleConfiguration:

    def test_load_rule_set(self, session, engine):
        set_intercept_rules(engine, ALL_RULES)
        rule_set = load_rule_set(session, 1)
        assert len(rule_set) == 5

    def test_load_rule_set_other_channel(self, session, engine, monkeypatch):
        set_intercept_rules(engine, ALL_RULES)
        monkeypatch.setenv("INTERCEPT_CHANNEL_CODE", "OTHER")
        assert len(load_rule_set(session, 1)) == 0

    def test_load_rule_set_disabled_config(self, session, engine):
        set_intercept_rules(engine, ALL_RULES)
        config = session.get(InsurerApiConfig, 1)
        config.status = "disabled"
        session.add(config)
        session.commit()
        assert len(load_rule_set(session, 1)) == 0

    def test_describe_rules(self, session, engine):
        set_intercept_rules(engine, {
            "min_insured_count": {"min_count": 5},
            "region_restriction": {"denied_regions": ["西藏自治区", "新疆维吾尔自治区"]},
        })
        rows = describe_rules(session)
        # Two rules for each of the insurer's two products
        assert len(rows) == 4
        assert rows[0]["rule_type"] == "region"
        assert rows[0]["condition_value"] == "西藏自治区、新疆维吾尔自治区"
        assert rows[0]["rule_id"] == "1_region_1"
        count_rows = [row for row in rows if row["rule_type"] == "insured_count"]
        assert count_rows[0]["condition_value"] == ">= 5"
        assert count_rows[0]["error_kind"] == "InsuredCountTooLow"
        assert count_rows[0]["action"] == "intercept"

    def test_describe_rules_skips_malformed(self, session, engine):
        set_intercept_rules(engine, "{broken")
        assert describe_rules(session) == []

    def test_product_rules_endpoint(self, client, engine):
        set_intercept_rules(engine, ALL_RULES)
        response = client.get(f"/api/products/{FIXED_PRODUCT_ID}/intercept-rules")
        assert response.status_code == 200
        assert response.json()["data"] == ALL_RULES

    def test_product_rules_endpoint_without_rules(self, client):
        response = client.get(f"/api/products/{FIXED_PRODUCT_ID}/intercept-rules")
        assert response.status_code == 200
        assert response.json()["data"] == {}

    def test_product_rules_endpoint_unknown_product(self, client):
        response = client.get("/api/products/999/intercept-rules")
        assert response.status_code == 404

    def test_rule_listing_endpoint(self, client, engine):
        set_intercept_rules(engine, {"age_restriction": {"min_age": 18, "max_age": 60}})
        response = client.get("/api/products/intercept-rules/list")
        body = response.json()
        assert body["count"] == 2
        assert body["data"][0]["condition_value"] == "18-60"
