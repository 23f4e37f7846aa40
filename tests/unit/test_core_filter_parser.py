"""Unit tests for the SCIM filter tokenizer, parser and compiler."""
import pytest

from scim_provisioning.core.errors import ValidationError
from scim_provisioning.core.filter_parser import (
    GROUP_ATTRIBUTE_MAP,
    USER_ATTRIBUTE_MAP,
    USER_VALUE_CODECS,
    ComparisonNode,
    LogicalNode,
    PresenceNode,
    compile_scim_filter,
    parse,
    tokenize,
)
from scim_provisioning.core.predicates import And, Comparison, Exists, MatchAll, Not, Or


def compile_user(text):
    return compile_scim_filter(text, USER_ATTRIBUTE_MAP, USER_VALUE_CODECS)


ALICE = {
    "id": "u1",
    "email": "alice@example.com",
    "firstName": "Alice",
    "lastName": "Smith",
    "status": "active",
    "employeeId": "E-1001",
    "assignment": {"unitId": "unit-eng", "positionId": None},
    "createdAt": "2024-01-10T09:00:00Z",
}
BOB = {
    "id": "u2",
    "email": "bob@corp.test",
    "firstName": "Bob",
    "lastName": "Jones",
    "status": "terminated",
    "phoneNumber": "+41 22 000 00 00",
    "assignment": {"unitId": None},
    "createdAt": "2024-03-01T09:00:00Z",
}


# ─────────────────────────────────────────────────────────────────────────────
# Tokenizer
# ─────────────────────────────────────────────────────────────────────────────
def test_tokenize_keeps_quoted_strings_whole():
    assert tokenize('userName eq "john doe"') == ("userName", "eq", '"john doe"')


def test_tokenize_does_not_split_keywords_inside_attribute_names():
    # "address" contains "and", "organization" contains "or"
    assert tokenize('address pr and organization eq "x"') == (
        "address", "pr", "and", "organization", "eq", '"x"'
    )


def test_tokenize_value_path_brackets():
    assert tokenize('emails[type eq "work"].value co "@x"') == (
        "emails", "[", "type", "eq", '"work"', "]", ".value", "co", '"@x"'
    )


@pytest.mark.parametrize("text", ['userName eq "john', r'userName eq "abc\"', 'userName eq "'])
def test_tokenize_unterminated_string_is_invalid_filter(text):
    with pytest.raises(ValidationError) as exc:
        tokenize(text)
    assert exc.value.scim_type == "invalidFilter"
    assert "Unterminated" in exc.value.detail


# ─────────────────────────────────────────────────────────────────────────────
# Parser
# ─────────────────────────────────────────────────────────────────────────────
def test_parse_simple_comparison_coerces_values():
    assert parse(tokenize('userName eq "a@b.c"')) == ComparisonNode("userName", "eq", "a@b.c")
    assert parse(tokenize("active eq TRUE")) == ComparisonNode("active", "eq", True)
    assert parse(tokenize("meta.version gt 3")) == ComparisonNode("meta.version", "gt", 3)
    assert parse(tokenize("score le 2.5")) == ComparisonNode("score", "le", 2.5)
    assert parse(tokenize("title eq null")) == ComparisonNode("title", "eq", None)


def test_parse_quoted_keyword_stays_a_string():
    assert parse(tokenize('nickName eq "true"')) == ComparisonNode("nickName", "eq", "true")


def test_parse_escaped_quote_in_value():
    node = parse(tokenize(r'displayName eq "say \"hi\""'))
    assert node.value == 'say "hi"'


def test_parse_operators_are_case_insensitive():
    node = parse(tokenize('userName EQ "x" AND title Pr'))
    assert node == LogicalNode("and", ComparisonNode("userName", "eq", "x"), PresenceNode("title"))


def test_parse_and_or_are_left_associative_at_equal_precedence():
    node = parse(tokenize('a eq "1" or b eq "2" and c eq "3"'))
    assert node.operator == "and"
    assert node.left.operator == "or"
    assert node.right == ComparisonNode("c", "eq", "3")


def test_parse_parentheses_override_grouping():
    node = parse(tokenize('a eq "1" or (b eq "2" and c eq "3")'))
    assert node.operator == "or"
    assert node.right.operator == "and"


def test_parse_not_wraps_following_term():
    node = parse(tokenize('not (userName eq "x")'))
    assert node == LogicalNode("not", ComparisonNode("userName", "eq", "x"))


def test_parse_value_path_is_kept_as_attribute_name():
    node = parse(tokenize('emails[type eq "work"].value co "@example.com"'))
    assert node == ComparisonNode('emails[type eq "work"].value', "co", "@example.com")


@pytest.mark.parametrize(
    "text",
    [
        "userName",                      # missing operator
        'userName xx "a"',               # unsupported operator
        "userName eq",                   # missing value
        '(userName eq "a"',              # unbalanced parenthesis
        'userName eq "a")',              # trailing input
        'userName eq "a" and',           # dangling logical operator
        'emails[type eq "work" co "x"',  # unbalanced bracket
    ],
)
def test_parse_malformed_filters_raise_invalid_filter(text):
    with pytest.raises(ValidationError) as exc:
        compile_user(text)
    assert exc.value.status == 400
    assert exc.value.scim_type == "invalidFilter"


# ─────────────────────────────────────────────────────────────────────────────
# Attribute mapping and compilation
# ─────────────────────────────────────────────────────────────────────────────
def test_blank_filter_matches_everything():
    assert compile_user(None) == MatchAll()
    assert compile_user("   ") == MatchAll()
    assert MatchAll().to_query() == {}


def test_user_attributes_map_to_storage_fields():
    assert compile_user('userName eq "alice@example.com"') == Comparison("email", "eq", "alice@example.com")
    assert compile_user('name.familyName sw "Sm"') == Comparison("lastName", "sw", "Sm")
    assert compile_user('externalId eq "E-1001"') == Comparison("employeeId", "eq", "E-1001")
    assert compile_user(
        'urn:ietf:params:scim:schemas:extension:enterprise:2.0:User:department eq "unit-eng"'
    ) == Comparison("assignment.unitId", "eq", "unit-eng")


def test_attribute_lookup_is_case_insensitive():
    assert compile_user('USERNAME eq "a@b.c"') == Comparison("email", "eq", "a@b.c")


def test_value_filter_falls_back_to_plain_attribute():
    predicate = compile_user('emails[type eq "work"].value co "@example.com"')
    assert predicate == Comparison("email", "co", "@example.com")


def test_unknown_attribute_passes_through():
    assert compile_user('title eq "CTO"') == Comparison("title", "eq", "CTO")


def test_group_attributes_map_to_org_unit_fields():
    predicate = compile_scim_filter('displayName eq "Engineering" and externalId pr', GROUP_ATTRIBUTE_MAP)
    assert predicate == And(Comparison("name", "eq", "Engineering"), Exists("code"))


def test_active_true_maps_to_status_active():
    assert compile_user("active eq true") == Comparison("status", "eq", "active")


def test_active_false_matches_every_non_active_status():
    predicate = compile_user("active eq false")
    assert predicate == Comparison("status", "ne", "active")
    assert not predicate.matches(ALICE)
    assert predicate.matches(BOB)
    assert predicate.matches({**ALICE, "status": "inactive"})


def test_active_ne_true_is_the_same_as_active_eq_false():
    assert compile_user("active ne true") == compile_user("active eq false")


# ─────────────────────────────────────────────────────────────────────────────
# Evaluation and query rendering
# ─────────────────────────────────────────────────────────────────────────────
def test_string_operators_are_case_insensitive():
    assert compile_user('userName eq "ALICE@example.com"').matches(ALICE)
    assert compile_user('name.givenName co "LIC"').matches(ALICE)
    assert compile_user('userName ew "EXAMPLE.COM"').matches(ALICE)
    assert not compile_user('userName sw "bob"').matches(ALICE)


def test_ordering_comparison_on_dates():
    predicate = compile_user('meta.created gt "2024-02-01T00:00:00Z"')
    assert predicate.matches(BOB)
    assert not predicate.matches(ALICE)


def test_presence_treats_missing_and_empty_values_as_absent():
    predicate = compile_user("phoneNumbers pr")
    assert predicate.matches(BOB)
    assert not predicate.matches(ALICE)
    assert not predicate.matches({**ALICE, "phoneNumber": ""})


def test_not_and_or_evaluate():
    predicate = compile_user('not (active eq true) or userName sw "alice"')
    assert isinstance(predicate, Or)
    assert isinstance(predicate.left, Not)
    assert predicate.matches(ALICE)
    assert predicate.matches(BOB)
    assert not predicate.matches({**BOB, "status": "active"})


def test_comparison_with_mismatched_types_does_not_match():
    assert not compile_user("meta.created gt 5").matches(ALICE)


def test_to_query_renders_document_store_filter():
    predicate = compile_user('userName co "a.b" and not (active eq true)')
    assert predicate.to_query() == {
        "$and": [
            {"email": {"$regex": r"a\.b", "$options": "i"}},
            {"$nor": [{"status": "active"}]},
        ]
    }


def test_to_query_for_ordering_and_presence():
    assert compile_user('meta.lastModified ge "2024-01-01"').to_query() == {"updatedAt": {"$gte": "2024-01-01"}}
    assert compile_user("externalId pr").to_query() == {"employeeId": {"$exists": True, "$ne": None}}
    assert compile_user('userName sw "al"').to_query() == {"email": {"$regex": "^al", "$options": "i"}}
