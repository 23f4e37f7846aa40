"""Unit tests for /Users and /Groups operations on the resource gateway."""
import pytest

from scim_provisioning.core.errors import ConflictError, NotFoundError, ValidationError
from scim_provisioning.core.repositories import InMemoryDocumentRepository
from scim_provisioning.core.resource_gateway import PATCH_OP_SCHEMA, ResourceGateway, ResourceKind
from scim_provisioning.core.scim_transformer import ENTERPRISE_USER_SCHEMA
from tests.conftest import group_payload, user_payload

USER = ResourceKind.USER
GROUP = ResourceKind.GROUP


class RecordingDispatcher:
    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    def trigger(self, event, resource, previous=None):
        self.events.append((event, resource, previous))
        if self.fail:
            raise RuntimeError("webhook store unavailable")
        return 1


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def gateway(dispatcher):
    return ResourceGateway(
        InMemoryDocumentRepository(),
        InMemoryDocumentRepository(),
        dispatcher=dispatcher,
        base_url="https://scim.example.test/scim/v2",
        default_page_size=2,
        max_page_size=3,
    )


def patch_body(*operations):
    return {"schemas": [PATCH_OP_SCHEMA], "Operations": list(operations)}


# ─────────────────────────────────────────────────────────────────────────────
# Users: create / get / replace / delete
# ─────────────────────────────────────────────────────────────────────────────
def test_create_user_returns_scim_resource_and_notifies(gateway, dispatcher):
    user = gateway.create(USER, user_payload(externalId="E-1"))

    assert user["userName"] == "alice@example.com"
    assert user["active"] is True
    assert user["externalId"] == "E-1"
    assert user["meta"]["location"] == f"https://scim.example.test/scim/v2/Users/{user['id']}"
    assert user["meta"]["created"].endswith("Z")

    stored = gateway.identities.find_by_id(user["id"])
    assert stored["status"] == "active"
    assert stored["assignment"] == {"unitId": None, "positionId": None}
    assert dispatcher.events == [("user.created", user, None)]


def test_create_user_with_active_false_is_inactive(gateway):
    user = gateway.create(USER, user_payload(active=False))
    assert user["active"] is False
    assert gateway.identities.find_by_id(user["id"])["status"] == "inactive"


def test_create_user_normalises_email(gateway):
    user = gateway.create(USER, user_payload(email="Alice@Example.COM"))
    assert user["userName"] == "alice@example.com"


def test_create_user_keeps_submitted_username_over_emails(gateway):
    body = user_payload(emails=[{"value": "alice.work@example.com", "primary": True}])
    user = gateway.create(USER, body)
    assert user["userName"] == "alice@example.com"
    assert gateway.get(USER, user["id"])["userName"] == "alice@example.com"

    # uniqueness is checked on userName, not on the ignored emails entry
    other = gateway.create(USER, user_payload(email="alice.work@example.com", given="Other"))
    assert other["userName"] == "alice.work@example.com"


def test_create_user_rejects_duplicate_username(gateway):
    gateway.create(USER, user_payload())
    with pytest.raises(ConflictError) as exc:
        gateway.create(USER, user_payload(email="ALICE@example.com", given="Other"))
    assert exc.value.status == 409
    assert exc.value.scim_type == "uniqueness"


@pytest.mark.parametrize(
    "body",
    [
        {"name": {"givenName": "A", "familyName": "B"}},
        {"userName": "not-an-email", "name": {"givenName": "A", "familyName": "B"}},
        {"userName": "a@b.co", "name": {"givenName": "A"}},
        {"userName": "a@b.co", "name": {"givenName": "A", "familyName": "B"}, "active": "yes"},
        {"userName": "a@b.co", "name": {"givenName": "A", "familyName": "B"}, "emails": [{"value": "bad"}]},
    ],
)
def test_create_user_validation_errors(gateway, body):
    with pytest.raises(ValidationError) as exc:
        gateway.create(USER, body)
    assert exc.value.status == 400


def test_create_user_rejects_non_object_body(gateway):
    with pytest.raises(ValidationError) as exc:
        gateway.create(USER, ["not", "an", "object"])
    assert exc.value.scim_type == "invalidSyntax"


def test_get_unknown_user_is_not_found(gateway):
    with pytest.raises(NotFoundError) as exc:
        gateway.get(USER, "missing")
    assert exc.value.status == 404


def test_replace_user_overwrites_and_keeps_identity(gateway, dispatcher):
    created = gateway.create(USER, user_payload(externalId="E-1"))
    replaced = gateway.replace(
        USER,
        created["id"],
        user_payload(email="alice.smith@example.com", given="Alicia", active=False),
    )

    assert replaced["id"] == created["id"]
    assert replaced["userName"] == "alice.smith@example.com"
    assert replaced["name"]["givenName"] == "Alicia"
    assert replaced["active"] is False
    assert replaced["externalId"] == "E-1"  # not supplied, so kept
    assert replaced["meta"]["created"] == created["meta"]["created"]

    event, resource, previous = dispatcher.events[-1]
    assert event == "user.updated"
    assert resource == replaced
    assert previous == created


def test_replace_user_cannot_take_another_users_email(gateway):
    gateway.create(USER, user_payload(email="bob@example.com", given="Bob"))
    alice = gateway.create(USER, user_payload())
    with pytest.raises(ConflictError):
        gateway.replace(USER, alice["id"], user_payload(email="bob@example.com"))


def test_delete_user_is_soft_and_idempotent(gateway, dispatcher):
    user = gateway.create(USER, user_payload())

    gateway.delete(USER, user["id"])
    gateway.delete(USER, user["id"])

    assert gateway.identities.find_by_id(user["id"])["status"] == "terminated"
    assert gateway.get(USER, user["id"])["active"] is False
    deleted_events = [e for e in dispatcher.events if e[0] == "user.deleted"]
    assert len(deleted_events) == 1


def test_notification_failure_does_not_fail_mutation():
    gateway = ResourceGateway(
        InMemoryDocumentRepository(), InMemoryDocumentRepository(), dispatcher=RecordingDispatcher(fail=True)
    )
    user = gateway.create(USER, user_payload())
    assert gateway.get(USER, user["id"])["userName"] == "alice@example.com"


# ─────────────────────────────────────────────────────────────────────────────
# Listing
# ─────────────────────────────────────────────────────────────────────────────
def _seed_users(gateway, count):
    return [
        gateway.create(USER, user_payload(email=f"user{i}@example.com", given=f"User{i}"))
        for i in range(count)
    ]


def test_list_paginates_with_default_page_size(gateway):
    _seed_users(gateway, 5)
    ordered = [r["id"] for r in gateway.list(USER, count=3)["Resources"]]

    page = gateway.list(USER)

    assert page["schemas"] == ["urn:ietf:params:scim:api:messages:2.0:ListResponse"]
    assert page["totalResults"] == 5
    assert page["startIndex"] == 1
    assert page["itemsPerPage"] == 2
    assert [r["id"] for r in page["Resources"]] == ordered[:2]


def test_list_start_index_and_count(gateway):
    _seed_users(gateway, 5)
    tail = [r["id"] for r in gateway.list(USER, start_index=3, count=3)["Resources"]]
    page = gateway.list(USER, start_index="4", count="10")
    assert page["itemsPerPage"] == 2  # clamped to max_page_size=3, only 2 left
    assert [r["id"] for r in page["Resources"]] == tail[1:]


def test_list_start_index_below_one_is_treated_as_one(gateway):
    _seed_users(gateway, 2)
    assert gateway.list(USER, start_index=0)["startIndex"] == 1


def test_list_count_zero_returns_only_total(gateway):
    _seed_users(gateway, 3)
    page = gateway.list(USER, count=0)
    assert page["totalResults"] == 3
    assert page["Resources"] == []


def test_list_rejects_non_numeric_paging(gateway):
    with pytest.raises(ValidationError):
        gateway.list(USER, start_index="abc")


def test_list_filters_users(gateway):
    _seed_users(gateway, 3)
    page = gateway.list(USER, filter_text='userName eq "user1@example.com"')
    assert page["totalResults"] == 1
    assert page["Resources"][0]["name"]["givenName"] == "User1"


def test_list_filter_on_active(gateway):
    users = _seed_users(gateway, 3)
    gateway.delete(USER, users[0]["id"])

    assert gateway.list(USER, filter_text="active eq true")["totalResults"] == 2
    assert gateway.list(USER, filter_text="active eq false")["totalResults"] == 1


def test_list_invalid_filter(gateway):
    with pytest.raises(ValidationError) as exc:
        gateway.list(USER, filter_text="userName eq")
    assert exc.value.scim_type == "invalidFilter"


# ─────────────────────────────────────────────────────────────────────────────
# Users: PatchOp
# ─────────────────────────────────────────────────────────────────────────────
def test_patch_replace_active(gateway, dispatcher):
    user = gateway.create(USER, user_payload())
    patched = gateway.patch(USER, user["id"], patch_body({"op": "Replace", "path": "active", "value": False}))
    assert patched["active"] is False
    assert dispatcher.events[-1][0] == "user.updated"


def test_patch_accepts_string_booleans(gateway):
    user = gateway.create(USER, user_payload(active=False))
    patched = gateway.patch(USER, user["id"], patch_body({"op": "replace", "path": "active", "value": "True"}))
    assert patched["active"] is True


def test_patch_without_path_applies_object_keys(gateway):
    user = gateway.create(USER, user_payload())
    patched = gateway.patch(
        USER,
        user["id"],
        patch_body({
            "op": "replace",
            "value": {
                "active": False,
                "name": {"familyName": "Doe"},
                ENTERPRISE_USER_SCHEMA: {"employeeNumber": "E-9", "department": "unit-1"},
            },
        }),
    )
    assert patched["active"] is False
    assert patched["name"]["familyName"] == "Doe"
    assert patched["externalId"] == "E-9"
    assert patched[ENTERPRISE_USER_SCHEMA]["department"] == "unit-1"


def test_patch_emails_and_phone_numbers(gateway):
    user = gateway.create(USER, user_payload())
    patched = gateway.patch(
        USER,
        user["id"],
        patch_body(
            {"op": "replace", "path": "emails", "value": [{"value": "NEW@example.com", "primary": True}]},
            {"op": "add", "path": "phoneNumbers", "value": [{"value": "+1 555 0100", "type": "work"}]},
        ),
    )
    assert patched["userName"] == "new@example.com"
    assert patched["phoneNumbers"][0]["value"] == "+1 555 0100"

    patched = gateway.patch(USER, user["id"], patch_body({"op": "remove", "path": "phoneNumbers"}))
    assert "phoneNumbers" not in patched


def test_patch_email_conflict(gateway):
    gateway.create(USER, user_payload(email="bob@example.com", given="Bob"))
    alice = gateway.create(USER, user_payload())
    with pytest.raises(ConflictError):
        gateway.patch(USER, alice["id"], patch_body({"op": "replace", "path": "userName", "value": "bob@example.com"}))


def test_patch_remove_required_attribute_is_rejected(gateway):
    user = gateway.create(USER, user_payload())
    with pytest.raises(ValidationError) as exc:
        gateway.patch(USER, user["id"], patch_body({"op": "remove", "path": "name.givenName"}))
    assert exc.value.scim_type == "mutability"


def test_patch_unknown_path_is_ignored_without_notification(gateway, dispatcher):
    user = gateway.create(USER, user_payload())
    before = len(dispatcher.events)
    patched = gateway.patch(USER, user["id"], patch_body({"op": "replace", "path": "nickName", "value": "Ali"}))
    assert patched == user
    assert len(dispatcher.events) == before


@pytest.mark.parametrize(
    "body,scim_type",
    [
        ({"Operations": [{"op": "replace", "path": "active", "value": True}]}, "invalidSyntax"),
        ({"schemas": [PATCH_OP_SCHEMA], "Operations": []}, "invalidSyntax"),
        ({"schemas": [PATCH_OP_SCHEMA], "Operations": [{"op": "move", "path": "active"}]}, "invalidSyntax"),
        ({"schemas": [PATCH_OP_SCHEMA], "Operations": [{"op": "remove"}]}, "noTarget"),
    ],
)
def test_patch_malformed_requests(gateway, body, scim_type):
    user = gateway.create(USER, user_payload())
    with pytest.raises(ValidationError) as exc:
        gateway.patch(USER, user["id"], body)
    assert exc.value.scim_type == scim_type


def test_patch_unknown_user(gateway):
    with pytest.raises(NotFoundError):
        gateway.patch(USER, "missing", patch_body({"op": "replace", "path": "active", "value": True}))


# ─────────────────────────────────────────────────────────────────────────────
# Groups
# ─────────────────────────────────────────────────────────────────────────────
def test_create_group_with_members(gateway, dispatcher):
    alice = gateway.create(USER, user_payload())
    group = gateway.create(
        GROUP,
        group_payload(externalId="ENG", members=[{"value": alice["id"]}, {"value": "unknown-id"}]),
    )

    assert group["displayName"] == "Engineering"
    assert group["externalId"] == "ENG"
    assert group["x-orgUnit"] == {"unitType": "department", "level": 0, "parentUnitId": None, "isActive": True}
    assert [m["value"] for m in group["members"]] == [alice["id"]]
    assert group["members"][0]["display"] == "Alice Smith"
    assert gateway.get(USER, alice["id"])[ENTERPRISE_USER_SCHEMA]["department"] == group["id"]
    assert dispatcher.events[-1][0] == "group.created"


def test_create_group_requires_display_name(gateway):
    with pytest.raises(ValidationError):
        gateway.create(GROUP, {"externalId": "X"})


def test_terminated_users_are_not_members(gateway):
    alice = gateway.create(USER, user_payload())
    group = gateway.create(GROUP, group_payload(members=[{"value": alice["id"]}]))
    gateway.delete(USER, alice["id"])
    assert "members" not in gateway.get(GROUP, group["id"])


def test_replace_group_resets_members_only_when_supplied(gateway):
    alice = gateway.create(USER, user_payload())
    bob = gateway.create(USER, user_payload(email="bob@example.com", given="Bob"))
    group = gateway.create(GROUP, group_payload(members=[{"value": alice["id"]}]))

    renamed = gateway.replace(GROUP, group["id"], group_payload("Platform"))
    assert renamed["displayName"] == "Platform"
    assert [m["value"] for m in renamed["members"]] == [alice["id"]]

    swapped = gateway.replace(GROUP, group["id"], group_payload("Platform", members=[{"value": bob["id"]}]))
    assert [m["value"] for m in swapped["members"]] == [bob["id"]]
    assert gateway.identities.find_by_id(alice["id"])["assignment"]["unitId"] is None


def test_patch_group_members(gateway):
    alice = gateway.create(USER, user_payload())
    bob = gateway.create(USER, user_payload(email="bob@example.com", given="Bob"))
    group = gateway.create(GROUP, group_payload())

    patched = gateway.patch(
        GROUP, group["id"], patch_body({"op": "add", "path": "members", "value": [{"value": alice["id"]}, {"value": bob["id"]}]})
    )
    assert {m["value"] for m in patched["members"]} == {alice["id"], bob["id"]}

    patched = gateway.patch(
        GROUP, group["id"], patch_body({"op": "remove", "path": f'members[value eq "{alice["id"]}"]'})
    )
    assert [m["value"] for m in patched["members"]] == [bob["id"]]

    patched = gateway.patch(GROUP, group["id"], patch_body({"op": "remove", "path": "members"}))
    assert "members" not in patched


def test_rejected_group_patch_leaves_members_unchanged(gateway, dispatcher):
    alice = gateway.create(USER, user_payload())
    bob = gateway.create(USER, user_payload(email="bob@example.com", given="Bob"))
    group = gateway.create(GROUP, group_payload(members=[{"value": bob["id"]}]))
    events_before = len(dispatcher.events)

    with pytest.raises(ValidationError) as exc:
        gateway.patch(GROUP, group["id"], patch_body(
            {"op": "add", "path": "members", "value": [{"value": alice["id"]}]},
            {"op": "remove", "path": f'members[value eq "{bob["id"]}"]'},
            {"op": "remove", "path": "displayName"},
        ))
    assert exc.value.scim_type == "mutability"

    assert [m["value"] for m in gateway.get(GROUP, group["id"])["members"]] == [bob["id"]]
    assert gateway.identities.find_by_id(alice["id"])["assignment"]["unitId"] is None
    assert len(dispatcher.events) == events_before


def test_terminated_users_are_not_assigned_to_groups(gateway):
    alice = gateway.create(USER, user_payload())
    gateway.delete(USER, alice["id"])

    group = gateway.create(GROUP, group_payload(members=[{"value": alice["id"]}]))
    gateway.patch(GROUP, group["id"], patch_body({"op": "add", "path": "members", "value": [{"value": alice["id"]}]}))

    assert "members" not in gateway.get(GROUP, group["id"])
    assert gateway.identities.find_by_id(alice["id"])["assignment"]["unitId"] is None


def test_patch_group_display_name(gateway, dispatcher):
    group = gateway.create(GROUP, group_payload())
    patched = gateway.patch(GROUP, group["id"], patch_body({"op": "replace", "path": "displayName", "value": "Ops"}))
    assert patched["displayName"] == "Ops"
    assert dispatcher.events[-1][0] == "group.updated"

    with pytest.raises(ValidationError) as exc:
        gateway.patch(GROUP, group["id"], patch_body({"op": "remove", "path": "displayName"}))
    assert exc.value.scim_type == "mutability"


def test_delete_group_deactivates(gateway, dispatcher):
    group = gateway.create(GROUP, group_payload())
    gateway.delete(GROUP, group["id"])
    gateway.delete(GROUP, group["id"])
    assert gateway.get(GROUP, group["id"])["x-orgUnit"]["isActive"] is False
    assert [e[0] for e in dispatcher.events].count("group.deleted") == 1


def test_list_groups_by_display_name(gateway):
    gateway.create(GROUP, group_payload("Engineering"))
    gateway.create(GROUP, group_payload("Finance"))
    page = gateway.list(GROUP, filter_text='displayName sw "fin"')
    assert page["totalResults"] == 1
    assert page["Resources"][0]["displayName"] == "Finance"
