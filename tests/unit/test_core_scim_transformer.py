from scim_provisioning.core.scim_transformer import (
    ENTERPRISE_USER_SCHEMA,
    GROUP_SCHEMA,
    USER_SCHEMA,
    ScimTransformer,
)


def test_identity_to_scim_minimal():
    scim_user = ScimTransformer.identity_to_scim({"id": "abc", "email": "alice@example.com", "status": "active"})
    assert scim_user["id"] == "abc"
    assert scim_user["userName"] == "alice@example.com"
    assert scim_user["schemas"] == [USER_SCHEMA, ENTERPRISE_USER_SCHEMA]
    assert scim_user["meta"]["location"].endswith("/Users/abc")
    assert scim_user["meta"]["resourceType"] == "User"
    assert scim_user["active"] is True
    assert "externalId" not in scim_user
    assert "phoneNumbers" not in scim_user


def test_identity_to_scim_full_record():
    scim_user = ScimTransformer.identity_to_scim(
        {
            "id": "abc",
            "employeeId": "E-1001",
            "firstName": "Alice",
            "lastName": "Smith",
            "email": "alice@example.com",
            "phoneNumber": "+41 22 000 00 00",
            "status": "inactive",
            "assignment": {"unitId": "unit-eng", "positionId": "pos-7"},
            "createdAt": "2024-01-10T09:00:00.000000Z",
            "updatedAt": "2024-02-01T09:00:00.000000Z",
        },
        base_url="https://api/scim/v2",
    )
    assert scim_user["active"] is False
    assert scim_user["name"] == {"givenName": "Alice", "familyName": "Smith", "formatted": "Alice Smith"}
    assert scim_user["displayName"] == "Alice Smith"
    assert scim_user["externalId"] == "E-1001"
    assert scim_user["emails"] == [{"value": "alice@example.com", "primary": True, "type": "work"}]
    assert scim_user["phoneNumbers"][0]["value"] == "+41 22 000 00 00"
    assert scim_user[ENTERPRISE_USER_SCHEMA] == {"employeeNumber": "E-1001", "department": "unit-eng"}
    assert scim_user["x-position"] == {"id": "pos-7"}
    assert scim_user["meta"]["created"] == "2024-01-10T09:00:00.000000Z"
    assert scim_user["meta"]["lastModified"] == "2024-02-01T09:00:00.000000Z"
    assert scim_user["meta"]["location"] == "https://api/scim/v2/Users/abc"


def test_terminated_identity_is_inactive():
    assert ScimTransformer.identity_to_scim({"id": "x", "status": "terminated"})["active"] is False


def test_scim_to_identity_takes_email_from_username():
    fields = ScimTransformer.scim_to_identity(
        {
            "userName": "bob@example.com",
            "active": False,
            "name": {"givenName": "Bob", "familyName": "Jones"},
            "emails": [
                {"value": "secondary@example.com"},
                {"value": "Primary@Example.com", "primary": True},
            ],
        }
    )
    assert fields["status"] == "inactive"
    assert fields["firstName"] == "Bob"
    assert fields["lastName"] == "Jones"
    assert fields["email"] == "bob@example.com"


def test_scim_to_identity_falls_back_to_primary_email():
    fields = ScimTransformer.scim_to_identity(
        {"emails": [{"value": "secondary@example.com"}, {"value": "Primary@Example.com", "primary": True}]}
    )
    assert fields["email"] == "primary@example.com"


def test_scim_to_identity_handles_missing_values():
    fields = ScimTransformer.scim_to_identity({"userName": "bob@example.com"})
    assert fields == {"status": "active", "email": "bob@example.com"}


def test_scim_to_identity_ignores_non_string_email():
    assert "email" not in ScimTransformer.scim_to_identity({"userName": 42})


def test_scim_to_identity_enterprise_extension():
    fields = ScimTransformer.scim_to_identity(
        {
            "userName": "carol@example.com",
            ENTERPRISE_USER_SCHEMA: {"employeeNumber": "E-77", "department": "unit-ops"},
            "x-position": {"id": "pos-1"},
            "phoneNumbers": [{"value": "+1 555 0100"}],
        }
    )
    assert fields["employeeId"] == "E-77"
    assert fields["assignment"] == {"unitId": "unit-ops", "positionId": "pos-1"}
    assert fields["phoneNumber"] == "+1 555 0100"


def test_external_id_wins_over_employee_number():
    fields = ScimTransformer.scim_to_identity(
        {"userName": "a@b.co", "externalId": "EXT", ENTERPRISE_USER_SCHEMA: {"employeeNumber": "EMP"}}
    )
    assert fields["employeeId"] == "EXT"


def test_orgunit_to_scim_with_members():
    group = ScimTransformer.orgunit_to_scim(
        {"id": "g1", "name": "Engineering", "code": "ENG", "type": "department", "level": 1, "parentId": "root"},
        [{"id": "u1", "firstName": "Alice", "lastName": "Smith"}],
        base_url="https://api/scim/v2",
    )
    assert group["schemas"] == [GROUP_SCHEMA]
    assert group["displayName"] == "Engineering"
    assert group["externalId"] == "ENG"
    assert group["x-orgUnit"] == {"unitType": "department", "level": 1, "parentUnitId": "root", "isActive": True}
    assert group["members"] == [
        {"value": "u1", "display": "Alice Smith", "$ref": "https://api/scim/v2/Users/u1"}
    ]
    assert group["meta"]["location"] == "https://api/scim/v2/Groups/g1"


def test_orgunit_without_members_omits_attribute():
    assert "members" not in ScimTransformer.orgunit_to_scim({"id": "g1", "name": "Empty"}, [])


def test_scim_to_orgunit_and_member_ids():
    body = {
        "displayName": "Platform",
        "externalId": "PLT",
        "x-orgUnit": {"unitType": "team", "level": 2, "parentUnitId": "g1"},
        "members": [{"value": "u1"}, {"display": "no value"}, "junk", {"value": "u2"}],
    }
    assert ScimTransformer.scim_to_orgunit(body) == {
        "name": "Platform",
        "code": "PLT",
        "type": "team",
        "level": 2,
        "parentId": "g1",
    }
    assert ScimTransformer.member_ids(body) == ["u1", "u2"]
    assert ScimTransformer.member_ids({"members": {"value": "solo"}}) == ["solo"]
    assert ScimTransformer.member_ids({}) == []
