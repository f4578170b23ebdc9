from inventory.core.permissions import has_permission, normalize_role, permissions_matrix_payload


def test_normalize_role_unknown_defaults_to_viewer():
    assert normalize_role("unknown-role") == "viewer"
    assert normalize_role(None) == "viewer"
    assert normalize_role(" Admin ") == "admin"


def test_has_permission_matrix_basics():
    assert has_permission("admin", "security.manage") is True
    assert has_permission("manager", "security.view") is True
    assert has_permission("manager", "security.manage") is False
    assert has_permission("viewer", "security.view") is False


def test_permissions_matrix_payload_contains_expected_roles():
    payload = permissions_matrix_payload()
    roles = [x["role"] for x in payload["roles"]]
    assert roles == ["viewer", "manager", "admin"]
    assert set(payload["permission_labels"]) == {"security.view", "security.manage", "metrics.view"}
