"""API tests for organization selection settings and family groups."""

from httpx import AsyncClient

from cabin_rotation.services import selection_service


async def test_read_allocation_model(member_client: AsyncClient):
    response = await member_client.get("/organization/allocation-model")
    assert response.status_code == 200
    assert response.json() == {"allocation_model": "rotating_selection"}


async def test_change_allocation_model_is_audited(admin_client: AsyncClient, admin_auth):
    response = await admin_client.put(
        "/organization/allocation-model",
        json={"allocation_model": "lottery", "reason": "trial season"},
    )
    assert response.status_code == 200
    assert response.json()["allocation_model"] == "lottery"

    audit = await admin_client.get("/organization/allocation-model/audit")
    assert audit.status_code == 200
    entries = audit.json()
    assert len(entries) == 1
    assert entries[0]["old_model"] == "rotating_selection"
    assert entries[0]["new_model"] == "lottery"
    assert entries[0]["changed_by_user_id"] == str(admin_auth.user_id)


async def test_unknown_allocation_model(admin_client: AsyncClient):
    response = await admin_client.put(
        "/organization/allocation-model", json={"allocation_model": "auction"}
    )
    assert response.status_code == 422
    assert response.json()["code"] == "unknown_allocation_model"


async def test_member_cannot_change_model(member_client: AsyncClient):
    response = await member_client.put(
        "/organization/allocation-model", json={"allocation_model": "manual"}
    )
    assert response.status_code == 403


async def test_patch_selection_settings(admin_client: AsyncClient):
    response = await admin_client.patch(
        "/organization/selection-settings",
        json={"secondary_pass_enabled": True, "secondary_selection_days": 3},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["secondary_pass_enabled"] is True
    assert body["secondary_selection_days"] == 3
    assert body["primary_quota"] == 2


async def test_negative_quota_rejected(admin_client: AsyncClient):
    response = await admin_client.patch(
        "/organization/selection-settings", json={"primary_quota": -1}
    )
    assert response.status_code == 422


async def test_create_and_list_family_groups(admin_client: AsyncClient, family_groups):
    response = await admin_client.post(
        "/organization/family-groups",
        json={"name": "Davis", "color": "#0066CC", "lead_email": "lead@example.com"},
    )
    assert response.status_code == 201
    assert response.json()["color"] == "#0066cc"

    listed = await admin_client.get("/organization/family-groups")
    assert [group["name"] for group in listed.json()] == ["Anderson", "Baker", "Carter", "Davis"]


async def test_duplicate_family_group(admin_client: AsyncClient, family_groups):
    response = await admin_client.post("/organization/family-groups", json={"name": "Baker"})
    assert response.status_code == 409
    assert response.json()["code"] == "duplicate_family_group"


async def test_bad_color(admin_client: AsyncClient):
    response = await admin_client.post(
        "/organization/family-groups", json={"name": "Evans", "color": "blue"}
    )
    assert response.status_code == 422


async def test_remove_family_group(admin_client: AsyncClient, family_groups):
    response = await admin_client.delete(f"/organization/family-groups/{family_groups[2].id}")
    assert response.status_code == 204

    listed = await admin_client.get("/organization/family-groups")
    assert len(listed.json()) == 2
    with_removed = await admin_client.get(
        "/organization/family-groups", params={"include_removed": "true"}
    )
    assert len(with_removed.json()) == 3


async def test_remove_group_in_running_year(db, admin_client: AsyncClient, test_org, rotation_order):
    selection_service.start_rotation_year(db, test_org.id, 2026, rotation_order)
    response = await admin_client.delete(f"/organization/family-groups/{rotation_order[0]}")
    assert response.status_code == 409
    assert response.json()["code"] == "family_group_in_use"
