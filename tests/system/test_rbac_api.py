"""
系统管理 API 测试
覆盖 /system/menus, /system/apis, /system/roles, /system/permissions, /system/users, /system/sync
"""
import pytest
from fastapi.testclient import TestClient

from rbac_sync.security.auth import create_access_token
from rbac_sync.system.models import SysRole


def _create(client, url, headers, payload):
    response = client.post(url, headers=headers, json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def wired(client: TestClient, auth_headers):
    """role r1 --menu--> GET /users"""
    api = _create(client, "/system/apis", auth_headers, {"path": "/users", "method": "get", "name": "用户列表"})
    root = _create(client, "/system/menus", auth_headers, {"name": "系统", "menu_type": "directory"})
    menu = _create(client, "/system/menus", auth_headers,
                   {"name": "用户", "parent_id": root["id"], "perms": "sys:user:list"})
    role = _create(client, "/system/roles", auth_headers, {"code": "r1", "name": "角色1"})
    r = client.put(f"/system/menus/{menu['id']}/apis", headers=auth_headers, json={"api_ids": [api["id"]]})
    assert r.status_code == 200
    r = client.put(f"/system/roles/{role['id']}/menus", headers=auth_headers,
                   json={"menu_ids": [root["id"], menu["id"]]})
    assert r.status_code == 200
    return {"api": api, "root": root, "menu": menu, "role": role}


# ========== 认证 / 鉴权 ==========


class TestAuth:
    def test_requires_token(self, client: TestClient):
        response = client.get("/system/roles")
        assert response.status_code in (401, 403)

    def test_invalid_token(self, client: TestClient):
        response = client.get("/system/roles", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_user_without_policy_forbidden(self, client: TestClient, user_headers):
        response = client.get("/system/roles", headers=user_headers)
        assert response.status_code == 403

    def test_enforce_uses_route_template(self, client: TestClient, policy_store, auth_headers, wired):
        policy_store.add_policy("auditor", "/system/roles/{role_id}", "GET")
        policy_store.add_grouping_policy("42", "auditor")
        headers = {"Authorization": f"Bearer {create_access_token(42)}"}
        assert client.get(f"/system/roles/{wired['role']['id']}", headers=headers).status_code == 200
        assert client.get("/system/roles", headers=headers).status_code == 403

    def test_disabled_super_admin_is_enforced(self, client: TestClient, db_session, auth_headers):
        assert client.get("/system/roles", headers=auth_headers).status_code == 200
        db_session.query(SysRole).filter(SysRole.code == "super_admin").update({SysRole.enabled: False})
        db_session.commit()
        assert client.get("/system/roles", headers=auth_headers).status_code == 403


# ========== Role API ==========


class TestRoleAPI:
    def test_list_roles_only_super_admin(self, client: TestClient, auth_headers):
        response = client.get("/system/roles", headers=auth_headers)
        assert response.status_code == 200
        assert [r["code"] for r in response.json()] == ["super_admin"]

    def test_create_duplicate(self, client: TestClient, auth_headers):
        _create(client, "/system/roles", auth_headers, {"code": "dup", "name": "A"})
        response = client.post("/system/roles", headers=auth_headers, json={"code": "dup", "name": "B"})
        assert response.status_code == 409
        assert response.json()["detail"]["kind"] == "DUPLICATE_CODE"

    def test_get_role_with_menus(self, client: TestClient, auth_headers, wired):
        response = client.get(f"/system/roles/{wired['role']['id']}", headers=auth_headers)
        assert response.status_code == 200
        assert sorted(response.json()["menu_ids"]) == sorted([wired["root"]["id"], wired["menu"]["id"]])

    def test_get_missing_role(self, client: TestClient, auth_headers):
        assert client.get("/system/roles/999", headers=auth_headers).status_code == 404

    def test_delete_role_in_use(self, client: TestClient, auth_headers, wired):
        role_id = wired["role"]["id"]
        r = client.put("/system/users/7/roles", headers=auth_headers, json={"role_ids": [role_id]})
        assert r.status_code == 200
        response = client.delete(f"/system/roles/{role_id}", headers=auth_headers)
        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["kind"] == "ROLE_IN_USE"
        assert detail["retry_safe"] is False
        assert client.get(f"/system/roles/{role_id}", headers=auth_headers).status_code == 200

    def test_update_rejects_null(self, client: TestClient, auth_headers, wired):
        role_id = wired["role"]["id"]
        response = client.put(f"/system/roles/{role_id}", headers=auth_headers, json={"code": None})
        assert response.status_code == 422
        assert client.get(f"/system/roles/{role_id}", headers=auth_headers).json()["code"] == "r1"

    def test_delete_role(self, client: TestClient, policy_store, auth_headers, wired):
        role_id = wired["role"]["id"]
        assert client.delete(f"/system/roles/{role_id}", headers=auth_headers).status_code == 204
        assert client.get(f"/system/roles/{role_id}", headers=auth_headers).status_code == 404
        assert policy_store.get_filtered_policy(0, "r1") == []


# ========== Menu / API ==========


class TestMenuAPI:
    def test_tree(self, client: TestClient, auth_headers, wired):
        response = client.get("/system/menus/tree", headers=auth_headers)
        assert response.status_code == 200
        tree = response.json()
        assert tree[0]["name"] == "系统"
        assert tree[0]["children"][0]["name"] == "用户"

    def test_invalid_parent(self, client: TestClient, auth_headers):
        response = client.post("/system/menus", headers=auth_headers, json={"name": "x", "parent_id": 99})
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "INVALID_MENU_PARENT"

    def test_delete_with_children(self, client: TestClient, auth_headers, wired):
        response = client.delete(f"/system/menus/{wired['root']['id']}", headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "MENU_HAS_CHILDREN"

    def test_delete_leaf_revokes(self, client: TestClient, policy_store, auth_headers, wired):
        response = client.delete(f"/system/menus/{wired['menu']['id']}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["removed"] == [["r1", "/users", "GET"]]
        assert not policy_store.enforce("r1", "/users", "GET")

    def test_menu_apis_and_api_roles(self, client: TestClient, auth_headers, wired):
        apis = client.get(f"/system/menus/{wired['menu']['id']}/apis", headers=auth_headers).json()
        assert [a["path"] for a in apis] == ["/users"]
        roles = client.get(f"/system/apis/{wired['api']['id']}/roles", headers=auth_headers).json()
        assert [r["code"] for r in roles] == ["r1"]

    def test_assign_skips_missing_api(self, client: TestClient, auth_headers, wired):
        response = client.put(f"/system/menus/{wired['menu']['id']}/apis", headers=auth_headers,
                              json={"api_ids": [wired["api"]["id"], 999]})
        assert response.status_code == 200
        assert response.json()["skipped"] == {"api": [999]}

    def test_duplicate_api(self, client: TestClient, auth_headers, wired):
        response = client.post("/system/apis", headers=auth_headers, json={"path": "/users", "method": "GET"})
        assert response.status_code == 409
        assert response.json()["detail"]["kind"] == "DUPLICATE_API"

    def test_update_menu_and_api_reject_null(self, client: TestClient, auth_headers, wired):
        response = client.put(f"/system/menus/{wired['menu']['id']}", headers=auth_headers,
                              json={"name": None})
        assert response.status_code == 422
        response = client.put(f"/system/apis/{wired['api']['id']}", headers=auth_headers,
                              json={"path": None})
        assert response.status_code == 422

    def test_update_api_endpoint(self, client: TestClient, policy_store, auth_headers, wired):
        response = client.put(f"/system/apis/{wired['api']['id']}", headers=auth_headers,
                              json={"path": "/members"})
        assert response.status_code == 200
        assert response.json()["api"]["path"] == "/members"
        assert policy_store.enforce("r1", "/members", "GET")


# ========== Permission API ==========


class TestPermissionAPI:
    def test_list_api_permissions(self, client: TestClient, auth_headers, wired):
        response = client.get("/system/permissions?perm_type=api", headers=auth_headers)
        assert response.status_code == 200
        perms = response.json()
        assert [p["code"] for p in perms] == ["/users:GET"]
        assert perms[0]["source_menu_id"] == wired["menu"]["id"]

    def test_create_api_type_rejected(self, client: TestClient, auth_headers, wired):
        response = client.post("/system/permissions", headers=auth_headers, json={
            "name": "x", "code": "x", "perm_type": "api", "api_id": wired["api"]["id"],
        })
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "INVALID_PERMISSION_SHAPE"

    def test_create_with_two_fks(self, client: TestClient, auth_headers, wired):
        response = client.post("/system/permissions", headers=auth_headers, json={
            "name": "x", "code": "x", "perm_type": "menu",
            "menu_id": wired["menu"]["id"], "api_id": wired["api"]["id"],
        })
        assert response.status_code == 400

    def test_update_allows_null_target_only(self, client: TestClient, auth_headers, wired):
        perm = _create(client, "/system/permissions", auth_headers, {
            "name": "系统菜单", "code": "menu:root", "perm_type": "menu", "menu_id": wired["root"]["id"],
        })
        response = client.put(f"/system/permissions/{perm['id']}", headers=auth_headers,
                              json={"name": None})
        assert response.status_code == 422
        response = client.put(f"/system/permissions/{perm['id']}", headers=auth_headers,
                              json={"menu_id": wired["menu"]["id"], "button_id": None})
        assert response.status_code == 200
        assert response.json()["menu_id"] == wired["menu"]["id"]

    def test_create_menu_permission(self, client: TestClient, auth_headers, wired):
        response = client.post("/system/permissions", headers=auth_headers, json={
            "name": "用户菜单", "code": "menu:user", "perm_type": "menu", "menu_id": wired["menu"]["id"],
        })
        assert response.status_code == 201
        assert response.json()["menu_id"] == wired["menu"]["id"]


# ========== User / current user ==========


class TestUserAPI:
    def test_assign_and_get_roles(self, client: TestClient, auth_headers, wired):
        r = client.put("/system/users/5/roles", headers=auth_headers, json={"role_ids": [wired["role"]["id"]]})
        assert r.status_code == 200
        response = client.get("/system/users/5/roles", headers=auth_headers)
        assert [role["code"] for role in response.json()["roles"]] == ["r1"]

    def test_current_user_tree_and_perms(self, client: TestClient, auth_headers, wired):
        client.put("/system/users/5/roles", headers=auth_headers, json={"role_ids": [wired["role"]["id"]]})
        headers = {"Authorization": f"Bearer {create_access_token(5)}"}
        tree = client.get("/system/menus/user/tree", headers=headers).json()
        assert tree[0]["children"][0]["name"] == "用户"
        perms = client.get("/system/menus/user/perms", headers=headers).json()
        assert perms == ["sys:user:list"]
        # r1 已获得 /users 的访问规则
        assert client.app.state.policy_store.enforce("5", "/users", "GET")

    def test_role_and_user_permissions(self, client: TestClient, auth_headers, wired):
        client.put("/system/users/5/roles", headers=auth_headers, json={"role_ids": [wired["role"]["id"]]})
        role_perms = client.get(f"/system/roles/{wired['role']['id']}/permissions", headers=auth_headers)
        assert role_perms.status_code == 200
        assert [p["code"] for p in role_perms.json()] == ["/users:GET"]
        user_perms = client.get("/system/users/5/permissions", headers=auth_headers)
        assert [p["code"] for p in user_perms.json()] == ["/users:GET"]
        assert client.get("/system/roles/999/permissions", headers=auth_headers).status_code == 404

    def test_rebuild_mirror(self, client: TestClient, policy_store, auth_headers, wired):
        policy_store.add_grouping_policy("8", "r1")
        response = client.post("/system/users/roles/rebuild", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["rows"] == 1


# ========== Sync ==========


class TestSyncAPI:
    def test_diff_and_prune(self, client: TestClient, policy_store, auth_headers, wired):
        policy_store.add_policy("r1", "/stale", "GET")
        diff = client.get("/system/sync/diff", headers=auth_headers).json()
        assert diff["consistent"] is False
        assert diff["extra"] == [["r1", "/stale", "GET"]]

        response = client.post("/system/sync?prune=true", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["removed"] == [["r1", "/stale", "GET"]]
        assert client.get("/system/sync/diff", headers=auth_headers).json()["consistent"] is True

    def test_partial_returns_207(self, client: TestClient, flaky_store, wired):
        flaky_store.add_grouping_policy("1", "super_admin")
        flaky_store.fail_on = {"add_policy"}
        client.app.state.policy_store = flaky_store
        headers = {"Authorization": f"Bearer {create_access_token(1)}"}
        response = client.post("/system/sync", headers=headers)
        assert response.status_code == 207
        body = response.json()
        assert body["partial"] is True
        assert body["failed"][0]["rule"] == ["r1", "/users", "GET"]
