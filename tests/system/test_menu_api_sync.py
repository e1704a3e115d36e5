"""
菜单-API / 角色-菜单分配与全量同步测试
"""
import pytest

from rbac_core.context import OperationContext
from rbac_core.errors import ErrorKind, PermissionSyncError
from rbac_core.security.policy_store import PolicyRule
from rbac_sync.system.models import PermissionType, SysMenuApi, SysPermission, SysRoleMenu
from rbac_sync.system.services.menu_api_service import MenuApiService
from rbac_sync.system.services.permission_service import PermissionService


# ── Fixtures ──────────────────────────────────────────────


@pytest.fixture
def svc(db_session, policy_store):
    return MenuApiService(db_session, policy_store)


@pytest.fixture
def m1(make_menu):
    return make_menu("用户管理")


@pytest.fixture
def api1(make_api):
    return make_api("/users", "GET", name="用户列表")


@pytest.fixture
def r1(make_role):
    return make_role("r1")


def _rules(policy_store):
    return {tuple(r) for r in policy_store.get_policy()}


# ── 菜单-API 分配 ─────────────────────────────────────────


class TestAssignApisToMenu:
    def test_creates_link_and_permission(self, svc, db_session, m1, api1):
        report = svc.assign_apis_to_menu(m1.id, [api1.id])
        assert report.partial is False
        assert [a.id for a in svc.get_menu_apis(m1.id)] == [api1.id]
        perm = db_session.query(SysPermission).filter_by(code="/users:GET").one()
        assert perm.perm_type == PermissionType.API.value
        assert perm.api_id == api1.id
        assert perm.source_menu_id == m1.id
        assert perm.menu_id is None and perm.button_id is None

    def test_pushes_rules_for_holding_roles(self, svc, db_session, policy_store, m1, api1, r1):
        db_session.add(SysRoleMenu(role_id=r1.id, menu_id=m1.id))
        db_session.commit()
        report = svc.assign_apis_to_menu(m1.id, [api1.id])
        assert report.added_rules == [PolicyRule("r1", "/users", "GET")]
        assert _rules(policy_store) == {("r1", "/users", "GET")}

    def test_missing_menu(self, svc, api1):
        with pytest.raises(PermissionSyncError) as exc:
            svc.assign_apis_to_menu(404, [api1.id])
        assert exc.value.kind == ErrorKind.NOT_FOUND

    def test_missing_api_skipped(self, svc, m1, api1):
        report = svc.assign_apis_to_menu(m1.id, [999, api1.id])
        assert report.skipped == {"api": [999]}
        assert [a.id for a in svc.get_menu_apis(m1.id)] == [api1.id]

    def test_duplicate_ids_collapsed(self, svc, db_session, m1, api1):
        svc.assign_apis_to_menu(m1.id, [api1.id, api1.id])
        assert db_session.query(SysMenuApi).filter_by(menu_id=m1.id).count() == 1

    def test_full_replace_idempotent(self, svc, db_session, policy_store, m1, api1, r1, make_api):
        api2 = make_api("/users", "POST")
        db_session.add(SysRoleMenu(role_id=r1.id, menu_id=m1.id))
        db_session.commit()

        svc.assign_apis_to_menu(m1.id, [api1.id, api2.id])
        links_once = {(link.menu_id, link.api_id) for link in db_session.query(SysMenuApi).all()}
        perms_once = {p.code for p in db_session.query(SysPermission).all()}
        rules_once = _rules(policy_store)

        report = svc.assign_apis_to_menu(m1.id, [api1.id, api2.id])
        assert report.added_rules == []
        assert report.unchanged_rules == 2
        assert {(link.menu_id, link.api_id) for link in db_session.query(SysMenuApi).all()} == links_once
        assert {p.code for p in db_session.query(SysPermission).all()} == perms_once
        assert _rules(policy_store) == rules_once

    def test_shared_api_permission_moves_to_remaining_menu(self, svc, db_session, m1, api1, make_menu):
        m2 = make_menu("审计")
        svc.assign_apis_to_menu(m1.id, [api1.id])
        svc.assign_apis_to_menu(m2.id, [api1.id])
        svc.assign_apis_to_menu(m2.id, [])
        perm = db_session.query(SysPermission).filter_by(code="/users:GET").one()
        assert perm.source_menu_id == m1.id

    def test_code_held_by_menu_permission_is_kept(self, svc, db_session, policy_store, m1, api1, r1, make_menu):
        m2 = make_menu("审计")
        owned = PermissionService(db_session).create_permission("审计-用户", "/users:GET", "menu", menu_id=m2.id)
        db_session.add(SysRoleMenu(role_id=r1.id, menu_id=m1.id))
        db_session.commit()

        report = svc.assign_apis_to_menu(m1.id, [api1.id])
        assert report.skipped == {"permission": ["/users:GET"]}
        assert ("r1", "/users", "GET") in _rules(policy_store)

        assert svc.sync_menu_api_permissions().skipped == {"permission": ["/users:GET"]}
        svc.assign_apis_to_menu(m1.id, [])
        perm = db_session.query(SysPermission).filter_by(code="/users:GET").one()
        assert perm.id == owned.id
        assert perm.perm_type == PermissionType.MENU.value
        assert perm.menu_id == m2.id
        assert perm.api_id is None

    def test_policy_failure_is_partial(self, db_session, flaky_store, m1, api1, r1):
        db_session.add(SysRoleMenu(role_id=r1.id, menu_id=m1.id))
        db_session.commit()
        flaky_store.fail_on = {"add_policy"}
        report = MenuApiService(db_session, flaky_store).assign_apis_to_menu(m1.id, [api1.id])
        assert report.partial is True
        assert report.failed_rules[0][0] == PolicyRule("r1", "/users", "GET")
        # 关系库部分已提交
        assert db_session.query(SysMenuApi).filter_by(menu_id=m1.id).count() == 1

    def test_cancelled_before_commit_rolls_back(self, svc, db_session, m1, api1):
        svc.assign_apis_to_menu(m1.id, [api1.id])
        ctx = OperationContext()
        ctx.cancel()
        with pytest.raises(PermissionSyncError) as exc:
            svc.assign_apis_to_menu(m1.id, [api1.id], ctx=ctx)
        assert exc.value.kind == ErrorKind.CANCELLED
        assert [a.id for a in svc.get_menu_apis(m1.id)] == [api1.id]


# ── 角色-菜单分配 ─────────────────────────────────────────


class TestAssignMenusToRole:
    def test_assign_menu_grants_api_rule(self, svc, db_session, policy_store, m1, api1, r1):
        svc.assign_apis_to_menu(m1.id, [api1.id])
        assert db_session.query(SysPermission).filter_by(code="/users:GET").count() == 1

        svc.assign_menus_to_role(r1.id, [m1.id])
        assert ("r1", "/users", "GET") in _rules(policy_store)
        assert policy_store.enforce("r1", "/users", "GET") is True

    def test_unlinked_api_rule_survives_until_prune(self, svc, db_session, policy_store, m1, api1, r1):
        svc.assign_apis_to_menu(m1.id, [api1.id])
        svc.assign_menus_to_role(r1.id, [m1.id])

        svc.assign_apis_to_menu(m1.id, [])
        assert db_session.query(SysMenuApi).filter_by(menu_id=m1.id).count() == 0
        assert db_session.query(SysPermission).filter_by(source_menu_id=m1.id).count() == 0
        assert db_session.query(SysPermission).filter_by(menu_id=m1.id).count() == 0
        assert ("r1", "/users", "GET") in _rules(policy_store)

        svc.sync_menu_api_permissions()
        assert ("r1", "/users", "GET") in _rules(policy_store)

        report = svc.sync_menu_api_permissions(prune=True)
        assert report.removed_rules == [PolicyRule("r1", "/users", "GET")]
        assert _rules(policy_store) == set()

    def test_unassigned_menu_rules_kept(self, svc, policy_store, m1, api1, r1, make_menu):
        svc.assign_apis_to_menu(m1.id, [api1.id])
        svc.assign_menus_to_role(r1.id, [m1.id])
        other = make_menu("空菜单")
        svc.assign_menus_to_role(r1.id, [other.id])
        assert ("r1", "/users", "GET") in _rules(policy_store)
        assert svc.diff_policies().extra == {PolicyRule("r1", "/users", "GET")}

    def test_missing_role(self, svc, m1):
        with pytest.raises(PermissionSyncError) as exc:
            svc.assign_menus_to_role(404, [m1.id])
        assert exc.value.kind == ErrorKind.NOT_FOUND

    def test_missing_menu_skipped(self, svc, db_session, r1, m1):
        report = svc.assign_menus_to_role(r1.id, [m1.id, 555])
        assert report.skipped == {"menu": [555]}
        assert db_session.query(SysRoleMenu).filter_by(role_id=r1.id).count() == 1

    def test_get_api_roles(self, svc, m1, api1, r1, make_role):
        svc.assign_apis_to_menu(m1.id, [api1.id])
        svc.assign_menus_to_role(r1.id, [m1.id])
        make_role("r2")
        assert [r.code for r in svc.get_api_roles(api1.id)] == ["r1"]


# ── 角色/用户权限查询 ─────────────────────────────────────


class TestPermissionQueries:
    @pytest.fixture
    def granted(self, svc, db_session, m1, api1, r1, make_menu, make_api):
        button = make_menu("新增", parent_id=m1.id, menu_type="button")
        other = make_menu("报表")
        svc.assign_apis_to_menu(m1.id, [api1.id])
        svc.assign_apis_to_menu(other.id, [make_api("/reports").id])
        perms = PermissionService(db_session)
        perms.create_permission("用户菜单", "menu:user", "menu", menu_id=m1.id)
        perms.create_permission("新增用户", "btn:user:add", "button", button_id=button.id)
        perms.create_permission("报表菜单", "menu:report", "menu", menu_id=other.id)
        svc.assign_menus_to_role(r1.id, [m1.id, button.id])
        return {"button": button, "other": other}

    def test_role_permissions(self, svc, r1, granted):
        codes = [p.code for p in svc.get_role_permissions(r1.id)]
        assert sorted(codes) == ["/users:GET", "btn:user:add", "menu:user"]

    def test_role_without_menus(self, svc, make_role, granted):
        assert svc.get_role_permissions(make_role("empty").id) == []

    def test_missing_role(self, svc):
        with pytest.raises(PermissionSyncError) as exc:
            svc.get_role_permissions(404)
        assert exc.value.kind == ErrorKind.NOT_FOUND

    def test_user_permissions_follow_enabled_roles(self, svc, db_session, policy_store, r1, make_role, granted):
        reports = make_role("reports", enabled=False)
        svc.assign_menus_to_role(reports.id, [granted["other"].id])
        policy_store.add_grouping_policy("9", "r1")
        policy_store.add_grouping_policy("9", "reports")
        codes = [p.code for p in svc.get_user_permissions(9)]
        assert sorted(codes) == ["/users:GET", "btn:user:add", "menu:user"]
        assert svc.get_user_permissions(10) == []


# ── 全量同步 ──────────────────────────────────────────────


class TestFullSync:
    @pytest.fixture
    def populated(self, db_session, m1, api1, r1, make_menu, make_api, make_role):
        m2 = make_menu("订单")
        api2 = make_api("/orders", "GET")
        r2 = make_role("r2")
        db_session.add_all([
            SysMenuApi(menu_id=m1.id, api_id=api1.id),
            SysMenuApi(menu_id=m2.id, api_id=api1.id),
            SysMenuApi(menu_id=m2.id, api_id=api2.id),
            SysRoleMenu(role_id=r1.id, menu_id=m1.id),
            SysRoleMenu(role_id=r2.id, menu_id=m2.id),
        ])
        db_session.commit()
        return {"m2": m2, "api2": api2}

    def test_resync_fixed_point(self, svc, policy_store, populated):
        first = svc.sync_menu_api_permissions()
        assert len(first.added_rules) == 3
        second = svc.sync_menu_api_permissions()
        assert second.added_rules == []
        assert second.unchanged_rules == 3
        assert svc.diff_policies().consistent

    def test_rebuilds_api_permissions(self, svc, db_session, m1, populated):
        stale = SysPermission(name="旧", code="/gone:GET", perm_type="api", api_id=None,
                              source_menu_id=m1.id)
        db_session.add(stale)
        db_session.commit()
        svc.sync_menu_api_permissions()
        perms = {p.code: p.source_menu_id for p in db_session.query(SysPermission).all()}
        assert perms == {"/users:GET": m1.id, "/orders:GET": populated["m2"].id}

    def test_prune_keeps_groupings_and_unmanaged(self, svc, policy_store, populated):
        policy_store.add_policy("r1", "/stale", "DELETE")
        policy_store.add_policy("external", "/anything", "GET")
        policy_store.add_grouping_policy("5", "r1")
        report = svc.sync_menu_api_permissions(prune=True)
        assert report.removed_rules == [PolicyRule("r1", "/stale", "DELETE")]
        assert ("external", "/anything", "GET") in _rules(policy_store)
        assert policy_store.get_roles_for_user("5") == ["r1"]

    def test_diff_reports_missing(self, svc, policy_store, populated):
        diff = svc.diff_policies()
        assert diff.missing == {
            PolicyRule("r1", "/users", "GET"),
            PolicyRule("r2", "/users", "GET"),
            PolicyRule("r2", "/orders", "GET"),
        }
        assert diff.extra == set()

    def test_cancelled_sync(self, svc, policy_store, populated):
        ctx = OperationContext()
        ctx.cancel()
        with pytest.raises(PermissionSyncError) as exc:
            svc.sync_menu_api_permissions(ctx=ctx)
        assert exc.value.kind == ErrorKind.CANCELLED
        assert _rules(policy_store) == set()

    def test_partial_sync_repaired_by_rerun(self, db_session, flaky_store, populated):
        svc = MenuApiService(db_session, flaky_store)
        flaky_store.fail_on = {"add_policy"}
        report = svc.sync_menu_api_permissions()
        assert report.partial is True
        assert len(report.failed_rules) == 3

        flaky_store.fail_on = set()
        assert svc.sync_menu_api_permissions().partial is False
        assert svc.diff_policies().consistent
