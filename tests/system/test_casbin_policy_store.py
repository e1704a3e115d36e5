"""
Casbin 策略存储测试
"""
import pytest

from rbac_core.security.policy_store import PolicyRule, PolicyStoreError
from rbac_sync.system.services.casbin_policy_store import (
    CasbinPolicyStore, DEFAULT_MODEL, build_enforcer, load_model,
)


class TestPolicies:
    def test_add_is_idempotent(self, policy_store):
        assert policy_store.add_policy("admin", "/users", "GET") is True
        assert policy_store.add_policy("admin", "/users", "GET") is False
        assert policy_store.get_policy() == [PolicyRule("admin", "/users", "GET")]

    def test_remove_is_idempotent(self, policy_store):
        policy_store.add_policy("admin", "/users", "GET")
        assert policy_store.remove_policy("admin", "/users", "GET") is True
        assert policy_store.remove_policy("admin", "/users", "GET") is False

    def test_filtered(self, policy_store):
        policy_store.add_policy("admin", "/users", "GET")
        policy_store.add_policy("admin", "/users", "POST")
        policy_store.add_policy("viewer", "/users", "GET")
        assert len(policy_store.get_filtered_policy(0, "admin")) == 2
        assert len(policy_store.get_filtered_policy(1, "/users", "GET")) == 2
        policy_store.remove_filtered_policy(0, "admin")
        assert policy_store.get_policy() == [PolicyRule("viewer", "/users", "GET")]


class TestGroupingAndEnforce:
    def test_enforce_through_role(self, policy_store):
        policy_store.add_policy("admin", "/users", "GET")
        policy_store.add_grouping_policy("1", "admin")
        assert policy_store.enforce("1", "/users", "GET") is True
        assert policy_store.enforce("1", "/users", "DELETE") is False
        assert policy_store.enforce("2", "/users", "GET") is False

    def test_roles_and_users(self, policy_store):
        policy_store.add_grouping_policy("1", "admin")
        policy_store.add_grouping_policy("2", "admin")
        policy_store.add_grouping_policy("1", "viewer")
        assert sorted(policy_store.get_roles_for_user("1")) == ["admin", "viewer"]
        assert sorted(policy_store.get_users_for_role("admin")) == ["1", "2"]
        assert policy_store.get_filtered_grouping_policy(1, "viewer") == [["1", "viewer"]]

    def test_remove_grouping(self, policy_store):
        policy_store.add_grouping_policy("1", "admin")
        policy_store.add_grouping_policy("2", "admin")
        policy_store.remove_grouping_policy("1", "admin")
        assert policy_store.get_roles_for_user("1") == []
        policy_store.remove_filtered_grouping_policy(1, "admin")
        assert policy_store.get_users_for_role("admin") == []


class TestErrors:
    def test_engine_errors_wrapped(self, policy_store):
        def boom(*args):
            raise RuntimeError("adapter down")

        policy_store.enforcer.add_policy = boom
        with pytest.raises(PolicyStoreError) as exc:
            policy_store.add_policy("admin", "/users", "GET")
        assert exc.value.operation == "add_policy"


class TestPersistence:
    def test_rules_survive_reload(self, db_engine):
        store = CasbinPolicyStore(build_enforcer(db_engine))
        store.add_policy("admin", "/users", "GET")
        store.add_grouping_policy("1", "admin")

        reloaded = CasbinPolicyStore(build_enforcer(db_engine))
        assert reloaded.get_policy() == [PolicyRule("admin", "/users", "GET")]
        assert reloaded.enforce("1", "/users", "GET") is True

    def test_load_model_from_file(self, tmp_path):
        path = tmp_path / "model.conf"
        path.write_text(DEFAULT_MODEL)
        model = load_model(str(path))
        assert "r" in model.model
        assert "g" in model.model
