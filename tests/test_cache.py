"""Tests for the Redis cache service reconciler."""

import pytest

from tenant_operator.cache import (
    build_redis_configmap,
    build_redis_service,
    build_redis_statefulset,
    reconcile_redis,
    render_redis_config,
)
from tenant_operator.status import ComponentPhase

NAMESPACE = "tenant-demo"


class TestRedisConfig:
    """Test rendering of redis.conf."""

    def test_defaults_and_maxmemory_in_bytes(self):
        conf = render_redis_config("256Mi")
        lines = conf.splitlines()
        assert lines[0] == "port 6379"
        assert "appendonly yes" in lines
        assert lines[-1] == "maxmemory 268435456"

    def test_overrides_are_sorted_and_appended(self):
        conf = render_redis_config("256Mi", {"timeout": "300", "databases": "4"})
        lines = conf.splitlines()
        assert lines[-2:] == ["databases 4", "timeout 300"]

    def test_override_replaces_default_in_place(self):
        default_lines = render_redis_config("256Mi").splitlines()
        index = default_lines.index("maxmemory-policy allkeys-lru")

        lines = render_redis_config("256Mi", {"maxmemory-policy": "volatile-lru"}).splitlines()
        assert lines[index] == "maxmemory-policy volatile-lru"
        assert len(lines) == len(default_lines)

    def test_rendering_is_deterministic(self):
        overrides = {"b": "2", "a": "1", "c": "3"}
        assert render_redis_config("1Gi", overrides) == render_redis_config("1Gi", dict(reversed(list(overrides.items()))))


class TestRedisDocuments:
    """Test the desired Redis resources."""

    def test_resources_match_spec_values(self, tenant_manifest):
        tenant_manifest["metadata"]["uid"] = "uid-1"
        statefulset = build_redis_statefulset(tenant_manifest, "tenant-acme")
        container = statefulset["spec"]["template"]["spec"]["containers"][0]

        assert statefulset["spec"]["replicas"] == 1
        assert container["resources"] == {
            "requests": {"cpu": "100m", "memory": "128Mi"},
            "limits": {"cpu": "200m", "memory": "256Mi"},
        }

    def test_defaults_apply_when_spec_is_empty(self, minimal_tenant):
        statefulset = build_redis_statefulset(minimal_tenant, NAMESPACE)
        spec = statefulset["spec"]
        container = spec["template"]["spec"]["containers"][0]

        assert statefulset["metadata"]["name"] == "demo-redis"
        assert spec["serviceName"] == "demo-redis"
        assert container["image"] == "redis:7-alpine"
        assert container["resources"]["limits"] == {"cpu": "300m", "memory": "256Mi"}
        assert container["livenessProbe"]["tcpSocket"] == {"port": "redis"}
        assert container["readinessProbe"]["exec"]["command"] == ["redis-cli", "ping"]
        claim = spec["volumeClaimTemplates"][0]
        assert claim["metadata"]["name"] == "redis-data"
        assert claim["spec"]["resources"]["requests"]["storage"] == "1Gi"
        assert spec["template"]["spec"]["volumes"][0]["configMap"]["name"] == "demo-redis-config"

    def test_partial_resource_override(self, minimal_tenant):
        minimal_tenant["spec"]["redis"] = {"resources": {"memory": {"limit": "1Gi"}}}
        container = build_redis_statefulset(minimal_tenant, NAMESPACE)["spec"]["template"]["spec"]["containers"][0]
        assert container["resources"]["limits"] == {"cpu": "300m", "memory": "1Gi"}
        assert container["resources"]["requests"] == {"cpu": "100m", "memory": "128Mi"}

    def test_config_follows_memory_limit(self, minimal_tenant):
        minimal_tenant["spec"]["redis"] = {"resources": {"memory": {"limit": "1Gi"}}}
        conf = build_redis_configmap(minimal_tenant, NAMESPACE)["data"]["redis.conf"]
        assert "maxmemory 1073741824" in conf.splitlines()

    def test_service_is_headless(self, minimal_tenant):
        service = build_redis_service(minimal_tenant, NAMESPACE)
        assert service["spec"]["clusterIP"] == "None"
        assert service["spec"]["ports"][0]["targetPort"] == "redis"

    def test_every_document_is_owned_by_tenant(self, minimal_tenant):
        for document in (
            build_redis_configmap(minimal_tenant, NAMESPACE),
            build_redis_service(minimal_tenant, NAMESPACE),
            build_redis_statefulset(minimal_tenant, NAMESPACE),
        ):
            owner = document["metadata"]["ownerReferences"][0]
            assert owner["uid"] == "tenant-uid"
            assert owner["controller"] is True


class TestReconcileRedis:
    """Test converging the Redis resources."""

    @pytest.fixture
    def namespaced(self, store):
        store.objects[("Namespace", None, NAMESPACE)] = {
            "kind": "Namespace",
            "metadata": {"name": NAMESPACE, "uid": "ns-uid", "resourceVersion": "0"},
        }
        return store

    @pytest.mark.asyncio
    async def test_new_statefulset_reports_pending(self, namespaced, minimal_tenant):
        status = await reconcile_redis(namespaced, minimal_tenant, NAMESPACE)
        assert status.phase == ComponentPhase.PENDING
        assert namespaced.find("ConfigMap", "demo-redis-config", NAMESPACE)
        assert namespaced.find("Service", "demo-redis", NAMESPACE)

    @pytest.mark.asyncio
    async def test_ready_statefulset_reports_running(self, namespaced, minimal_tenant):
        await reconcile_redis(namespaced, minimal_tenant, NAMESPACE)
        namespaced.set_ready("StatefulSet", "demo-redis", NAMESPACE)

        status = await reconcile_redis(namespaced, minimal_tenant, NAMESPACE)
        assert status.phase == ComponentPhase.RUNNING
        assert status.message == "Redis is running"

    @pytest.mark.asyncio
    async def test_config_change_updates_configmap_only(self, namespaced, minimal_tenant):
        await reconcile_redis(namespaced, minimal_tenant, NAMESPACE)
        namespaced.writes.clear()

        minimal_tenant["spec"]["redis"] = {"config": {"timeout": "60"}}
        await reconcile_redis(namespaced, minimal_tenant, NAMESPACE)
        assert namespaced.writes == [("update", "ConfigMap", "demo-redis-config")]
