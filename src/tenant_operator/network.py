"""Network isolation reconciliation for the tenant namespace.

When isolation is enabled (the default) the namespace gets a deny-all ingress
baseline, a rule allowing traffic between the tenant's own pods and a rule
opening the API port to the namespaces listed in ``allowedNamespaces``. Each
custom ingress or egress rule becomes its own index-suffixed policy.
"""

import logging
from typing import Any, Dict, List, Optional

from . import constants as C
from .convergence import converge, delete_if_present
from .resources import build_labels, build_metadata
from .store import ResourceStore

logger = logging.getLogger(__name__)

COMPONENT = "network-policy"
POLICY_DEFAULT = "default"
POLICY_CUSTOM = "custom"

DENY_ALL = "default-deny-all"
ALLOW_INTERNAL = "allow-internal-traffic"
ALLOW_API = "allow-api-access"
DEFAULT_POLICIES = (DENY_ALL, ALLOW_INTERNAL, ALLOW_API)


def isolation_enabled(tenant: Dict[str, Any]) -> bool:
    enabled = (tenant.get("spec", {}).get("networkPolicy") or {}).get("enabled")
    return enabled is None or bool(enabled)


def _policy(
    tenant: Dict[str, Any],
    namespace: str,
    name: str,
    kind: str,
    spec: Dict[str, Any],
) -> Dict[str, Any]:
    labels = build_labels(tenant["metadata"]["name"], COMPONENT)
    labels[C.LABEL_POLICY] = kind
    spec.setdefault("ingress", [])
    spec.setdefault("egress", [])
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "NetworkPolicy",
        "metadata": build_metadata(name, namespace, labels, tenant),
        "spec": spec,
    }


def build_ports(ports: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Translate spec port entries, leaving out an unset protocol or port."""
    result = []
    for port in ports or []:
        entry: Dict[str, Any] = {}
        if port.get("protocol"):
            entry["protocol"] = port["protocol"]
        if port.get("port"):
            entry["port"] = port["port"]
        result.append(entry)
    return result


def build_default_policies(tenant: Dict[str, Any], namespace: str) -> List[Dict[str, Any]]:
    network_spec = tenant.get("spec", {}).get("networkPolicy") or {}
    allowed = network_spec.get("allowedNamespaces") or []

    deny_all = _policy(tenant, namespace, DENY_ALL, POLICY_DEFAULT, {
        "podSelector": {},
        "policyTypes": ["Ingress"],
    })
    allow_internal = _policy(tenant, namespace, ALLOW_INTERNAL, POLICY_DEFAULT, {
        "podSelector": {},
        "policyTypes": ["Ingress"],
        "ingress": [{"from": [{"podSelector": {}}]}],
    })
    allow_api = _policy(tenant, namespace, ALLOW_API, POLICY_DEFAULT, {
        "podSelector": {"matchLabels": {C.LABEL_APP: C.APP_SERVER}},
        "policyTypes": ["Ingress"],
        "ingress": [{
            "from": [
                {"namespaceSelector": {"matchLabels": {C.LABEL_NAMESPACE_NAME: ns}}}
                for ns in allowed
            ],
            "ports": [{"protocol": "TCP", "port": "http"}],
        }],
    })
    return [deny_all, allow_internal, allow_api]


def build_custom_policies(tenant: Dict[str, Any], namespace: str) -> List[Dict[str, Any]]:
    """One policy per custom rule; an empty selector leaves the peer unrestricted."""
    network_spec = tenant.get("spec", {}).get("networkPolicy") or {}
    policies = []

    for i, rule in enumerate(network_spec.get("ingressRules") or []):
        peers = [{"podSelector": {"matchLabels": rule["from"]}}] if rule.get("from") else []
        policies.append(_policy(tenant, namespace, f"custom-ingress-{i}", POLICY_CUSTOM, {
            "podSelector": {},
            "policyTypes": ["Ingress"],
            "ingress": [{"from": peers, "ports": build_ports(rule.get("ports"))}],
        }))

    for i, rule in enumerate(network_spec.get("egressRules") or []):
        peers = [{"podSelector": {"matchLabels": rule["to"]}}] if rule.get("to") else []
        policies.append(_policy(tenant, namespace, f"custom-egress-{i}", POLICY_CUSTOM, {
            "podSelector": {},
            "policyTypes": ["Egress"],
            "egress": [{"to": peers, "ports": build_ports(rule.get("ports"))}],
        }))

    return policies


async def _managed_policies(store: ResourceStore, tenant: Dict[str, Any], namespace: str, kind: str = "") -> List[str]:
    selector = f"{C.LABEL_TENANT}={tenant['metadata']['name']},{C.LABEL_COMPONENT}={COMPONENT}"
    if kind:
        selector += f",{C.LABEL_POLICY}={kind}"
    items = await store.list("NetworkPolicy", namespace, label_selector=selector)
    return [item["metadata"]["name"] for item in items]


async def reconcile_network_policies(store: ResourceStore, tenant: Dict[str, Any], namespace: str) -> List[str]:
    """Converge the isolation rules; returns the names of the policies in force."""
    if not isolation_enabled(tenant):
        logger.info(f"Network policies are disabled for tenant {tenant['metadata']['name']}")
        existing = set(await _managed_policies(store, tenant, namespace)) | set(DEFAULT_POLICIES)
        for name in sorted(existing):
            await delete_if_present(store, "NetworkPolicy", name, namespace)
        return []

    desired = build_default_policies(tenant, namespace) + build_custom_policies(tenant, namespace)
    for policy in desired:
        await converge(store, policy)

    wanted = {policy["metadata"]["name"] for policy in desired}
    for name in await _managed_policies(store, tenant, namespace, POLICY_CUSTOM):
        if name not in wanted:
            await delete_if_present(store, "NetworkPolicy", name, namespace)

    return [policy["metadata"]["name"] for policy in desired]
