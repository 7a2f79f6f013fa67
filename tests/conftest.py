import copy

import pytest

from eci_profile.config import VIRTUAL_NODE_TOLERATION
from eci_profile.errors import CacheLookupError
from eci_profile.selector import Selector


def _make_pod(name="demo", namespace="default", labels=None, annotations=None,
              tolerations=None, conditions=None, uid="pod-uid"):
    pod = {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": name, "namespace": namespace, "uid": uid},
        "spec": {"containers": [{"name": "app", "image": "nginx:1.25"}]},
    }
    if labels is not None:
        pod["metadata"]["labels"] = labels
    if annotations is not None:
        pod["metadata"]["annotations"] = annotations
    if tolerations is not None:
        pod["spec"]["tolerations"] = tolerations
    if conditions is not None:
        pod["status"] = {"conditions": conditions}
    return pod


def _make_selector(name="default", priority=None, policy=None, namespace_labels=None,
                   object_labels=None, annotations=None, labels=None):
    spec = {}
    if priority is not None:
        spec["priority"] = priority
    if policy is not None:
        spec["policy"] = {policy: {}}
    if namespace_labels is not None:
        spec["namespaceLabels"] = namespace_labels
    if object_labels is not None:
        spec["objectLabels"] = object_labels
    effect = {}
    if annotations is not None:
        effect["annotations"] = annotations
    if labels is not None:
        effect["labels"] = labels
    if effect:
        spec["effect"] = effect
    return {
        "apiVersion": "eci.aliyun.com/v1beta1",
        "kind": "Selector",
        "metadata": {"name": name, "uid": f"{name}-uid"},
        "spec": spec,
    }


class FakeCache:
    """In-memory stand-in for ResourceCache."""

    def __init__(self, selectors=(), namespaces=None):
        self.selectors = list(selectors)
        self.namespaces = namespaces or {}

    def list_selectors(self):
        return [Selector.from_crd(obj) for obj in self.selectors]

    def get_namespace(self, name):
        if name not in self.namespaces:
            raise CacheLookupError(f'namespaces "{name}" not found')
        return {"metadata": {"name": name, "labels": self.namespaces[name]}}


@pytest.fixture
def make_pod():
    return _make_pod


@pytest.fixture
def make_selector():
    return _make_selector


@pytest.fixture
def vnode_toleration():
    return copy.deepcopy(VIRTUAL_NODE_TOLERATION)


@pytest.fixture
def fake_cache():
    return FakeCache
