import logging
from unittest import mock

from kubernetes.client.rest import ApiException

from eci_profile.policy import PolicyManager
from eci_profile.reconciler import SelectorEventLogger, UnscheduledReconciler, is_unscheduled
from eci_profile.resolver import SelectorResolver
from eci_profile.utils import MERGE_PATCH_CONTENT_TYPE

UNSCHEDULABLE = {"type": "PodScheduled", "status": "False", "reason": "Unschedulable"}


def test_is_unscheduled_without_conditions(make_pod):
    assert not is_unscheduled(make_pod())
    assert not is_unscheduled(make_pod(conditions=[]))


def test_is_unscheduled(make_pod):
    assert is_unscheduled(make_pod(conditions=[{"type": "Initialized", "status": "True"}, UNSCHEDULABLE]))


def test_is_unscheduled_other_states(make_pod):
    assert not is_unscheduled(make_pod(conditions=[{"type": "PodScheduled", "status": "True"}]))
    assert not is_unscheduled(make_pod(conditions=[dict(UNSCHEDULABLE, reason="SchedulerError")]))
    assert not is_unscheduled(make_pod(conditions=[dict(UNSCHEDULABLE, type="Ready")]))


def build_reconciler(fake_cache, selectors, core_api=None):
    core_api = core_api or mock.Mock()
    reconciler = UnscheduledReconciler(SelectorResolver(fake_cache(selectors)), PolicyManager(), core_api)
    return reconciler, core_api


def test_unscheduled_pod_is_patched(fake_cache, make_selector, make_pod, vnode_toleration):
    reconciler, core_api = build_reconciler(fake_cache, [make_selector(policy="normalNodePrefer")])
    pod = make_pod(conditions=[UNSCHEDULABLE])

    reconciler.on_update(make_pod(), pod)

    core_api.patch_namespaced_pod.assert_called_once_with(
        name="demo",
        namespace="default",
        body={"metadata": {}, "spec": {"tolerations": [vnode_toleration]}},
        _content_type=MERGE_PATCH_CONTENT_TYPE,
    )


def test_scheduled_pod_is_ignored(fake_cache, make_selector, make_pod):
    reconciler, core_api = build_reconciler(fake_cache, [make_selector(policy="fair")])
    reconciler.on_add(make_pod(conditions=[{"type": "PodScheduled", "status": "True"}]))
    core_api.patch_namespaced_pod.assert_not_called()


def test_no_selector_no_patch(fake_cache, make_pod):
    reconciler, core_api = build_reconciler(fake_cache, [])
    assert reconciler.reconcile_pod(make_pod(conditions=[UNSCHEDULABLE])) is None
    core_api.patch_namespaced_pod.assert_not_called()


def test_no_patch_when_policy_declines(fake_cache, make_selector, make_pod):
    reconciler, core_api = build_reconciler(fake_cache, [make_selector(policy="normalNodeOnly")])
    reconciler.on_add(make_pod(conditions=[UNSCHEDULABLE]))
    core_api.patch_namespaced_pod.assert_not_called()


def test_patch_failure_is_logged(fake_cache, make_selector, make_pod, caplog):
    core_api = mock.Mock()
    core_api.patch_namespaced_pod.side_effect = ApiException(status=500, reason="Internal Server Error")
    reconciler, _ = build_reconciler(fake_cache, [make_selector(policy="fair")], core_api)

    with caplog.at_level(logging.ERROR, logger="eci_profile.reconciler"):
        reconciler.on_add(make_pod(conditions=[UNSCHEDULABLE]))

    assert core_api.patch_namespaced_pod.call_count == 1
    assert "Failed to execute unscheduled policy for pod default/demo" in caplog.text


def test_lookup_failure_is_logged(fake_cache, make_selector, make_pod, caplog):
    selector = make_selector(namespace_labels={"matchLabels": {"burst": "on"}})
    reconciler, core_api = build_reconciler(fake_cache, [selector])

    with caplog.at_level(logging.ERROR, logger="eci_profile.reconciler"):
        reconciler.on_add(make_pod(namespace="missing", conditions=[UNSCHEDULABLE]))

    core_api.patch_namespaced_pod.assert_not_called()
    assert "not found" in caplog.text


def test_selector_event_logger(make_selector, caplog):
    handler = SelectorEventLogger()
    obj = make_selector(name="burst")
    with caplog.at_level(logging.INFO, logger="eci_profile.reconciler"):
        handler.on_add(obj)
        handler.on_update(obj, obj)
        handler.on_delete(obj)

    messages = [r.getMessage() for r in caplog.records]
    assert messages == ["Add selector: burst(burst-uid)", "Delete selector: burst(burst-uid)"]
