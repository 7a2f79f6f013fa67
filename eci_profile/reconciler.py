"""Reconciliation of Pods the scheduler could not place."""

import json
import logging
from typing import Any, Dict, Optional

from kubernetes import client

from .errors import ProfileError
from .policy import PolicyManager
from .resolver import SelectorResolver
from .utils import PatchDocument, patch_pod, pod_name

logger = logging.getLogger(__name__)


def is_unscheduled(pod: Dict[str, Any]) -> bool:
    """
    Check whether the scheduler has marked a Pod unschedulable.

    Pods without conditions are never considered unscheduled.
    """
    conditions = (pod.get("status") or {}).get("conditions")
    if not conditions:
        logger.debug(f"Skip the pod without conditions: {pod_name(pod)}")
        return False

    scheduled = None
    for condition in conditions:
        if condition.get("type") == "PodScheduled":
            scheduled = condition

    return (
        scheduled is not None
        and scheduled.get("status") == "False"
        and scheduled.get("reason") == "Unschedulable"
    )


class UnscheduledReconciler:
    """Pod event handler that re-patches unschedulable Pods."""

    def __init__(self, resolver: SelectorResolver, policy_manager: PolicyManager, core_api: client.CoreV1Api):
        """
        Initialize the reconciler.

        Args:
            resolver: Finds the Selector governing a Pod
            policy_manager: Turns the Selector into a merge patch
            core_api: API used to patch Pods
        """
        self.resolver = resolver
        self.policy_manager = policy_manager
        self.core_api = core_api

    def on_add(self, pod: Dict[str, Any]) -> None:
        self._check(pod)

    def on_update(self, old_pod: Dict[str, Any], new_pod: Dict[str, Any]) -> None:
        self._check(new_pod)

    def on_delete(self, pod: Dict[str, Any]) -> None:
        pass

    def _check(self, pod: Dict[str, Any]) -> None:
        if not is_unscheduled(pod):
            return
        try:
            self.reconcile_pod(pod)
        except ProfileError as e:
            logger.error(f"Failed to execute unscheduled policy for pod {pod_name(pod)}: {e}")

    def reconcile_pod(self, pod: Dict[str, Any]) -> Optional[PatchDocument]:
        """
        Apply the matching Selector's unscheduled policy to a Pod.

        Returns:
            The patch that was applied, or None

        Raises:
            CacheLookupError: If the Selector lookup fails
            SelectorConfigError: If a Selector is malformed
            PatchApplyError: If the PATCH call fails
        """
        metadata = pod.get("metadata") or {}
        logger.debug(f"Pod {pod_name(pod)} is unscheduled, recheck it")

        selector = self.resolver.resolve(pod)
        if selector is None:
            logger.debug(f"No selector matched for pod {pod_name(pod)}")
            return None

        logger.info(f"Pod {pod_name(pod)}({metadata.get('uid')}) matched the selector "
                    f"{selector.name}({selector.uid})")

        patch = self.policy_manager.on_pod_unscheduled(selector, pod)
        if patch is None:
            return None

        patch_pod(self.core_api, metadata.get("namespace"), metadata.get("name"), patch)
        logger.info(f"The pod {pod_name(pod)} is allowed to schedule to vnode (matched: {selector.name})")
        return patch


class SelectorEventLogger:
    """Selector event handler that records changes to the rule set."""

    def on_add(self, obj: Dict[str, Any]) -> None:
        self._log("add", obj)

    def on_update(self, old_obj: Dict[str, Any], new_obj: Dict[str, Any]) -> None:
        if old_obj == new_obj:
            return
        self._log("update", new_obj)

    def on_delete(self, obj: Dict[str, Any]) -> None:
        metadata = obj.get("metadata") or {}
        logger.info(f"Delete selector: {metadata.get('name')}({metadata.get('uid')})")

    def _log(self, action: str, obj: Dict[str, Any]) -> None:
        metadata = obj.get("metadata") or {}
        logger.info(f"{action.capitalize()} selector: {metadata.get('name')}({metadata.get('uid')})")
        logger.debug(f"Selector payload: {json.dumps(obj, sort_keys=True)}")
