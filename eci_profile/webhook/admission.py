"""Admission webhook endpoints: AdmissionReview decoding and pod mutation."""

import base64
import copy
import json
import logging
from typing import Any, Callable, Dict, List

from flask import Flask, jsonify, request
from werkzeug.exceptions import BadRequest, UnsupportedMediaType

from ..config import HEALTHZ_PATH, WEBHOOK_PATH
from ..errors import DecodeError, ProfileError
from ..utils import pod_name

logger = logging.getLogger(__name__)

ADMISSION_V1 = "admission.k8s.io/v1"
ADMISSION_V1BETA1 = "admission.k8s.io/v1beta1"
ADMISSION_REVIEW_KIND = "AdmissionReview"
POD_RESOURCE = {"group": "", "version": "v1", "resource": "pods"}

_REQUEST_FIELDS = (
    "uid", "kind", "resource", "subResource", "requestKind", "requestResource",
    "requestSubResource", "name", "namespace", "operation", "userInfo",
    "object", "oldObject", "dryRun", "options",
)
_RESPONSE_FIELDS = ("uid", "allowed", "status", "patch", "patchType", "auditAnnotations", "warnings")

MutatePodFunc = Callable[[Dict[str, Any]], List[Dict[str, Any]]]


def decode_pod(admission_request: Dict[str, Any]) -> Dict[str, Any]:
    """
    Decode the Pod embedded in an admission request.

    The namespace is taken from the request, since Pods created through a
    namespaced endpoint may leave it unset.

    Raises:
        DecodeError: If the object is not a well-formed Pod
    """
    obj = admission_request.get("object")
    if not isinstance(obj, dict):
        raise DecodeError("admission request carries no pod object")

    kind = obj.get("kind")
    if kind is not None and kind != "Pod":
        raise DecodeError(f"expected kind Pod, got {kind}")

    pod = copy.deepcopy(obj)
    metadata = pod.setdefault("metadata", {})
    spec = pod.setdefault("spec", {})
    if not isinstance(metadata, dict) or not isinstance(spec, dict):
        raise DecodeError("pod metadata and spec must be objects")

    for field_name in ("labels", "annotations"):
        if not isinstance(metadata.get(field_name) or {}, dict):
            raise DecodeError(f"pod metadata.{field_name} must be an object")
    tolerations = spec.get("tolerations") or []
    if not isinstance(tolerations, list) or not all(isinstance(t, dict) for t in tolerations):
        raise DecodeError("pod spec.tolerations must be a list of objects")

    metadata["namespace"] = admission_request.get("namespace") or metadata.get("namespace")
    return pod


def to_admission_error(err: Exception) -> Dict[str, Any]:
    return {"allowed": False, "status": {"message": str(err)}}


class AdmissionHandler:
    """Runs AdmissionReview requests of either schema version through a pod mutator."""

    def __init__(self, mutate_pod: MutatePodFunc):
        self.mutate_pod = mutate_pod

    def admit_v1(self, admission_request: Dict[str, Any]) -> Dict[str, Any]:
        resource = admission_request.get("resource") or {}
        target = {key: resource.get(key, "") for key in POD_RESOURCE}
        if target != POD_RESOURCE:
            msg = f"Resource={target}, expect Resource {POD_RESOURCE}"
            logger.error(msg)
            raise BadRequest(msg)

        logger.info(
            f"AdmissionReview for Kind={admission_request.get('kind')}, "
            f"Namespace={admission_request.get('namespace')} Name={admission_request.get('name')} "
            f"UID={admission_request.get('uid')} Operation={admission_request.get('operation')} "
            f"UserInfo={(admission_request.get('userInfo') or {}).get('username')}"
        )

        if admission_request.get("subResource"):
            logger.debug(f"Skip subresource {admission_request['subResource']} request")
            return {"allowed": True}

        try:
            pod = decode_pod(admission_request)
            patches = self.mutate_pod(pod)
        except ProfileError as e:
            logger.error(f"Failed to mutate pod {admission_request.get('namespace')}/"
                         f"{admission_request.get('name')}: {e}")
            return to_admission_error(e)

        response: Dict[str, Any] = {"allowed": True}
        if patches:
            data = json.dumps(patches)
            logger.debug(f"PatchData for {pod_name(pod)}: {data}")
            response["patchType"] = "JSONPatch"
            response["patch"] = base64.b64encode(data.encode()).decode()
        return response

    def admit_v1beta1(self, admission_request: Dict[str, Any]) -> Dict[str, Any]:
        """Delegate a v1beta1 request to the v1 handler."""
        v1_request = {k: admission_request[k] for k in _REQUEST_FIELDS if k in admission_request}
        v1_response = self.admit_v1(v1_request)
        return {k: v1_response[k] for k in _RESPONSE_FIELDS if k in v1_response}

    def review(self, admission_review: Any) -> Dict[str, Any]:
        """
        Answer an AdmissionReview.

        Raises:
            BadRequest: If the envelope is not a supported AdmissionReview
        """
        if not isinstance(admission_review, dict):
            raise BadRequest("Request could not be decoded: expected a JSON object")

        api_version = admission_review.get("apiVersion")
        kind = admission_review.get("kind")
        admission_request = admission_review.get("request")

        if kind != ADMISSION_REVIEW_KIND or api_version not in (ADMISSION_V1, ADMISSION_V1BETA1):
            msg = f"Unsupported group version kind: {api_version}, Kind={kind}"
            logger.error(msg)
            raise BadRequest(msg)
        if not isinstance(admission_request, dict):
            raise BadRequest("AdmissionReview carries no request")

        if api_version == ADMISSION_V1BETA1:
            response = self.admit_v1beta1(admission_request)
        else:
            response = self.admit_v1(admission_request)
        response["uid"] = admission_request.get("uid", "")

        return {"apiVersion": api_version, "kind": ADMISSION_REVIEW_KIND, "response": response}


def create_app(mutate_pod: MutatePodFunc) -> Flask:
    """Create the webhook application serving /inject and /healthz."""
    app = Flask(__name__)
    handler = AdmissionHandler(mutate_pod)

    @app.route(WEBHOOK_PATH, methods=["POST"])
    def inject():
        body = request.get_data()
        if not body:
            msg = "Request could not empty body"
            logger.error(msg)
            raise BadRequest(msg)

        if request.mimetype != "application/json":
            msg = f"contentType={request.content_type}, expect application/json"
            logger.error(msg)
            raise UnsupportedMediaType(msg)

        logger.debug(f"handling request: {body!r}")
        try:
            admission_review = json.loads(body)
        except ValueError as e:
            msg = f"Request could not be decoded: {e}"
            logger.error(msg)
            raise BadRequest(msg) from e

        response_review = handler.review(admission_review)
        logger.debug(f"sending response: {response_review}")
        return jsonify(response_review)

    @app.route(HEALTHZ_PATH, methods=["GET"])
    def healthz():
        return "", 200

    return app
