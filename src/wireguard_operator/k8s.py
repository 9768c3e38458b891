"""
Kubernetes 플랫폼 모듈
조정 루프가 사용하는 API 기능(조회/생성/수정/삭제/이벤트/annotation)을 Platform
인터페이스로 정의하고 kubernetes 클라이언트로 구현
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import kubernetes
from kubernetes.client.rest import ApiException

from .errors import ConflictError, NotFoundError, PlatformError
from .logger import get_logger
from .models import (
    GROUP,
    KIND_PEER,
    KIND_WIREGUARD,
    VERSION,
    name_of,
    namespace_of,
)

KIND_SECRET = "Secret"
KIND_CONFIG_MAP = "ConfigMap"
KIND_DEPLOYMENT = "Deployment"
KIND_SERVICE = "Service"

CUSTOM_PLURALS = {
    KIND_WIREGUARD: "wireguards",
    KIND_PEER: "wireguardpeers",
}

# kind -> (API 그룹, 메서드 접미사)
BUILTIN_KINDS = {
    KIND_SECRET: ("core", "secret"),
    KIND_CONFIG_MAP: ("core", "config_map"),
    KIND_SERVICE: ("core", "service"),
    KIND_DEPLOYMENT: ("apps", "deployment"),
}


class Platform(ABC):
    """조정 루프가 의존하는 클러스터 기능

    모든 쓰기는 body의 metadata.resourceVersion 기준 낙관적 동시성을 따른다.
    """

    @abstractmethod
    def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        """오브젝트 조회 (없으면 NotFoundError)"""

    @abstractmethod
    def list(self, kind: str, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        """오브젝트 목록 (namespace가 없으면 전체)"""

    @abstractmethod
    def create(self, kind: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """오브젝트 생성 (이미 있으면 ConflictError)"""

    @abstractmethod
    def update(self, kind: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """오브젝트 교체 (버전 불일치 시 ConflictError)"""

    @abstractmethod
    def update_status(self, kind: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """status 서브리소스 교체"""

    @abstractmethod
    def delete(self, kind: str, namespace: str, name: str):
        """오브젝트 삭제 요청"""

    @abstractmethod
    def record_event(self, obj: Dict[str, Any], event_type: str, reason: str, message: str):
        """오브젝트에 대한 이벤트 기록"""

    @abstractmethod
    def annotate(self, kind: str, namespace: str, name: str, annotations: Dict[str, str]):
        """annotation 병합 패치 (resourceVersion 조건 없음)"""


def load_kube_config():
    """클러스터 내부 설정 우선, 실패 시 kubeconfig 사용"""
    logger = get_logger()
    try:
        kubernetes.config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except kubernetes.config.ConfigException:
        kubernetes.config.load_kube_config()
        logger.info("Loaded kubeconfig")


def translate_error(e: ApiException, kind: str, namespace: str, name: str) -> PlatformError:
    """ApiException을 오퍼레이터 예외로 변환"""
    if e.status == 404:
        return NotFoundError(kind, namespace, name)
    if e.status == 409:
        return ConflictError(kind, namespace, name, e.reason or "")
    return PlatformError(f"{kind} {namespace}/{name}: {e.status} {e.reason}", status=e.status)


class KubernetesPlatform(Platform):
    """kubernetes 파이썬 클라이언트 기반 Platform 구현"""

    def __init__(self, api_client: Optional[kubernetes.client.ApiClient] = None):
        self.api_client = api_client or kubernetes.client.ApiClient()
        self.core = kubernetes.client.CoreV1Api(self.api_client)
        self.apps = kubernetes.client.AppsV1Api(self.api_client)
        self.custom = kubernetes.client.CustomObjectsApi(self.api_client)
        self.logger = get_logger()

    def _to_dict(self, obj) -> Dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    def _builtin(self, kind: str, action: str):
        group, suffix = BUILTIN_KINDS[kind]
        api = self.core if group == "core" else self.apps
        return getattr(api, f"{action}_namespaced_{suffix}")

    def _custom_args(self, kind: str, namespace: str) -> Dict[str, str]:
        return {
            "group": GROUP,
            "version": VERSION,
            "namespace": namespace,
            "plural": CUSTOM_PLURALS[kind],
        }

    def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        try:
            if kind in CUSTOM_PLURALS:
                return self.custom.get_namespaced_custom_object(
                    name=name, **self._custom_args(kind, namespace))
            return self._to_dict(self._builtin(kind, "read")(name, namespace))
        except ApiException as e:
            raise translate_error(e, kind, namespace, name) from e

    def list(self, kind: str, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        try:
            if kind in CUSTOM_PLURALS:
                if namespace:
                    result = self.custom.list_namespaced_custom_object(
                        **self._custom_args(kind, namespace))
                else:
                    result = self.custom.list_cluster_custom_object(
                        group=GROUP, version=VERSION, plural=CUSTOM_PLURALS[kind])
                return list(result.get("items", []))

            if namespace:
                result = self._builtin(kind, "list")(namespace)
            else:
                group, suffix = BUILTIN_KINDS[kind]
                api = self.core if group == "core" else self.apps
                result = getattr(api, f"list_{suffix}_for_all_namespaces")()
            return [self._to_dict(item) for item in result.items]
        except ApiException as e:
            raise translate_error(e, kind, namespace or "*", "*") from e

    def create(self, kind: str, body: Dict[str, Any]) -> Dict[str, Any]:
        namespace, name = namespace_of(body), name_of(body)
        self.logger.debug(f"Creating {kind} {namespace}/{name}")
        try:
            if kind in CUSTOM_PLURALS:
                return self.custom.create_namespaced_custom_object(
                    body=body, **self._custom_args(kind, namespace))
            return self._to_dict(self._builtin(kind, "create")(namespace, body))
        except ApiException as e:
            raise translate_error(e, kind, namespace, name) from e

    def update(self, kind: str, body: Dict[str, Any]) -> Dict[str, Any]:
        namespace, name = namespace_of(body), name_of(body)
        self.logger.debug(f"Updating {kind} {namespace}/{name}")
        try:
            if kind in CUSTOM_PLURALS:
                return self.custom.replace_namespaced_custom_object(
                    name=name, body=body, **self._custom_args(kind, namespace))
            return self._to_dict(self._builtin(kind, "replace")(name, namespace, body))
        except ApiException as e:
            raise translate_error(e, kind, namespace, name) from e

    def update_status(self, kind: str, body: Dict[str, Any]) -> Dict[str, Any]:
        namespace, name = namespace_of(body), name_of(body)
        self.logger.debug(f"Updating status of {kind} {namespace}/{name}")
        try:
            if kind in CUSTOM_PLURALS:
                return self.custom.replace_namespaced_custom_object_status(
                    name=name, body=body, **self._custom_args(kind, namespace))
            return self._to_dict(self._builtin(kind, "replace")(name, namespace, body))
        except ApiException as e:
            raise translate_error(e, kind, namespace, name) from e

    def delete(self, kind: str, namespace: str, name: str):
        try:
            if kind in CUSTOM_PLURALS:
                self.custom.delete_namespaced_custom_object(
                    name=name, **self._custom_args(kind, namespace))
            else:
                self._builtin(kind, "delete")(name, namespace)
        except ApiException as e:
            raise translate_error(e, kind, namespace, name) from e

    def record_event(self, obj: Dict[str, Any], event_type: str, reason: str, message: str):
        namespace, name = namespace_of(obj), name_of(obj)
        now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        body = {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {"generateName": f"{name}.", "namespace": namespace},
            "involvedObject": {
                "apiVersion": obj.get("apiVersion"),
                "kind": obj.get("kind"),
                "name": name,
                "namespace": namespace,
                "uid": obj["metadata"].get("uid"),
                "resourceVersion": obj["metadata"].get("resourceVersion"),
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "source": {"component": "wireguard-operator"},
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }
        try:
            self.core.create_namespaced_event(namespace, body)
        except ApiException as e:
            # 이벤트는 알림 용도이므로 실패해도 조정은 계속
            self.logger.warning(f"Failed to record event for {namespace}/{name}: {e.reason}")

    def annotate(self, kind: str, namespace: str, name: str, annotations: Dict[str, str]):
        body = {"metadata": {"annotations": annotations}}
        self.logger.debug(f"Annotating {kind} {namespace}/{name}: {annotations}")
        try:
            if kind in CUSTOM_PLURALS:
                self.custom.patch_namespaced_custom_object(
                    name=name, body=body, **self._custom_args(kind, namespace))
            else:
                self._builtin(kind, "patch")(name, namespace, body)
        except ApiException as e:
            raise translate_error(e, kind, namespace, name) from e
