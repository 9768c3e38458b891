"""
컨트롤러 모듈
kopf 핸들러로 조정 루프를 구동

- 리소스별 직렬화, 재시도 대기, backoff는 kopf가 담당한다
- Result / 예외는 여기서 kopf.TemporaryError / PermanentError로 변환한다
- 하위 리소스나 서버 변경은 소유자(또는 피어)에 annotation을 붙여 kopf 업데이트
  핸들러를 깨운다
- finalizer는 조정 루프가 직접 관리하므로 kopf finalizer가 필요한 핸들러
  (필수 delete, timer, daemon)는 등록하지 않는다
"""

import time
from typing import Any, Dict, List, Optional, Tuple

import kopf

from .errors import ConfigurationError, ConflictError, NotFoundError, OperatorError
from .k8s import CUSTOM_PLURALS, KIND_CONFIG_MAP, KIND_DEPLOYMENT, KIND_SECRET, KIND_SERVICE, Platform
from .logger import get_logger
from .models import GROUP, KIND_PEER, KIND_WIREGUARD, VERSION, name_of, namespace_of
from .reconciler import ResourceReconciler, Result

Key = Tuple[str, str, str]  # (kind, namespace, name)

# kind -> (API 그룹, 버전, plural)
CHILD_RESOURCES = {
    KIND_SECRET: ("", "v1", "secrets"),
    KIND_CONFIG_MAP: ("", "v1", "configmaps"),
    KIND_DEPLOYMENT: ("apps", "v1", "deployments"),
    KIND_SERVICE: ("", "v1", "services"),
}
CHILD_LABELS = {"app.kubernetes.io/part-of": "wireguard-operator"}

# kopf 진행 상태 저장 위치 (아래 트리거 annotation과 겹치지 않게 분리)
STORAGE_PREFIX = f"kopf.{GROUP}"

ANNOTATION_CHILD = f"{GROUP}/child-revision"
ANNOTATION_SERVER = f"{GROUP}/server-revision"
ANNOTATION_REQUEUE = f"{GROUP}/requeue"


def build_settings(resync_period: float = 300, workers: int = 4) -> kopf.OperatorSettings:
    """kopf 운영 설정"""
    settings = kopf.OperatorSettings()
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=STORAGE_PREFIX)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=STORAGE_PREFIX,
        key="last-handled-configuration",
    )
    # 감시 연결이 끊길 때마다 kopf가 전체 목록을 다시 받는다 (주기적 재동기화)
    settings.watching.server_timeout = resync_period
    settings.execution.max_workers = workers
    # 이벤트는 조정 루프가 직접 기록
    settings.posting.enabled = False
    return settings


class Controller:
    """Wireguard / WireguardPeer 컨트롤러 (kopf 핸들러 어댑터)"""

    def __init__(self, platform: Platform, reconcilers: Dict[str, ResourceReconciler],
                 namespace: Optional[str] = None, retry_delay: float = 60,
                 conflict_delay: float = 1.0, clock=time.time):
        self.platform = platform
        self.reconcilers = reconcilers
        self.namespace = namespace or None
        self.retry_delay = retry_delay
        self.conflict_delay = conflict_delay
        self.clock = clock
        self.logger = get_logger()

    # --- 이벤트 -> 키 매핑 ---

    def keys_for(self, kind: str, obj: Dict) -> List[Key]:
        """변경된 오브젝트로부터 조정할 키 계산"""
        namespace = namespace_of(obj)
        if kind in self.reconcilers:
            keys = [(kind, namespace, name_of(obj))]
            if kind == KIND_WIREGUARD and KIND_PEER in self.reconcilers:
                keys.extend(self._peers_of(namespace, name_of(obj)))
            return keys

        # 하위 리소스는 controller ownerReference를 따라 소유자로
        keys = []
        for ref in obj.get("metadata", {}).get("ownerReferences") or []:
            if ref.get("controller") and ref.get("kind") in self.reconcilers:
                keys.append((ref["kind"], namespace, ref["name"]))
        return keys

    def _peers_of(self, namespace: str, server_name: str) -> List[Key]:
        """서버를 참조하는 피어 (공개키/엔드포인트 변경 전파)"""
        try:
            peers = self.platform.list(KIND_PEER, namespace)
        except OperatorError as e:
            self.logger.warning(f"Failed to list peers of Wireguard {namespace}/{server_name}: {e}")
            return []
        return [
            (KIND_PEER, namespace, name_of(peer))
            for peer in peers
            if (peer.get("spec") or {}).get("wireguardRef") == server_name
        ]

    def _touch(self, key: Key, annotation: str, value: str):
        """annotation을 바꿔 kopf 업데이트 핸들러를 깨움"""
        kind, namespace, name = key
        try:
            self.platform.annotate(kind, namespace, name, {annotation: value})
        except NotFoundError:
            self.logger.debug(f"{kind} {namespace}/{name} is gone, nothing to trigger")
        except OperatorError as e:
            self.logger.warning(f"Failed to trigger reconciliation of {kind} {namespace}/{name}: {e}")

    # --- 조정 실행 ---

    def handle(self, kind: str, namespace: str, name: str) -> None:
        """조정 패스 실행 (재시도가 필요하면 kopf 예외 발생)

        Raises:
            kopf.TemporaryError: 재조정 요청, 충돌, 일시적 실패
            kopf.PermanentError: 설정 오류 (재시도로 해결되지 않음)
        """
        reconciler = self.reconcilers[kind]
        try:
            result = reconciler.reconcile(namespace, name)
        except ConflictError as e:
            self.logger.info(f"Conflict while reconciling {kind} {namespace}/{name}, retrying: {e}")
            raise kopf.TemporaryError(str(e), delay=self.conflict_delay) from e
        except ConfigurationError as e:
            self.logger.error(f"Configuration error while reconciling {kind} {namespace}/{name}: {e}")
            raise kopf.PermanentError(str(e)) from e
        except OperatorError as e:
            self.logger.error(f"Failed to reconcile {kind} {namespace}/{name}: {e}")
            raise kopf.TemporaryError(str(e), delay=self.retry_delay) from e

        if result.requeue_after:
            raise kopf.TemporaryError(
                f"{kind} {namespace}/{name} requeued", delay=result.requeue_after)
        if result.requeue:
            raise kopf.TemporaryError(f"{kind} {namespace}/{name} requeued", delay=0)

    def resync(self, kind: str, namespace: str, name: str) -> None:
        """목록 재수신 시 조정 (재시도가 필요하면 업데이트 핸들러에 넘김)"""
        try:
            result = self.reconcilers[kind].reconcile(namespace, name)
        except OperatorError as e:
            self.logger.warning(f"Resync of {kind} {namespace}/{name} failed: {e}")
            result = Result.immediate()
        if result.requeue:
            self._touch((kind, namespace, name), ANNOTATION_REQUEUE, str(int(self.clock())))

    # --- kopf 이벤트 핸들러 ---

    def on_resource_event(self, kind: str, event: Dict[str, Any], body: Dict[str, Any]) -> None:
        """Wireguard / WireguardPeer 이벤트

        - 목록 재수신(type None): 재동기화
        - 서버 공개키/엔드포인트가 바뀌면 참조하는 피어를 깨움
        """
        event_type = event.get("type")
        if event_type is None:
            self.resync(kind, namespace_of(body), name_of(body))
        if kind != KIND_WIREGUARD or event_type == "DELETED":
            return

        status = body.get("status") or {}
        if not status.get("publicKey"):
            return
        revision = f"{status['publicKey']}@{status.get('endpoint') or ''}"
        for key in self.keys_for(kind, body)[1:]:
            peer_kind, namespace, name = key
            try:
                peer = self.platform.get(peer_kind, namespace, name)
            except NotFoundError:
                continue
            if (peer["metadata"].get("annotations") or {}).get(ANNOTATION_SERVER) == revision:
                continue
            self.logger.info(f"Wireguard {namespace}/{name_of(body)} changed, requeueing {peer_kind} {namespace}/{name}")
            self._touch(key, ANNOTATION_SERVER, revision)

    def on_child_event(self, kind: str, event: Dict[str, Any], body: Dict[str, Any]) -> None:
        """하위 리소스 변경/삭제를 소유자에 전달 (생성 이벤트는 조정 루프 자신의 것)"""
        event_type = event.get("type")
        if event_type not in ("MODIFIED", "DELETED"):
            return
        metadata = body.get("metadata") or {}
        # generation은 spec 변경에서만 올라가므로 status 갱신에는 같은 값
        revision = metadata.get("generation") or metadata.get("resourceVersion") or ""
        if event_type == "DELETED":
            revision = f"deleted-{revision}"
        for key in self.keys_for(kind, body):
            self.logger.debug(f"{event_type} {kind} {namespace_of(body)}/{name_of(body)} -> {key[0]} {key[2]}")
            self._touch(key, ANNOTATION_CHILD, f"{kind}/{revision}")

    # --- 등록 ---

    def register(self, registry: kopf.OperatorRegistry) -> None:
        """kopf 레지스트리에 핸들러 등록"""
        for kind in self.reconcilers:
            plural = CUSTOM_PLURALS[kind]

            def reconcile_handler(namespace, name, _kind=kind, **_):
                self.handle(_kind, namespace, name)

            def event_handler(event, body, _kind=kind, **_):
                self.on_resource_event(_kind, event, body)

            for decorator in (kopf.on.resume, kopf.on.create, kopf.on.update):
                decorator(GROUP, VERSION, plural, registry=registry,
                          backoff=self.retry_delay)(reconcile_handler)
            # optional이면 kopf finalizer 없이 삭제 중인 오브젝트에 대해 호출됨
            kopf.on.delete(GROUP, VERSION, plural, registry=registry, optional=True,
                           backoff=self.retry_delay)(reconcile_handler)
            kopf.on.event(GROUP, VERSION, plural, registry=registry)(event_handler)

        for kind, (group, version, plural) in CHILD_RESOURCES.items():
            def child_handler(event, body, _kind=kind, **_):
                self.on_child_event(_kind, event, body)

            kopf.on.event(group, version, plural, registry=registry,
                          labels=CHILD_LABELS)(child_handler)

    def run(self, settings: Optional[kopf.OperatorSettings] = None):
        """중지될 때까지 실행"""
        registry = kopf.OperatorRegistry()
        self.register(registry)
        self.logger.info(f"Starting controller for {', '.join(self.reconcilers)}")
        try:
            kopf.run(
                registry=registry,
                settings=settings or build_settings(),
                standalone=True,
                clusterwide=self.namespace is None,
                namespaces=[self.namespace] if self.namespace else [],
            )
        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.logger.info("Stopping controller")
