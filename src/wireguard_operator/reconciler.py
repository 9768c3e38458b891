"""
조정(reconcile) 루프 모듈
Wireguard / WireguardPeer 리소스를 원하는 상태로 수렴시키는 상태 머신

한 번의 조정 패스:
  리소스 조회 -> 단계(Phase) 판별 -> 단계 처리 -> (필요 시 재조회 후 반복)
  -> Result(재시도 지시) 반환

모든 단계는 spec만으로 다시 계산할 수 있으므로 실패 시 되돌리지 않는다.
"""

import enum
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .errors import ChildMutationError, ConflictError, NotFoundError, OperatorError
from .factory import KEY_PUBLIC, ResourceFactory, secret_value
from .k8s import (
    KIND_CONFIG_MAP,
    KIND_DEPLOYMENT,
    KIND_SECRET,
    KIND_SERVICE,
    Platform,
)
from .logger import get_logger
from .models import (
    DEFAULT_ENDPOINT_ADDRESS,
    FINALIZER,
    KIND_PEER,
    KIND_WIREGUARD,
    PeerSpec,
    ServerSpec,
    conditions_of,
    finalizers_of,
    is_deleting,
    name_of,
    namespace_of,
    status_of,
)
from .status import (
    CONDITION_AVAILABLE,
    CONDITION_DEGRADED,
    STATUS_FALSE,
    STATUS_TRUE,
    STATUS_UNKNOWN,
    set_condition,
)

DEFAULT_REQUEUE_AFTER = 60


@dataclass(frozen=True)
class Result:
    """스케줄러에 돌려주는 재시도 지시"""
    requeue: bool = False
    requeue_after: Optional[float] = None

    @classmethod
    def done(cls) -> "Result":
        return cls()

    @classmethod
    def immediate(cls) -> "Result":
        return cls(requeue=True)

    @classmethod
    def after(cls, seconds: float) -> "Result":
        return cls(requeue=True, requeue_after=seconds)


class Phase(enum.Enum):
    """finalizer, deletionTimestamp, conditions로부터 추론한 리소스 단계"""
    UNINITIALIZED = "Uninitialized"
    GUARD_ABSENT = "GuardAbsent"
    TERMINATING = "Terminating"
    FINALIZED = "Finalized"
    CONVERGING = "Converging"


def classify(resource: Dict[str, Any]) -> Phase:
    """리소스의 현재 단계 판별 (삭제 여부가 최우선)"""
    if is_deleting(resource):
        if FINALIZER in finalizers_of(resource):
            return Phase.TERMINATING
        return Phase.FINALIZED
    if not (resource.get("status") or {}).get("conditions"):
        return Phase.UNINITIALIZED
    if FINALIZER not in finalizers_of(resource):
        return Phase.GUARD_ABSENT
    return Phase.CONVERGING


@dataclass
class Child:
    """관리 대상 하위 리소스 정의"""
    kind: str
    build: Callable[[], Dict[str, Any]]
    # 관리 필드가 다르면 수정된 오브젝트, 같으면 None
    diff: Optional[Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]] = None
    failure_reason: str = "Reconciling"


def replicas_diff(desired: int) -> Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """Deployment의 replicas만 비교"""
    def diff(existing: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if existing.get("spec", {}).get("replicas") == desired:
            return None
        existing["spec"]["replicas"] = desired
        return existing
    return diff


class ResourceReconciler:
    """조정 루프 기본 클래스 (종류별 하위 클래스에서 하위 리소스 정의)"""

    kind = ""

    # 단계 -> 처리 메서드 이름
    TRANSITIONS = {
        Phase.UNINITIALIZED: "_initialize",
        Phase.GUARD_ABSENT: "_attach_finalizer",
        Phase.TERMINATING: "_finalize",
        Phase.FINALIZED: "_finalized",
        Phase.CONVERGING: "_converge",
    }

    MAX_STEPS = len(TRANSITIONS)

    def __init__(self, platform: Platform, factory: ResourceFactory,
                 requeue_after: float = DEFAULT_REQUEUE_AFTER):
        self.platform = platform
        self.factory = factory
        self.requeue_after = requeue_after
        self.logger = get_logger()

    # --- 진입점 ---

    def reconcile(self, namespace: str, name: str) -> Result:
        """조정 패스 한 번 수행

        Raises:
            OperatorError: 컨트롤러가 재시도 대기 후 다시 실행해야 하는 실패
        """
        try:
            resource = self.platform.get(self.kind, namespace, name)
        except NotFoundError:
            self.logger.info(f"{self.kind} {namespace}/{name} not found. Ignoring since object must be deleted")
            return Result.done()

        for _ in range(self.MAX_STEPS):
            phase = classify(resource)
            self.logger.debug(f"{self.kind} {namespace}/{name} phase: {phase.value}")
            outcome = getattr(self, self.TRANSITIONS[phase])(resource)
            if isinstance(outcome, Result):
                return outcome
            resource = outcome

        # 단계가 앞으로만 진행하므로 여기까지 오면 외부에서 계속 바뀌는 중
        return Result.immediate()

    # --- 단계 처리 ---

    def _refetch(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        return self.platform.get(self.kind, namespace_of(resource), name_of(resource))

    def _initialize(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        set_condition(conditions_of(resource), CONDITION_AVAILABLE, STATUS_UNKNOWN,
                      "Reconciling", "Starting reconciliation")
        self.platform.update_status(self.kind, resource)
        # 상태 쓰기로 resourceVersion이 바뀌므로 다시 조회
        return self._refetch(resource)

    def _attach_finalizer(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        self.logger.info(f"Adding finalizer for {self.kind} {namespace_of(resource)}/{name_of(resource)}")
        metadata = resource["metadata"]
        metadata["finalizers"] = finalizers_of(resource) + [FINALIZER]
        return self.platform.update(self.kind, resource)

    def _finalize(self, resource: Dict[str, Any]) -> Result:
        name = name_of(resource)
        self.logger.info(f"Performing finalizer operations for {self.kind} {namespace_of(resource)}/{name}")

        set_condition(conditions_of(resource), CONDITION_DEGRADED, STATUS_UNKNOWN, "Finalizing",
                      f"Performing finalizer operations for the custom resource: {name} ")
        self.platform.update_status(self.kind, resource)

        self.before_delete(resource)

        resource = self._refetch(resource)
        set_condition(conditions_of(resource), CONDITION_DEGRADED, STATUS_TRUE, "Finalizing",
                      f"Finalizer operations for custom resource {name} name were successfully accomplished")
        resource = self.platform.update_status(self.kind, resource)

        self.logger.info(f"Removing finalizer for {self.kind} {namespace_of(resource)}/{name}")
        resource["metadata"]["finalizers"] = [f for f in finalizers_of(resource) if f != FINALIZER]
        self.platform.update(self.kind, resource)
        return Result.done()

    def _finalized(self, resource: Dict[str, Any]) -> Result:
        return Result.done()

    def before_delete(self, resource: Dict[str, Any]):
        """삭제 전 알림 (하위 리소스는 ownerReference로 정리됨)"""
        self.platform.record_event(
            resource, "Warning", "Deleting",
            f"Custom Resource {name_of(resource)} is being deleted from the namespace {namespace_of(resource)}",
        )

    def _converge(self, resource: Dict[str, Any]) -> Result:
        namespace, name = namespace_of(resource), name_of(resource)

        try:
            context = self.prepare(resource)
        except (TypeError, ValueError) as e:
            # replicas: null 같은 타입 오류도 spec 오류
            return self._invalid_spec(resource, e)
        if isinstance(context, Result):
            return context

        observed: Dict[str, Dict[str, Any]] = {}
        created = False
        for child in self.children(resource, context):
            try:
                existing = self.platform.get(child.kind, namespace, name)
            except NotFoundError:
                existing = None

            if existing is None:
                try:
                    manifest = child.build()
                    self.logger.info(f"Creating a new {child.kind} {namespace}/{name}")
                    observed[child.kind] = self.platform.create(child.kind, manifest)
                except ConflictError:
                    # 다른 패스가 먼저 만들었음, 새로 조회해서 다시 시도
                    raise
                except Exception as e:
                    self.logger.error(f"Failed to create {child.kind} {namespace}/{name}: {e}")
                    self._record_failure(
                        resource, child.failure_reason,
                        f"Failed to create {child.kind} for the custom resource ({name}): ({e})",
                    )
                    raise ChildMutationError(child.kind, name, e) from e
                created = True
                continue

            observed[child.kind] = existing
            patched = child.diff(existing) if child.diff else None
            if patched is not None:
                try:
                    self.logger.info(f"Updating {child.kind} {namespace}/{name}")
                    self.platform.update(child.kind, patched)
                except ConflictError:
                    raise
                except Exception as e:
                    self.logger.error(f"Failed to update {child.kind} {namespace}/{name}: {e}")
                    self._record_failure(
                        resource, "Resizing",
                        f"Failed to update the size for the custom resource ({name}): ({e})",
                    )
                    raise ChildMutationError(child.kind, name, e) from e
                # 바뀐 상태를 다시 확인한 뒤 나머지 비교를 진행
                return Result.immediate()

        if created:
            return Result.after(self.requeue_after)

        changed = self.observe(resource, context, observed)
        changed |= set_condition(
            conditions_of(resource), CONDITION_AVAILABLE, STATUS_TRUE, "Reconciling",
            self.available_message(resource, context),
        )
        if changed:
            self.platform.update_status(self.kind, resource)
        self.logger.debug(f"{self.kind} {namespace}/{name} is up to date")
        return Result.done()

    def _invalid_spec(self, resource: Dict[str, Any], error: Exception) -> Result:
        """spec 오류는 재시도로 해결되지 않으므로 상태에만 기록"""
        self.logger.error(f"Invalid spec for {self.kind} {namespace_of(resource)}/{name_of(resource)}: {error}")
        if set_condition(conditions_of(resource), CONDITION_AVAILABLE, STATUS_FALSE,
                         "InvalidSpec", str(error)):
            self.platform.update_status(self.kind, resource)
        return Result.done()

    def _record_failure(self, resource: Dict[str, Any], reason: str, message: str):
        """실패 원인을 상태에 기록 (최선 노력, 실패해도 원래 오류를 전파)"""
        try:
            fresh = self._refetch(resource)
            set_condition(conditions_of(fresh), CONDITION_AVAILABLE, STATUS_FALSE, reason, message)
            self.platform.update_status(self.kind, fresh)
        except OperatorError as e:
            self.logger.warning(f"Failed to update {self.kind} status: {e}")

    # --- 하위 클래스 구현 ---

    def prepare(self, resource: Dict[str, Any]):
        """하위 리소스 생성에 필요한 값 계산 (Result를 돌려주면 패스 종료)"""
        raise NotImplementedError

    def children(self, resource: Dict[str, Any], context: Dict[str, Any]) -> List[Child]:
        raise NotImplementedError

    def replicas(self, resource: Dict[str, Any]) -> int:
        raise NotImplementedError

    def available_message(self, resource: Dict[str, Any], context: Dict[str, Any]) -> str:
        return (f"Deployment for custom resource ({name_of(resource)}) with "
                f"{self.replicas(resource)} replicas created successfully")

    def observe(self, resource: Dict[str, Any], context: Dict[str, Any],
                observed: Dict[str, Dict[str, Any]]) -> bool:
        """status 필드 갱신, 바뀌었으면 True"""
        return False


def resolve_endpoint_address(spec: ServerSpec, service: Optional[Dict[str, Any]]) -> str:
    """서버 공개 주소: spec.endpointAddress > LoadBalancer 주소 > ClusterIP > localhost"""
    if spec.endpoint_address:
        return spec.endpoint_address
    if service:
        ingress = ((service.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []
        for entry in ingress:
            address = entry.get("ip") or entry.get("hostname")
            if address:
                return address
        cluster_ip = (service.get("spec") or {}).get("clusterIP")
        if cluster_ip and cluster_ip != "None":
            return cluster_ip
    return DEFAULT_ENDPOINT_ADDRESS


class WireguardReconciler(ResourceReconciler):
    """Wireguard(서버) 조정"""

    kind = KIND_WIREGUARD

    def prepare(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        spec = ServerSpec.from_dict(resource.get("spec"))
        try:
            service = self.platform.get(KIND_SERVICE, namespace_of(resource), name_of(resource))
        except NotFoundError:
            service = None
        address = resolve_endpoint_address(spec, service)
        return {"spec": spec, "endpoint": f"{address}:{spec.listen_port}"}

    def _server_secret(self, resource: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        spec = context["spec"]
        if not spec.endpoint_address and not spec.peer_public_key:
            # Secret은 다시 만들지 않으므로 기본 피어 설정의 Endpoint는 이 값으로 고정된다
            self.logger.warning(
                f"Default peer config for {self.kind} {namespace_of(resource)}/{name_of(resource)} "
                f"uses endpoint {context['endpoint']}; set spec.endpointAddress to pin it"
            )
        return self.factory.server_secret(resource, context["endpoint"])

    def children(self, resource: Dict[str, Any], context: Dict[str, Any]) -> List[Child]:
        spec = context["spec"]
        return [
            Child(KIND_SECRET, lambda: self._server_secret(resource, context)),
            Child(KIND_CONFIG_MAP, lambda: self.factory.server_config_map(resource)),
            Child(KIND_DEPLOYMENT, lambda: self.factory.server_deployment(resource),
                  diff=replicas_diff(spec.replicas)),
            Child(KIND_SERVICE, lambda: self.factory.server_service(resource)),
        ]

    def replicas(self, resource: Dict[str, Any]) -> int:
        return ServerSpec.from_dict(resource.get("spec")).replicas

    def observe(self, resource: Dict[str, Any], context: Dict[str, Any],
                observed: Dict[str, Dict[str, Any]]) -> bool:
        status = status_of(resource)
        changed = False

        # 공개키는 한 번만 기록
        public_key = secret_value(observed[KIND_SECRET], KEY_PUBLIC)
        if public_key and not status.get("publicKey"):
            status["publicKey"] = public_key
            changed = True

        address = resolve_endpoint_address(context["spec"], observed.get(KIND_SERVICE))
        endpoint = f"{address}:{context['spec'].listen_port}"
        if status.get("endpoint") != endpoint:
            status["endpoint"] = endpoint
            changed = True
        return changed


class WireguardPeerReconciler(ResourceReconciler):
    """WireguardPeer 조정 (부모 Wireguard의 공개키와 엔드포인트 사용)"""

    kind = KIND_PEER

    def prepare(self, resource: Dict[str, Any]):
        spec = PeerSpec.from_dict(resource.get("spec"))
        namespace = namespace_of(resource)
        try:
            server = self.platform.get(KIND_WIREGUARD, namespace, spec.wireguard_ref)
        except NotFoundError:
            return self._wait_for_server(resource, f"Wireguard {spec.wireguard_ref} not found")

        server_status = server.get("status") or {}
        if not server_status.get("publicKey"):
            return self._wait_for_server(resource, f"Wireguard {spec.wireguard_ref} has no public key yet")

        endpoint = server_status.get("endpoint")
        if not endpoint:
            server_spec = ServerSpec.from_dict(server.get("spec"))
            address = server_spec.endpoint_address or DEFAULT_ENDPOINT_ADDRESS
            endpoint = f"{address}:{server_spec.listen_port}"
        return {"spec": spec, "server": server, "endpoint": endpoint}

    def _wait_for_server(self, resource: Dict[str, Any], message: str) -> Result:
        self.logger.info(f"{self.kind} {namespace_of(resource)}/{name_of(resource)}: {message}")
        if set_condition(conditions_of(resource), CONDITION_AVAILABLE, STATUS_FALSE,
                         "WaitingForServer", message):
            self.platform.update_status(self.kind, resource)
        return Result.after(self.requeue_after)

    def children(self, resource: Dict[str, Any], context: Dict[str, Any]) -> List[Child]:
        spec = context["spec"]
        secret = Child(KIND_SECRET,
                       lambda: self.factory.peer_secret(resource, context["server"], context["endpoint"]))
        if spec.public_key:
            # 개인키가 클러스터 밖에 있으므로 실행할 터널 설정이 없다
            return [secret]
        return [
            secret,
            Child(KIND_CONFIG_MAP, lambda: self.factory.peer_config_map(resource)),
            Child(KIND_DEPLOYMENT, lambda: self.factory.peer_deployment(resource),
                  diff=replicas_diff(spec.replicas)),
            Child(KIND_SERVICE, lambda: self.factory.peer_service(resource)),
        ]

    def replicas(self, resource: Dict[str, Any]) -> int:
        return PeerSpec.from_dict(resource.get("spec")).replicas

    def available_message(self, resource: Dict[str, Any], context: Dict[str, Any]) -> str:
        if context["spec"].public_key:
            return (f"Peer ({name_of(resource)}) uses its own key; "
                    f"only the public key Secret is managed, no Deployment is created")
        return super().available_message(resource, context)

    def observe(self, resource: Dict[str, Any], context: Dict[str, Any],
                observed: Dict[str, Dict[str, Any]]) -> bool:
        status = status_of(resource)
        public_key = secret_value(observed[KIND_SECRET], KEY_PUBLIC)
        if public_key and status.get("publicKey") != public_key:
            status["publicKey"] = public_key
            return True
        return False
