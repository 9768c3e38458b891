"""
테스트 공용 픽스처
메모리 기반 Platform과 고정 키 생성기
"""

import base64
import copy
import itertools

import pytest

from wireguard_operator.errors import ConflictError, NotFoundError
from wireguard_operator.factory import ResourceFactory
from wireguard_operator.k8s import KIND_SERVICE, Platform
from wireguard_operator.keys import KeyPair, KeyProvider
from wireguard_operator.models import API_VERSION, KIND_PEER, KIND_WIREGUARD
from wireguard_operator.reconciler import WireguardPeerReconciler, WireguardReconciler

WIREGUARD_IMAGE = "docker.io/linuxserver/wireguard:1.0.20210914"


class SequenceKeyProvider(KeyProvider):
    """호출 순서대로 예측 가능한 키를 돌려주는 생성기"""

    def __init__(self):
        self._counter = itertools.count(1)
        self.generated = 0

    def generate(self) -> KeyPair:
        n = next(self._counter)
        self.generated += 1
        return KeyPair(
            private_key=base64.b64encode(bytes([2 * n]) * 32).decode("ascii"),
            public_key=base64.b64encode(bytes([2 * n + 1]) * 32).decode("ascii"),
        )


def key_pair(n: int) -> KeyPair:
    """SequenceKeyProvider가 n번째로 만드는 키"""
    return KeyPair(
        private_key=base64.b64encode(bytes([2 * n]) * 32).decode("ascii"),
        public_key=base64.b64encode(bytes([2 * n + 1]) * 32).decode("ascii"),
    )


class FakePlatform(Platform):
    """메모리 기반 클러스터

    - 쓰기마다 resourceVersion 증가, 불일치 시 ConflictError
    - update는 status를 무시하고 update_status는 status만 반영
    - finalizer가 남아 있는 오브젝트의 삭제는 deletionTimestamp만 설정
    """

    def __init__(self):
        self.objects = {}
        self.events = []
        self.actions = []
        self._failures = {}
        self._version = itertools.count(1)
        self._uid = itertools.count(1)

    # --- 테스트 헬퍼 ---

    def fail(self, action: str, kind: str, error: Exception):
        """다음 action(kind) 호출에서 error 발생"""
        self._failures[(action, kind)] = error

    def writes(self):
        return [a for a in self.actions if a[0] != "get"]

    def put(self, obj):
        """API를 거치지 않고 오브젝트 저장"""
        obj = copy.deepcopy(obj)
        metadata = obj.setdefault("metadata", {})
        metadata.setdefault("namespace", "default")
        metadata.setdefault("uid", f"uid-{next(self._uid)}")
        metadata["resourceVersion"] = str(next(self._version))
        self.objects[self._key(obj["kind"], obj)] = obj
        return copy.deepcopy(obj)

    def stored(self, kind, name, namespace="default"):
        return self.objects.get((kind, namespace, name))

    # --- Platform ---

    @staticmethod
    def _key(kind, obj):
        metadata = obj["metadata"]
        return kind, metadata.get("namespace", "default"), metadata["name"]

    def _check_failure(self, action, kind):
        error = self._failures.pop((action, kind), None)
        if error is not None:
            raise error

    def _current(self, kind, body):
        key = self._key(kind, body)
        if key not in self.objects:
            raise NotFoundError(*key)
        current = self.objects[key]
        version = body["metadata"].get("resourceVersion")
        if version and version != current["metadata"]["resourceVersion"]:
            raise ConflictError(*key)
        return key, current

    def get(self, kind, namespace, name):
        self.actions.append(("get", kind, name))
        key = (kind, namespace, name)
        if key not in self.objects:
            raise NotFoundError(kind, namespace, name)
        return copy.deepcopy(self.objects[key])

    def list(self, kind, namespace=None):
        return [
            copy.deepcopy(obj)
            for (k, ns, _), obj in sorted(self.objects.items())
            if k == kind and (namespace is None or ns == namespace)
        ]

    def create(self, kind, body):
        self.actions.append(("create", kind, body["metadata"]["name"]))
        self._check_failure("create", kind)
        key = self._key(kind, body)
        if key in self.objects:
            raise ConflictError(*key, "already exists")
        obj = copy.deepcopy(body)
        if kind == KIND_SERVICE:
            obj["spec"].setdefault("clusterIP", "10.96.0.10")
        return self.put(obj)

    def update(self, kind, body):
        self.actions.append(("update", kind, body["metadata"]["name"]))
        self._check_failure("update", kind)
        key, current = self._current(kind, body)
        obj = copy.deepcopy(body)
        if "status" in current:
            obj["status"] = copy.deepcopy(current["status"])
        else:
            obj.pop("status", None)
        # deletionTimestamp는 클라이언트가 바꿀 수 없음
        deletion = current["metadata"].get("deletionTimestamp")
        if deletion:
            obj["metadata"]["deletionTimestamp"] = deletion
            if not obj["metadata"].get("finalizers"):
                del self.objects[key]
                return copy.deepcopy(obj)
        return self.put(obj)

    def update_status(self, kind, body):
        self.actions.append(("update_status", kind, body["metadata"]["name"]))
        self._check_failure("update_status", kind)
        _, current = self._current(kind, body)
        obj = copy.deepcopy(current)
        obj["status"] = copy.deepcopy(body.get("status") or {})
        return self.put(obj)

    def delete(self, kind, namespace, name):
        self.actions.append(("delete", kind, name))
        key = (kind, namespace, name)
        if key not in self.objects:
            raise NotFoundError(*key)
        obj = self.objects[key]
        if obj["metadata"].get("finalizers"):
            obj["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
            obj["metadata"]["resourceVersion"] = str(next(self._version))
        else:
            del self.objects[key]

    def record_event(self, obj, event_type, reason, message):
        self.events.append((obj["metadata"]["name"], event_type, reason, message))

    def annotate(self, kind, namespace, name, annotations):
        self.actions.append(("annotate", kind, name))
        self._check_failure("annotate", kind)
        key = (kind, namespace, name)
        if key not in self.objects:
            raise NotFoundError(*key)
        metadata = self.objects[key]["metadata"]
        current = metadata.setdefault("annotations", {})
        # 값이 같으면 API 서버처럼 버전을 올리지 않음
        if all(current.get(k) == v for k, v in annotations.items()):
            return
        current.update(annotations)
        metadata["resourceVersion"] = str(next(self._version))


def wireguard(name="vpn", namespace="default", **spec):
    return {
        "apiVersion": API_VERSION,
        "kind": KIND_WIREGUARD,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def wireguard_peer(name="peer", namespace="default", **spec):
    return {
        "apiVersion": API_VERSION,
        "kind": KIND_PEER,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def factory():
    return ResourceFactory(WIREGUARD_IMAGE, key_provider=SequenceKeyProvider())


@pytest.fixture
def server_reconciler(platform, factory):
    return WireguardReconciler(platform, factory, requeue_after=60)


@pytest.fixture
def peer_reconciler(platform, factory):
    return WireguardPeerReconciler(platform, factory, requeue_after=60)
