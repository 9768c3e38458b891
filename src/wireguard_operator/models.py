"""
Wireguard / WireguardPeer 리소스 모델
쿠버네티스 오브젝트(dict)의 spec을 기본값이 채워진 dataclass로 변환
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .keys import is_valid_key


GROUP = "vpn.ahova.com"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"

KIND_WIREGUARD = "Wireguard"
KIND_PEER = "WireguardPeer"

FINALIZER = "vpn.ahova.com/finalizer"

DEFAULT_LISTEN_PORT = 51820
DEFAULT_SERVER_ADDRESS = "192.168.254.253/30"
DEFAULT_PEER_ADDRESS = "192.168.254.2"
DEFAULT_ENDPOINT_ADDRESS = "localhost"

MIN_REPLICAS = 1
MAX_REPLICAS = 3


@dataclass
class ExternalDNS:
    """DNS 사이드카 설정"""
    enabled: bool = True
    image: Optional[str] = None  # 없으면 오퍼레이터 설정의 dns.image
    address: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExternalDNS":
        data = data or {}
        return cls(
            enabled=data.get("enabled", True),
            image=data.get("image"),
            address=data.get("address"),
        )


@dataclass
class ServerSpec:
    """Wireguard.spec"""
    replicas: int = 1
    listen_port: int = DEFAULT_LISTEN_PORT
    address: str = DEFAULT_SERVER_ADDRESS
    # 없으면 첫 패스의 주소(보통 localhost)가 기본 피어 설정에 고정되고,
    # status.endpoint만 이후 Service 주소로 갱신된다
    endpoint_address: Optional[str] = None
    external_dns: ExternalDNS = field(default_factory=ExternalDNS)
    sidecars: List[Dict[str, Any]] = field(default_factory=list)
    drop_connections_to: List[str] = field(default_factory=list)
    affinity: Optional[Dict[str, Any]] = None
    service_annotations: Dict[str, str] = field(default_factory=dict)
    service_type: str = "LoadBalancer"
    peer_public_key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ServerSpec":
        data = data or {}
        replicas = int(data.get("replicas", 1))
        if not MIN_REPLICAS <= replicas <= MAX_REPLICAS:
            raise ValueError(
                f"replicas must be between {MIN_REPLICAS} and {MAX_REPLICAS}, got {replicas}"
            )
        return cls(
            replicas=replicas,
            listen_port=int(data.get("listenPort", DEFAULT_LISTEN_PORT)),
            address=data.get("address") or DEFAULT_SERVER_ADDRESS,
            endpoint_address=data.get("endpointAddress"),
            external_dns=ExternalDNS.from_dict(data.get("externalDns")),
            sidecars=list(data.get("sidecars") or []),
            drop_connections_to=list(data.get("dropConnectionsTo") or []),
            affinity=data.get("affinity"),
            service_annotations=dict(data.get("serviceAnnotations") or {}),
            service_type=data.get("serviceType") or "LoadBalancer",
            peer_public_key=_public_key(data, "peerPublicKey"),
        )


@dataclass
class PeerSpec:
    """WireguardPeer.spec"""
    wireguard_ref: str = ""
    address: str = DEFAULT_PEER_ADDRESS
    public_key: Optional[str] = None
    external_dns: ExternalDNS = field(default_factory=ExternalDNS)
    sidecars: List[Dict[str, Any]] = field(default_factory=list)
    drop_connections_to: List[str] = field(default_factory=list)
    affinity: Optional[Dict[str, Any]] = None

    # 피어는 항상 한 개의 인스턴스로 동작
    replicas: int = 1

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PeerSpec":
        data = data or {}
        wireguard_ref = data.get("wireguardRef")
        if not wireguard_ref:
            raise ValueError("wireguardRef is required")
        return cls(
            wireguard_ref=wireguard_ref,
            address=data.get("address") or DEFAULT_PEER_ADDRESS,
            public_key=_public_key(data, "publicKey"),
            external_dns=ExternalDNS.from_dict(data.get("externalDns")),
            sidecars=list(data.get("sidecars") or []),
            drop_connections_to=list(data.get("dropConnectionsTo") or []),
            affinity=data.get("affinity"),
        )


def _public_key(data: Dict[str, Any], field_name: str) -> Optional[str]:
    key = data.get(field_name)
    if key and not is_valid_key(key):
        raise ValueError(f"{field_name} is not a valid WireGuard key")
    return key or None


# --- 오브젝트 메타데이터 헬퍼 ---

def name_of(obj: Dict[str, Any]) -> str:
    return obj["metadata"]["name"]


def namespace_of(obj: Dict[str, Any]) -> str:
    return obj["metadata"].get("namespace", "default")


def finalizers_of(obj: Dict[str, Any]) -> List[str]:
    return list(obj["metadata"].get("finalizers") or [])


def is_deleting(obj: Dict[str, Any]) -> bool:
    return bool(obj["metadata"].get("deletionTimestamp"))


def status_of(obj: Dict[str, Any]) -> Dict[str, Any]:
    """status 필드 (없으면 생성)"""
    return obj.setdefault("status", {})


def conditions_of(obj: Dict[str, Any]) -> List[Dict[str, Any]]:
    return status_of(obj).setdefault("conditions", [])


def owner_reference(owner: Dict[str, Any]) -> Dict[str, Any]:
    """하위 리소스에 붙일 ownerReference (cascade 삭제용)"""
    return {
        "apiVersion": owner.get("apiVersion", API_VERSION),
        "kind": owner["kind"],
        "name": name_of(owner),
        "uid": owner["metadata"].get("uid", ""),
        "controller": True,
        "blockOwnerDeletion": True,
    }
