"""
하위 리소스 팩토리
Wireguard / WireguardPeer spec으로부터 Secret, ConfigMap, Deployment, Service
매니페스트(dict)를 만든다.

키는 이 모듈에서만 생성된다 (KeyProvider 경유). 그 외 I/O는 없다.
"""

import base64
import copy
from typing import Any, Dict, Optional

from .config import DEFAULT_UNBOUND_IMAGE
from .errors import ConfigurationError
from .keys import KeyProvider, X25519KeyProvider
from .models import (
    DEFAULT_LISTEN_PORT,
    PeerSpec,
    ServerSpec,
    name_of,
    namespace_of,
    owner_reference,
)
from .network import NetworkCalculator, first_ip, host_address, last_ip
from .render import ConfigRenderer

DEFAULT_DNS = "127.0.0.1"
ALLOWED_IPS = "0.0.0.0/0"

WIREGUARD_CONTAINER = "wireguard"
DNS_CONTAINER = "dns"
CONFIG_VOLUME = "wireguard-config"
DNS_VOLUME = "unbound-config"
UNBOUND_CONF = "unbound.conf"

# Secret 키
KEY_CONFIG = "config"
KEY_PRIVATE = "private-key"
KEY_PUBLIC = "public-key"
KEY_PEER_CONFIG = "peer-config"
KEY_PEER_PUBLIC = "peer-public-key"


def encode_data(data: Dict[str, str]) -> Dict[str, str]:
    """Secret.data 형식 (base64)"""
    return {
        key: base64.b64encode(value.encode("utf-8")).decode("ascii")
        for key, value in data.items()
    }


def secret_value(secret: Dict[str, Any], key: str) -> Optional[str]:
    """Secret.data 값 디코딩 (없으면 None)"""
    value = (secret.get("data") or {}).get(key)
    if value is None:
        return None
    return base64.b64decode(value).decode("utf-8")


def image_tag(image: str) -> str:
    """이미지 태그 추출 (태그가 없으면 latest)"""
    repository = image.rsplit("/", 1)[-1]
    if "@" in repository:
        return repository.split("@", 1)[1].replace(":", "-")[:63]
    if ":" in repository:
        return repository.split(":", 1)[1]
    return "latest"


class ResourceFactory:
    """하위 리소스 매니페스트 생성기"""

    def __init__(self, wireguard_image: str, dns_image: str = DEFAULT_UNBOUND_IMAGE,
                 key_provider: Optional[KeyProvider] = None,
                 renderer: Optional[ConfigRenderer] = None,
                 calculator: Optional[NetworkCalculator] = None):
        if not wireguard_image:
            raise ConfigurationError("Unable to find WIREGUARD_IMAGE with the image")
        self.wireguard_image = wireguard_image
        self.dns_image = dns_image or DEFAULT_UNBOUND_IMAGE
        self.key_provider = key_provider or X25519KeyProvider()
        self.renderer = renderer or ConfigRenderer()
        self.calculator = calculator or NetworkCalculator()

    # --- 공통 ---

    def labels(self, kind: str, name: str) -> Dict[str, str]:
        return {
            "app.kubernetes.io/name": kind,
            "app.kubernetes.io/instance": name,
            "app.kubernetes.io/version": image_tag(self.wireguard_image),
            "app.kubernetes.io/part-of": "wireguard-operator",
            "app.kubernetes.io/created-by": "controller-manager",
        }

    def selector(self, kind: str, name: str) -> Dict[str, str]:
        return {
            "app.kubernetes.io/name": kind,
            "app.kubernetes.io/instance": name,
        }

    def _metadata(self, owner: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "name": name_of(owner),
            "namespace": namespace_of(owner),
            "labels": self.labels(owner["kind"], name_of(owner)),
            "ownerReferences": [owner_reference(owner)],
        }

    def _config_map(self, owner: Dict[str, Any], tunnel_cidr: str) -> Dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": self._metadata(owner),
            "data": {UNBOUND_CONF: self.renderer.unbound_config(tunnel_cidr)},
        }

    def _deployment(self, owner: Dict[str, Any], replicas: int, port: int,
                    external_dns, sidecars, affinity) -> Dict[str, Any]:
        name = name_of(owner)
        labels = self.labels(owner["kind"], name)

        containers = [{
            "name": WIREGUARD_CONTAINER,
            "image": self.wireguard_image,
            "imagePullPolicy": "IfNotPresent",
            # 터널 인터페이스 생성과 iptables 조작에 필요
            "securityContext": {
                "privileged": True,
                "capabilities": {"add": ["NET_ADMIN", "SYS_MODULE"]},
            },
            "ports": [{
                "name": WIREGUARD_CONTAINER,
                "containerPort": port,
                "protocol": "UDP",
            }],
            "volumeMounts": [{
                "name": CONFIG_VOLUME,
                "mountPath": "/etc/wireguard",
                "readOnly": True,
            }],
        }]
        volumes = [{
            "name": CONFIG_VOLUME,
            "secret": {
                "secretName": name,
                "items": [{"key": KEY_CONFIG, "path": "wg0.conf"}],
            },
        }]

        pod_spec: Dict[str, Any] = {
            "securityContext": {
                "sysctls": [{"name": "net.ipv4.ip_forward", "value": "1"}],
            },
        }

        if external_dns.enabled:
            containers.append({
                "name": DNS_CONTAINER,
                "image": external_dns.image or self.dns_image,
                "imagePullPolicy": "IfNotPresent",
                "ports": [{"name": "dns", "containerPort": 53, "protocol": "UDP"}],
                "volumeMounts": [{
                    "name": DNS_VOLUME,
                    "mountPath": "/opt/unbound/etc/unbound/unbound.conf",
                    "subPath": UNBOUND_CONF,
                }],
            })
            volumes.append({
                "name": DNS_VOLUME,
                "configMap": {"name": name},
            })
            pod_spec["dnsPolicy"] = "None"
            pod_spec["dnsConfig"] = {"nameservers": ["127.0.0.1"]}
        else:
            pod_spec["dnsPolicy"] = "Default"
            pod_spec["dnsConfig"] = {}

        # 사용자 사이드카는 선언 순서 그대로 뒤에 붙인다
        containers.extend(copy.deepcopy(sidecars))

        pod_spec["containers"] = containers
        pod_spec["volumes"] = volumes
        if affinity:
            pod_spec["affinity"] = copy.deepcopy(affinity)

        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": self._metadata(owner),
            "spec": {
                "replicas": replicas,
                "selector": {"matchLabels": self.selector(owner["kind"], name)},
                "template": {
                    "metadata": {"labels": labels},
                    "spec": pod_spec,
                },
            },
        }

    def _service(self, owner: Dict[str, Any], service_type: str, port: int,
                 annotations: Dict[str, str]) -> Dict[str, Any]:
        metadata = self._metadata(owner)
        if annotations:
            metadata["annotations"] = dict(annotations)
        return {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": metadata,
            "spec": {
                "type": service_type,
                "selector": self.selector(owner["kind"], name_of(owner)),
                "ports": [{
                    "name": WIREGUARD_CONTAINER,
                    "port": port,
                    "targetPort": port,
                    "protocol": "UDP",
                }],
            },
        }

    # --- Wireguard (서버) ---

    def server_secret(self, server: Dict[str, Any], endpoint: str) -> Dict[str, Any]:
        """서버 키 페어와 설정

        peerPublicKey가 지정되면 기본 피어의 개인키와 클라이언트 설정은 만들지 않는다.
        """
        spec = ServerSpec.from_dict(server.get("spec"))
        server_keys = self.key_provider.generate()
        peer_address = last_ip(spec.address)

        data = {
            KEY_PRIVATE: server_keys.private_key,
            KEY_PUBLIC: server_keys.public_key,
        }

        if spec.peer_public_key:
            peer_public_key = spec.peer_public_key
        else:
            peer_keys = self.key_provider.generate()
            peer_public_key = peer_keys.public_key
            data[KEY_PEER_CONFIG] = self.renderer.client_config(
                address=peer_address,
                private_key=peer_keys.private_key,
                dns=spec.external_dns.address or DEFAULT_DNS,
                peer_public_key=server_keys.public_key,
                endpoint=endpoint,
                allowed_ips=ALLOWED_IPS,
            )

        data[KEY_PEER_PUBLIC] = peer_public_key
        data[KEY_CONFIG] = self.renderer.server_config(
            address=first_ip(spec.address),
            listen_port=spec.listen_port,
            private_key=server_keys.private_key,
            peer_public_key=peer_public_key,
            peer_allowed_ips=peer_address,
            post_up=self.calculator.server_rules(peer_address, spec.drop_connections_to),
        )

        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": self._metadata(server),
            "data": encode_data(data),
        }

    def server_config_map(self, server: Dict[str, Any]) -> Dict[str, Any]:
        spec = ServerSpec.from_dict(server.get("spec"))
        return self._config_map(server, spec.address)

    def server_deployment(self, server: Dict[str, Any]) -> Dict[str, Any]:
        spec = ServerSpec.from_dict(server.get("spec"))
        return self._deployment(
            server, spec.replicas, spec.listen_port,
            spec.external_dns, spec.sidecars, spec.affinity,
        )

    def server_service(self, server: Dict[str, Any]) -> Dict[str, Any]:
        spec = ServerSpec.from_dict(server.get("spec"))
        return self._service(server, spec.service_type, spec.listen_port, spec.service_annotations)

    # --- WireguardPeer ---

    def peer_secret(self, peer: Dict[str, Any], server: Dict[str, Any],
                    endpoint: str) -> Dict[str, Any]:
        """피어 키 페어와 클라이언트 설정

        publicKey가 지정된 피어(BYOK)는 공개키만 저장하고 Deployment도 만들지 않는다.
        """
        spec = PeerSpec.from_dict(peer.get("spec"))
        if spec.public_key:
            data = {KEY_PUBLIC: spec.public_key}
        else:
            server_spec = ServerSpec.from_dict(server.get("spec"))
            server_public_key = (server.get("status") or {}).get("publicKey")
            if not server_public_key:
                raise ValueError(f"Wireguard {name_of(server)} has no public key yet")

            keys = self.key_provider.generate()
            source = f"{host_address(spec.address)}/32"
            data = {
                KEY_CONFIG: self.renderer.client_config(
                    address=spec.address,
                    private_key=keys.private_key,
                    dns=server_spec.external_dns.address or DEFAULT_DNS,
                    peer_public_key=server_public_key,
                    endpoint=endpoint,
                    allowed_ips=ALLOWED_IPS,
                    post_up=self.calculator.peer_rules(source, spec.drop_connections_to),
                ),
                KEY_PRIVATE: keys.private_key,
                KEY_PUBLIC: keys.public_key,
            }

        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": self._metadata(peer),
            "data": encode_data(data),
        }

    def peer_config_map(self, peer: Dict[str, Any]) -> Dict[str, Any]:
        spec = PeerSpec.from_dict(peer.get("spec"))
        return self._config_map(peer, f"{host_address(spec.address)}/32")

    def peer_deployment(self, peer: Dict[str, Any]) -> Dict[str, Any]:
        """피어 터널 Deployment (BYOK 피어는 마운트할 config가 없으므로 만들 수 없음)"""
        spec = PeerSpec.from_dict(peer.get("spec"))
        if spec.public_key:
            raise ValueError(f"WireguardPeer {name_of(peer)} uses its own key and has no config to run")
        return self._deployment(
            peer, spec.replicas, DEFAULT_LISTEN_PORT,
            spec.external_dns, spec.sidecars, spec.affinity,
        )

    def peer_service(self, peer: Dict[str, Any]) -> Dict[str, Any]:
        return self._service(peer, "ClusterIP", DEFAULT_LISTEN_PORT, {})

