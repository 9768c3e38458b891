"""
설정 렌더링 모듈
Jinja2 템플릿으로 WireGuard 서버/클라이언트 설정과 unbound 설정 생성
"""

import ipaddress
from typing import List
from jinja2 import Template

from .network import host_address


CLIENT_TEMPLATE = """[Interface]
Address = {{ address }}/32
PrivateKey = {{ private_key }}
DNS = {{ dns }}
{% for rule in post_up -%}
PostUp = {{ rule }}
{% endfor %}
[Peer]
PublicKey = {{ peer_public_key }}
Endpoint = {{ endpoint }}
AllowedIPs = {{ allowed_ips }}
"""

SERVER_TEMPLATE = """[Interface]
Address = {{ address }}
ListenPort = {{ listen_port }}
PrivateKey = {{ private_key }}
{% for rule in post_up -%}
PostUp = {{ rule }}
{% endfor %}
[Peer]
PublicKey = {{ peer_public_key }}
AllowedIPs = {{ peer_allowed_ips }}
"""

UNBOUND_TEMPLATE = """server:
  interface: 0.0.0.0
  port: 53
  do-ip4: yes
  do-ip6: no
  do-udp: yes
  do-tcp: yes
  access-control: 127.0.0.0/8 allow
{%- for network in allowed_networks %}
  access-control: {{ network }} allow
{%- endfor %}
  hide-identity: yes
  hide-version: yes
  harden-glue: yes
  harden-dnssec-stripped: yes
  qname-minimisation: yes
  prefetch: yes
"""


class ConfigRenderer:
    """설정 텍스트 렌더러"""

    def __init__(self):
        self._client = Template(CLIENT_TEMPLATE, keep_trailing_newline=True)
        self._server = Template(SERVER_TEMPLATE, keep_trailing_newline=True)
        self._unbound = Template(UNBOUND_TEMPLATE, keep_trailing_newline=True)

    def client_config(self, address: str, private_key: str, dns: str,
                      peer_public_key: str, endpoint: str,
                      allowed_ips: str = "0.0.0.0/0",
                      post_up: List[str] = None) -> str:
        """피어(클라이언트) 설정"""
        return self._client.render(
            address=host_address(address),
            private_key=private_key,
            dns=dns,
            peer_public_key=peer_public_key,
            endpoint=endpoint,
            allowed_ips=allowed_ips,
            post_up=post_up or [],
        )

    def server_config(self, address: str, listen_port: int, private_key: str,
                      peer_public_key: str, peer_allowed_ips: str,
                      post_up: List[str] = None) -> str:
        """서버 설정 (기본 피어 포함)"""
        return self._server.render(
            address=address,
            listen_port=listen_port,
            private_key=private_key,
            peer_public_key=peer_public_key,
            peer_allowed_ips=peer_allowed_ips,
            post_up=post_up or [],
        )

    def unbound_config(self, tunnel_cidr: str) -> str:
        """DNS 사이드카 설정 (터널 대역에서의 질의 허용)"""
        network = ipaddress.ip_network(tunnel_cidr, strict=False)
        return self._unbound.render(allowed_networks=[str(network)])
