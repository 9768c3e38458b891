"""
네트워크 계산 모듈
서브넷 경계 계산 및 iptables PostUp 규칙 생성

생성된 규칙은 렌더링된 WireGuard 설정에 포함되어 wg-quick이 인터페이스를
올릴 때 실행된다. 이 모듈은 규칙 문자열만 만들고 직접 실행하지 않는다.
"""

import ipaddress
from typing import List

# wg-quick이 인터페이스 이름으로 치환하는 토큰
TUNNEL_INTERFACE = "%i"
EGRESS_INTERFACE = "eth0"


def _hosts(cidr: str):
    network = ipaddress.ip_network(cidr, strict=False)
    if network.num_addresses <= 2:
        # /31, /32 는 모든 주소가 호스트
        return network[0], network[-1]
    return network[1], network[-2]


def first_ip(cidr: str) -> str:
    """서브넷의 첫 번째 호스트 주소 (/32)

    >>> first_ip("192.168.254.253/30")
    '192.168.254.253/32'
    """
    first, _ = _hosts(cidr)
    return f"{first}/32"


def last_ip(cidr: str) -> str:
    """서브넷의 마지막 호스트 주소 (/32)

    >>> last_ip("192.168.1.1/24")
    '192.168.1.254/32'
    """
    _, last = _hosts(cidr)
    return f"{last}/32"


def host_address(address: str) -> str:
    """CIDR 표기를 제거한 호스트 주소"""
    return str(ipaddress.ip_interface(address).ip)


class NetworkCalculator:
    """방화벽 규칙 생성 클래스"""

    def __init__(self, egress_interface: str = EGRESS_INTERFACE):
        self.egress_interface = egress_interface

    def forward_rules(self) -> List[str]:
        """터널 인터페이스 양방향 포워딩 허용"""
        return [
            f"iptables --append FORWARD --in-interface {TUNNEL_INTERFACE} --jump ACCEPT",
            f"iptables --append FORWARD --out-interface {TUNNEL_INTERFACE} --jump ACCEPT",
        ]

    def masquerade_rule(self, source: str) -> str:
        """source 주소에서 나가는 트래픽 NAT"""
        return (
            f"iptables --table nat --append POSTROUTING --source {source} "
            f"--out-interface {self.egress_interface} --jump MASQUERADE"
        )

    def drop_rules(self, source: str, destinations: List[str]) -> List[str]:
        """차단 대상마다 FORWARD DROP 규칙 (선언 순서 유지)"""
        rules = []
        for destination in destinations:
            # 잘못된 CIDR은 렌더링 전에 실패시킨다
            ipaddress.ip_network(destination, strict=False)
            rules.append(
                f"iptables --insert FORWARD --source {source} --destination {destination} --jump DROP"
            )
        return rules

    def server_rules(self, peer_address: str, drop_connections_to: List[str]) -> List[str]:
        """서버 설정용 전체 규칙: 포워딩 허용, NAT, 차단 목록"""
        rules = self.forward_rules()
        rules.append(self.masquerade_rule(peer_address))
        rules.extend(self.drop_rules(peer_address, drop_connections_to))
        return rules

    def peer_rules(self, peer_address: str, drop_connections_to: List[str]) -> List[str]:
        """피어 설정용 규칙: 차단 목록만"""
        return self.drop_rules(peer_address, drop_connections_to)
