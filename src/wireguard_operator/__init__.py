"""
WireGuard Operator
쿠버네티스 위에서 WireGuard 서버와 피어를 선언적으로 프로비저닝하는 컨트롤러

Features:
- Wireguard / WireguardPeer 리소스 조정 (reconcile)
- 키 페어 자동 생성 및 BYOK(공개키 지정) 모드
- 서브넷 계산 및 iptables 규칙 생성
- unbound DNS 사이드카 연결
- idempotent 및 낙관적 동시성 지원
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
