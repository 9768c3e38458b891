"""
설정 렌더링 테스트
"""

from wireguard_operator.render import ConfigRenderer


def test_client_config_without_rules():
    """PostUp 규칙이 없는 클라이언트 설정"""
    config = ConfigRenderer().client_config(
        address="10.8.0.2/24",
        private_key="PRIVATE",
        dns="127.0.0.1",
        peer_public_key="SERVER",
        endpoint="vpn.example.com:51820",
    )

    assert config == (
        "[Interface]\n"
        "Address = 10.8.0.2/32\n"
        "PrivateKey = PRIVATE\n"
        "DNS = 127.0.0.1\n"
        "\n"
        "[Peer]\n"
        "PublicKey = SERVER\n"
        "Endpoint = vpn.example.com:51820\n"
        "AllowedIPs = 0.0.0.0/0\n"
    )


def test_client_config_with_rules():
    """PostUp 규칙은 DNS 뒤에 순서대로"""
    config = ConfigRenderer().client_config(
        address="10.8.0.2",
        private_key="PRIVATE",
        dns="1.1.1.1",
        peer_public_key="SERVER",
        endpoint="localhost:51820",
        post_up=["rule-a", "rule-b"],
    )

    assert "DNS = 1.1.1.1\nPostUp = rule-a\nPostUp = rule-b\n\n[Peer]\n" in config


def test_server_config():
    """서버 설정 테스트"""
    config = ConfigRenderer().server_config(
        address="192.168.254.253/32",
        listen_port=51820,
        private_key="PRIVATE",
        peer_public_key="PEER",
        peer_allowed_ips="192.168.254.254/32",
        post_up=["rule-a"],
    )

    assert config == (
        "[Interface]\n"
        "Address = 192.168.254.253/32\n"
        "ListenPort = 51820\n"
        "PrivateKey = PRIVATE\n"
        "PostUp = rule-a\n"
        "\n"
        "[Peer]\n"
        "PublicKey = PEER\n"
        "AllowedIPs = 192.168.254.254/32\n"
    )


def test_unbound_config_allows_tunnel():
    """DNS 설정에 터널 대역 허용"""
    config = ConfigRenderer().unbound_config("192.168.254.253/30")
    assert "access-control: 192.168.254.252/30 allow" in config
    assert "access-control: 127.0.0.0/8 allow" in config
    assert config.endswith("prefetch: yes\n")
