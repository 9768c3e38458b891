"""
CLI 테스트
"""

import yaml
from click.testing import CliRunner

from wireguard_operator.cli import build_controller, cli
from wireguard_operator.config import OperatorConfig
from wireguard_operator.models import KIND_PEER, KIND_WIREGUARD

from conftest import key_pair, wireguard, wireguard_peer

ENV = {"WIREGUARD_IMAGE": "", "WATCH_NAMESPACE": "", "REQUEUE_AFTER": ""}


def _write(path, obj):
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(obj, f)


def test_init_and_validate():
    """샘플 설정 생성 후 검증"""
    runner = CliRunner()
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["init", "sample.yaml"], env=ENV)
        assert result.exit_code == 0

        result = runner.invoke(cli, ["validate", "--config", "sample.yaml"], env=ENV)
        assert result.exit_code == 0
        assert "linuxserver/wireguard" in result.output


def test_validate_missing_image():
    """이미지가 없으면 종료 코드 1"""
    runner = CliRunner()
    with runner.isolated_filesystem():
        _write("config.yaml", {"operator": {"namespace": "vpn"}})
        result = runner.invoke(cli, ["validate", "--config", "config.yaml"], env=ENV)
        assert result.exit_code == 1
        assert "WIREGUARD_IMAGE" in result.output


def test_render_server_and_peer():
    """서버와 피어 매니페스트 렌더링"""
    runner = CliRunner()
    with runner.isolated_filesystem():
        _write("server.yaml", wireguard("vpn", endpointAddress="vpn.example.com"))
        _write("peer.yaml", wireguard_peer("peer", wireguardRef="vpn"))

        result = runner.invoke(cli, ["render", "server.yaml", "--image", "example/wireguard:1"], env=ENV)
        assert result.exit_code == 0
        assert "kind: Deployment" in result.output
        assert "example/wireguard:1" in result.output

        result = runner.invoke(cli, ["render", "peer.yaml", "--server", "server.yaml",
                                     "--image", "example/wireguard:1"], env=ENV)
        assert result.exit_code == 0
        assert "type: ClusterIP" in result.output


def test_render_peer_requires_server():
    """피어 렌더링에는 --server 필요"""
    runner = CliRunner()
    with runner.isolated_filesystem():
        _write("peer.yaml", wireguard_peer("peer", wireguardRef="vpn"))
        result = runner.invoke(cli, ["render", "peer.yaml", "--image", "example/wireguard:1"], env=ENV)
        assert result.exit_code != 0


def test_render_own_key_peer():
    """BYOK 피어는 Secret만 렌더링"""
    runner = CliRunner()
    with runner.isolated_filesystem():
        _write("server.yaml", wireguard("vpn"))
        _write("peer.yaml", wireguard_peer("peer", wireguardRef="vpn", publicKey=key_pair(40).public_key))

        result = runner.invoke(cli, ["render", "peer.yaml", "--server", "server.yaml",
                                     "--image", "example/wireguard:1"], env=ENV)
        assert result.exit_code == 0
        assert "kind: Secret" in result.output
        assert "kind: Deployment" not in result.output


def test_build_controller(platform):
    """설정값이 컨트롤러와 조정 루프에 전달됨"""
    cfg = OperatorConfig("/nonexistent/config.yaml", environ={})
    cfg.operator.wireguard_image = "example/wireguard:1"
    cfg.operator.namespace = "vpn"
    cfg.operator.retry_delay = 15

    controller = build_controller(cfg, platform)

    assert controller.namespace == "vpn"
    assert controller.retry_delay == 15
    assert set(controller.reconcilers) == {KIND_WIREGUARD, KIND_PEER}
