"""
CLI 메인 인터페이스
Click 및 Rich 기반 오퍼레이터 실행/설정 도구
"""

import sys
import click
import yaml
from typing import Any, Dict, List, Optional
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from . import __version__
from .config import OperatorConfig
from .controller import Controller, build_settings
from .errors import ConfigurationError
from .factory import KEY_PUBLIC, ResourceFactory, secret_value
from .k8s import KubernetesPlatform, load_kube_config
from .logger import get_logger, init_logger
from .models import KIND_PEER, KIND_WIREGUARD, PeerSpec, ServerSpec, status_of
from .reconciler import WireguardPeerReconciler, WireguardReconciler, resolve_endpoint_address

console = Console()


def build_controller(cfg: OperatorConfig, platform) -> Controller:
    """설정으로부터 팩토리, 조정 루프, 컨트롤러 구성"""
    factory = ResourceFactory(cfg.operator.wireguard_image, dns_image=cfg.dns.image)
    reconcilers = {
        KIND_WIREGUARD: WireguardReconciler(platform, factory, cfg.operator.requeue_after),
        KIND_PEER: WireguardPeerReconciler(platform, factory, cfg.operator.requeue_after),
    }
    return Controller(
        platform,
        reconcilers,
        namespace=cfg.operator.namespace,
        retry_delay=cfg.operator.retry_delay,
    )


@click.group()
@click.version_option(version=__version__)
def cli():
    """WireGuard Operator

    Wireguard / WireguardPeer 커스텀 리소스를 감시하고 VPN 서버와 피어를 배포합니다.
    """
    pass


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--debug', is_flag=True, help='디버그 모드')
def run(config, debug):
    """오퍼레이터 실행"""
    cfg = OperatorConfig(config)

    init_logger(cfg.logging.log_dir or None, cfg.logging.log_level, debug or cfg.logging.debug)
    logger = get_logger()

    try:
        cfg.validate()
    except ConfigurationError as e:
        console.print(f"[red]✗ 설정 오류: {e}[/red]")
        logger.error(str(e))
        sys.exit(1)

    console.print(Panel.fit(
        "[bold cyan]WireGuard Operator[/bold cyan]\n"
        f"이미지: {cfg.operator.wireguard_image}\n"
        f"네임스페이스: {cfg.operator.namespace or '전체'}",
        border_style="cyan"
    ))

    log_files = logger.get_log_files()
    if log_files["main_log"]:
        console.print(f"[bold]로그 파일:[/bold]")
        console.print(f"  Main: {log_files['main_log']}")
        console.print(f"  Error: {log_files['error_log']}")

    logger.info("=== Operator started ===")
    load_kube_config()
    controller = build_controller(cfg, KubernetesPlatform())
    controller.run(build_settings(cfg.operator.resync_period, cfg.operator.workers))
    logger.info("=== Operator stopped ===")


@cli.command()
@click.argument('output', type=click.Path(), default='./config.yaml')
def init(output):
    """샘플 설정 파일 생성"""
    cfg = OperatorConfig(environ={})
    cfg.create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print(f"[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  wireguard-operator run --config {output}[/cyan]")


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
def validate(config):
    """설정 파일 유효성 검사"""
    try:
        cfg = OperatorConfig(config)
    except (ConfigurationError, yaml.YAMLError) as e:
        console.print(f"[red]✗ 설정 파일 오류: {e}[/red]")
        sys.exit(1)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")

    table.add_row("설정 파일", cfg.config_path or "[yellow]없음 (기본값)[/yellow]")
    table.add_row("WireGuard 이미지", cfg.operator.wireguard_image or "[red]미설정[/red]")
    table.add_row("DNS 이미지", cfg.dns.image)
    table.add_row("네임스페이스", cfg.operator.namespace or "전체")
    table.add_row("재확인 간격", f"{cfg.operator.requeue_after}초")
    table.add_row("워커 수", str(cfg.operator.workers))
    table.add_row("로그 레벨", cfg.logging.log_level)

    console.print(table)

    try:
        cfg.validate()
    except ConfigurationError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)
    console.print("[green]✓ 설정 파일이 유효합니다.[/green]")


def _load_resource(path: str) -> Dict[str, Any]:
    """렌더링용 리소스 YAML 로드 (클러스터가 채우는 메타데이터 보정)"""
    with open(path, 'r', encoding='utf-8') as f:
        resource = yaml.safe_load(f) or {}
    if not isinstance(resource, dict) or "kind" not in resource:
        raise click.BadParameter(f"{path} is not a Kubernetes object")
    metadata = resource.setdefault("metadata", {})
    if not metadata.get("name"):
        raise click.BadParameter(f"{path} has no metadata.name")
    metadata.setdefault("namespace", "default")
    metadata.setdefault("uid", "dry-run")
    return resource


def render_manifests(factory: ResourceFactory, resource: Dict[str, Any],
                     server: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """리소스 하나에 대한 하위 리소스 매니페스트 목록"""
    kind = resource["kind"]
    if kind == KIND_WIREGUARD:
        spec = ServerSpec.from_dict(resource.get("spec"))
        endpoint = f"{resolve_endpoint_address(spec, None)}:{spec.listen_port}"
        return [
            factory.server_secret(resource, endpoint),
            factory.server_config_map(resource),
            factory.server_deployment(resource),
            factory.server_service(resource),
        ]

    if kind == KIND_PEER:
        if server is None:
            raise click.UsageError("WireguardPeer requires --server")
        status = status_of(server)
        if not status.get("publicKey"):
            # 서버가 아직 배포되지 않은 경우 서버 Secret을 만들어 공개키를 얻는다
            server_secret = render_manifests(factory, server)[0]
            status["publicKey"] = secret_value(server_secret, KEY_PUBLIC)
        server_spec = ServerSpec.from_dict(server.get("spec"))
        endpoint = status.get("endpoint") or (
            f"{resolve_endpoint_address(server_spec, None)}:{server_spec.listen_port}"
        )
        secret = factory.peer_secret(resource, server, endpoint)
        if PeerSpec.from_dict(resource.get("spec")).public_key:
            return [secret]
        return [
            secret,
            factory.peer_config_map(resource),
            factory.peer_deployment(resource),
            factory.peer_service(resource),
        ]

    raise click.BadParameter(f"Unsupported kind: {kind}")


@cli.command()
@click.argument('resource_file', type=click.Path(exists=True))
@click.option('--server', 'server_file', type=click.Path(exists=True),
              help='피어가 참조하는 Wireguard 리소스 파일')
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--image', help='WireGuard 이미지 (설정값 대신 사용)')
def render(resource_file, server_file, config, image):
    """리소스가 만들 하위 매니페스트 출력 (클러스터 변경 없음)"""
    cfg = OperatorConfig(config)
    if image:
        cfg.operator.wireguard_image = image

    try:
        factory = ResourceFactory(cfg.operator.wireguard_image, dns_image=cfg.dns.image)
        resource = _load_resource(resource_file)
        server = _load_resource(server_file) if server_file else None
        manifests = render_manifests(factory, resource, server)
    except (ConfigurationError, TypeError, ValueError) as e:
        console.print(f"[red]✗ 렌더링 실패: {e}[/red]")
        sys.exit(1)

    output = yaml.safe_dump_all(manifests, default_flow_style=False, sort_keys=False)
    console.print(Syntax(output, "yaml"))


def main():
    """CLI 진입점"""
    cli()


if __name__ == '__main__':
    main()
