"""
설정 관리 모듈
YAML/JSON 기반 설정 파일 관리, 환경변수 오버라이드 및 기본값 제공
"""

import os
import yaml
import json
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict

from .errors import ConfigurationError


DEFAULT_UNBOUND_IMAGE = "docker.io/klutchell/unbound:v1.17.1"


@dataclass
class OperatorSettings:
    """오퍼레이터 동작 설정"""
    wireguard_image: str = ""
    namespace: str = ""  # 비어 있으면 전체 네임스페이스 감시
    requeue_after: int = 60
    workers: int = 4
    resync_period: int = 300
    retry_delay: int = 60


@dataclass
class DNSSettings:
    """DNS 사이드카 설정"""
    image: str = DEFAULT_UNBOUND_IMAGE


@dataclass
class LoggingSettings:
    """로깅 설정"""
    log_dir: str = ""
    log_level: str = "INFO"
    debug: bool = False


class OperatorConfig:
    """전체 설정 관리 클래스"""

    DEFAULT_CONFIG_PATHS = [
        "/etc/wireguard-operator/config.yaml",
        "~/.wireguard-operator/config.yaml",
        "./config/config.yaml",
        "./config.yaml",
    ]

    # 환경변수 -> (섹션, 키, 타입)
    ENV_OVERRIDES = {
        "WIREGUARD_IMAGE": ("operator", "wireguard_image", str),
        "WATCH_NAMESPACE": ("operator", "namespace", str),
        "REQUEUE_AFTER": ("operator", "requeue_after", int),
        "UNBOUND_IMAGE": ("dns", "image", str),
        "LOG_LEVEL": ("logging", "log_level", str),
    }

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        self.config_path = config_path
        self.operator = OperatorSettings()
        self.dns = DNSSettings()
        self.logging = LoggingSettings()

        if config_path:
            self.load(config_path)
        else:
            self._load_from_default_paths()

        self._apply_env(os.environ if environ is None else environ)

    def _load_from_default_paths(self):
        """기본 경로에서 설정 파일 로드"""
        for path in self.DEFAULT_CONFIG_PATHS:
            expanded_path = os.path.expanduser(path)
            if os.path.exists(expanded_path):
                self.load(expanded_path)
                return

    def load(self, path: str):
        """설정 파일 로드"""
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return

        with open(path, 'r', encoding='utf-8') as f:
            if path.endswith('.json'):
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}

        self._update_from_dict(data)
        self.config_path = path

    def _sections(self) -> Dict[str, Any]:
        return {
            'operator': self.operator,
            'dns': self.dns,
            'logging': self.logging,
        }

    def _update_from_dict(self, data: Dict[str, Any]):
        """딕셔너리에서 설정 업데이트"""
        for section_name, section in self._sections().items():
            for key, value in (data.get(section_name) or {}).items():
                if hasattr(section, key):
                    setattr(section, key, value)

    def _apply_env(self, environ):
        """환경변수 오버라이드 적용"""
        sections = self._sections()
        for env_name, (section_name, key, cast) in self.ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value is None or value == "":
                continue
            try:
                setattr(sections[section_name], key, cast(value))
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_name}: {value!r}") from e

    def validate(self):
        """필수 설정 확인 (시작 시 한 번 호출)"""
        if not self.operator.wireguard_image:
            raise ConfigurationError(
                "Unable to find WIREGUARD_IMAGE: operator.wireguard_image must be set"
            )
        if self.operator.requeue_after <= 0:
            raise ConfigurationError("operator.requeue_after must be positive")
        if self.operator.workers <= 0:
            raise ConfigurationError("operator.workers must be positive")

    def save(self, path: Optional[str] = None):
        """설정 파일 저장"""
        save_path = path or self.config_path or self.DEFAULT_CONFIG_PATHS[0]
        save_path = os.path.expanduser(save_path)

        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        data = self.to_dict()

        with open(save_path, 'w', encoding='utf-8') as f:
            if save_path.endswith('.json'):
                json.dump(data, f, indent=2)
            else:
                yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {name: asdict(section) for name, section in self._sections().items()}

    def create_sample(self, output_path: str):
        """샘플 설정 파일 생성"""
        template = """# WireGuard Operator Configuration File
# 이 파일을 복사하여 config.yaml로 사용하세요
# 모든 값은 환경변수로 덮어쓸 수 있습니다 (WIREGUARD_IMAGE, WATCH_NAMESPACE, ...)

# 오퍼레이터 설정
operator:
  wireguard_image: "docker.io/linuxserver/wireguard:1.0.20210914"  # 필수
  namespace: ""  # 비워두면 전체 네임스페이스 감시
  requeue_after: 60  # 하위 리소스 생성 후 재확인 간격 (초)
  workers: 4  # 동기 핸들러 스레드 수
  resync_period: 300  # 감시 재연결(전체 목록 재수신) 주기 (초)
  retry_delay: 60  # 실패 시 재시도 대기 (초)

# DNS 사이드카
dns:
  image: "docker.io/klutchell/unbound:v1.17.1"

# 로깅 설정
logging:
  log_dir: ""  # 비워두면 콘솔만 사용
  log_level: "INFO"  # DEBUG, INFO, WARNING, ERROR
  debug: false
"""

        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(template)
