"""
WireGuard 키 생성 모듈
Curve25519 키 페어 생성을 KeyProvider 뒤로 격리
"""

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey


@dataclass(frozen=True)
class KeyPair:
    """base64 인코딩된 WireGuard 키 페어"""
    private_key: str
    public_key: str


class KeyProvider(ABC):
    """키 생성기 인터페이스 (테스트에서는 고정 키 사용)"""

    @abstractmethod
    def generate(self) -> KeyPair:
        """새 키 페어 생성"""


class X25519KeyProvider(KeyProvider):
    """cryptography 기반 Curve25519 키 생성기"""

    def generate(self) -> KeyPair:
        private_key = X25519PrivateKey.generate()

        private_bytes = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )

        private_b64 = base64.b64encode(private_bytes).decode("ascii")
        return KeyPair(private_key=private_b64, public_key=derive_public_key(private_b64))


def derive_public_key(private_key_b64: str) -> str:
    """개인키에서 공개키 계산"""
    private_bytes = base64.b64decode(private_key_b64)
    private_key = X25519PrivateKey.from_private_bytes(private_bytes)
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return base64.b64encode(public_bytes).decode("ascii")


def is_valid_key(key: str) -> bool:
    """32바이트 base64 키인지 확인"""
    try:
        return len(base64.b64decode(key, validate=True)) == 32
    except (ValueError, TypeError):
        return False
