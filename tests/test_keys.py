"""
키 생성 모듈 테스트
"""

from wireguard_operator.keys import X25519KeyProvider, derive_public_key, is_valid_key


def test_generated_keys_are_valid():
    """생성된 키는 32바이트 base64"""
    pair = X25519KeyProvider().generate()
    assert is_valid_key(pair.private_key)
    assert is_valid_key(pair.public_key)
    assert pair.private_key != pair.public_key
    assert derive_public_key(pair.private_key) == pair.public_key


def test_generated_keys_are_unique():
    """매번 새 키 생성"""
    provider = X25519KeyProvider()
    assert provider.generate() != provider.generate()


def test_is_valid_key():
    """잘못된 키 테스트"""
    assert not is_valid_key("")
    assert not is_valid_key("not base64!")
    assert not is_valid_key("c2hvcnQ=")
