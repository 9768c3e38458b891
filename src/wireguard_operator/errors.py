"""
오퍼레이터 예외 정의

조정 루프는 예외 종류에 따라 다르게 반응한다:
- NotFoundError: 조회 대상이 사라짐, 성공으로 간주
- ConflictError: resourceVersion 불일치, 새로 조회 후 재시도
- ConfigurationError: 필수 설정 누락, 시작 시 중단
- ChildMutationError: 하위 리소스 생성/패치 실패, 상태 기록 후 재시도
"""

from typing import Optional


class OperatorError(Exception):
    """오퍼레이터 기본 예외"""


class PlatformError(OperatorError):
    """쿠버네티스 API 호출 실패"""
    
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(PlatformError):
    """오브젝트가 존재하지 않음 (404)"""
    
    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found", status=404)
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ConflictError(PlatformError):
    """낙관적 동시성 충돌 (409)"""
    
    def __init__(self, kind: str, namespace: str, name: str, detail: str = ""):
        message = f"{kind} {namespace}/{name} has been modified"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, status=409)
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ConfigurationError(OperatorError):
    """필수 설정 값 누락"""


class ChildMutationError(OperatorError):
    """하위 리소스 생성 또는 패치 실패"""
    
    def __init__(self, kind: str, name: str, cause: Exception):
        super().__init__(f"Failed to reconcile {kind} {name}: {cause}")
        self.kind = kind
        self.name = name
        self.cause = cause
