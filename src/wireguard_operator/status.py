"""
상태 조건(condition) 관리 모듈
type 기준 upsert, 순서 유지
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

CONDITION_AVAILABLE = "Available"
CONDITION_DEGRADED = "Degraded"

STATUS_TRUE = "True"
STATUS_FALSE = "False"
STATUS_UNKNOWN = "Unknown"

_VALID_STATUSES = (STATUS_TRUE, STATUS_FALSE, STATUS_UNKNOWN)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def find_condition(conditions: List[Dict], condition_type: str) -> Optional[Dict]:
    """type이 일치하는 조건 반환"""
    for condition in conditions:
        if condition.get("type") == condition_type:
            return condition
    return None


def set_condition(conditions: List[Dict], condition_type: str, status: str,
                  reason: str, message: str) -> bool:
    """조건 설정 (같은 type이 있으면 제자리 교체, 없으면 추가)

    lastTransitionTime은 status 값이 바뀔 때만 갱신한다.

    Returns:
        bool: 내용이 실제로 바뀌었는지 여부
    """
    if status not in _VALID_STATUSES:
        raise ValueError(f"Invalid condition status: {status}")

    existing = find_condition(conditions, condition_type)
    if existing is None:
        conditions.append({
            "type": condition_type,
            "status": status,
            "reason": reason,
            "message": message,
            "lastTransitionTime": _now(),
        })
        return True

    changed = (
        existing.get("status") != status
        or existing.get("reason") != reason
        or existing.get("message") != message
    )
    if existing.get("status") != status:
        existing["lastTransitionTime"] = _now()
    existing["status"] = status
    existing["reason"] = reason
    existing["message"] = message
    return changed

