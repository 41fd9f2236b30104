"""
结果分类器
将原始的连接/协议尝试结果映射为固定的语义结果 (Outcome)

优先使用 MQTT 原因码，仅在没有可识别原因码时回退到文本匹配。
paho-mqtt 对 3.1.1 和 5 都以 MQTT 5 风格的原因码上报 CONNACK/SUBACK 结果。
"""

import re
import ssl
from typing import Dict, List, Optional, Tuple

from .models import Outcome, RawAttempt, TransportError


# 原因码 < 0x80 表示成功（SUBACK 中为授予的 QoS）
SUCCESS_CODE_CEILING = 0x80

REASON_CODE_OUTCOMES: Dict[int, Outcome] = {
    0x80: Outcome.REJECTED_AUTH,        # 3.1.1 SUBACK failure
    0x85: Outcome.REJECTED_IDENTIFIER,  # Client identifier not valid
    0x86: Outcome.REJECTED_AUTH,        # Bad user name or password
    0x87: Outcome.REJECTED_AUTH,        # Not authorized
    0x8A: Outcome.REJECTED_AUTH,        # Banned
    0x8C: Outcome.REJECTED_AUTH,        # Bad authentication method
    0x88: Outcome.REJECTED_LIMIT,       # Server unavailable
    0x89: Outcome.REJECTED_LIMIT,       # Server busy
    0x8F: Outcome.REJECTED_LIMIT,       # Topic Filter invalid
    0x90: Outcome.REJECTED_LIMIT,       # Topic Name invalid
    0x95: Outcome.REJECTED_LIMIT,       # Packet too large
    0x97: Outcome.REJECTED_LIMIT,       # Quota exceeded
    0x99: Outcome.REJECTED_LIMIT,       # Payload format invalid
    0x9F: Outcome.REJECTED_LIMIT,       # Connection rate exceeded
}

REASON_TEXT_OUTCOMES: List[Tuple[re.Pattern, Outcome]] = [
    (re.compile(r"identifier (rejected|not valid)", re.IGNORECASE), Outcome.REJECTED_IDENTIFIER),
    (re.compile(r"not authori[sz]ed|bad user ?name or password|banned", re.IGNORECASE), Outcome.REJECTED_AUTH),
    (re.compile(r"server (unavailable|busy)|quota exceeded|too large|rate exceeded", re.IGNORECASE),
     Outcome.REJECTED_LIMIT),
]

# TLS 握手因协议版本不匹配而失败时的 OpenSSL 错误标识
TLS_VERSION_MISMATCH_MARKERS = (
    "UNSUPPORTED_PROTOCOL",
    "NO_PROTOCOLS_AVAILABLE",
    "TLSV1_ALERT_PROTOCOL_VERSION",
    "WRONG_VERSION_NUMBER",
    "VERSION_TOO_LOW",
    "VERSION_TOO_HIGH",
    "WRONG_SSL_VERSION",
    "UNSUPPORTED PROTOCOL VERSION",
)


def classify(attempt: RawAttempt) -> Outcome:
    """
    将原始尝试结果分类为语义结果

    Args:
        attempt: 原始尝试结果

    Returns:
        Outcome: 语义结果，无法识别时为 Outcome.UNKNOWN
    """
    if attempt.timed_out:
        return Outcome.TIMED_OUT

    if attempt.transport_error is TransportError.CLOSED:
        return Outcome.TRANSPORT_CLOSED
    if attempt.transport_error is not None:
        return Outcome.UNKNOWN

    if attempt.reason_code is None and not attempt.reason:
        return Outcome.ACCEPTED

    if attempt.reason_code is not None:
        if attempt.reason_code < SUCCESS_CODE_CEILING:
            return Outcome.ACCEPTED
        if attempt.reason_code in REASON_CODE_OUTCOMES:
            return REASON_CODE_OUTCOMES[attempt.reason_code]

    return classify_reason_text(attempt.reason)


def classify_reason_text(reason: Optional[str]) -> Outcome:
    """仅根据原因文本分类"""
    if not reason:
        return Outcome.UNKNOWN
    for pattern, outcome in REASON_TEXT_OUTCOMES:
        if pattern.search(reason):
            return outcome
    return Outcome.UNKNOWN


def is_version_mismatch(error: BaseException) -> bool:
    """
    判断 TLS 握手失败是否由协议版本不匹配导致

    本地 OpenSSL 不支持某个版本（例如 SSL3.0）同样视为版本不匹配。
    """
    if not isinstance(error, (ssl.SSLError, ValueError)):
        return False
    texts = [str(error)]
    reason = getattr(error, "reason", None)
    if reason:
        texts.append(str(reason))
    haystack = " ".join(texts).upper()
    return any(marker in haystack for marker in TLS_VERSION_MISMATCH_MARKERS)
