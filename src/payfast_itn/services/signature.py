"""PayFast MD5 서명 생성/검증

ITN 검증 시 서명 문자열은 수신한 필드 순서를 그대로 유지해야 한다.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, quote_plus

logger = logging.getLogger(__name__)

# encodeURIComponent가 인코딩하지 않는 문자 (영숫자 제외)
_UNRESERVED = "-_.!~*'()"

Pair = Tuple[str, str]


class SignatureCheck(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    SKIPPED = "skipped"  # 패스프레이즈 미설정


def parse_itn_body(raw: str) -> List[Pair]:
    """form-urlencoded 본문을 순서를 보존한 (key, value) 목록으로 변환"""

    return parse_qsl(raw or "", keep_blank_values=True)


def encode_rfc1738(value: str) -> str:
    """공백은 '+', 퍼센트 인코딩은 대문자 16진수"""

    return quote_plus(value, safe=_UNRESERVED)


def build_signature_string(pairs: Iterable[Pair], passphrase: Optional[str] = None) -> str:
    """signature 키와 빈 값을 제외한 k=v 연결 문자열 (+ passphrase)"""

    parts = [
        f"{key}={encode_rfc1738(value)}"
        for key, value in pairs
        if key != "signature" and value != ""
    ]
    payload = "&".join(parts)
    if passphrase:
        payload = f"{payload}&passphrase={encode_rfc1738(passphrase)}"
    return payload


def compute_signature(pairs: Iterable[Pair], passphrase: Optional[str] = None) -> str:
    return hashlib.md5(build_signature_string(pairs, passphrase).encode("utf-8")).hexdigest()


def verify_signature(pairs: Sequence[Pair], signature: Optional[str], passphrase: Optional[str]) -> bool:
    """수신 서명과 계산 서명 비교 (대소문자 무시). 어떤 경우에도 예외를 던지지 않는다."""

    if not signature:
        return False

    try:
        expected = compute_signature(pairs, passphrase)
        if hmac.compare_digest(expected.lower(), signature.strip().lower()):
            return True

        signature_string = build_signature_string(pairs, passphrase)
        if passphrase:
            signature_string = signature_string.replace(encode_rfc1738(passphrase), "REDACTED")
        logger.error(
            "[PAYFAST] signature mismatch provided=%s computed=%s string=%s",
            signature,
            expected,
            signature_string,
        )
        return False
    except Exception as e:
        logger.error("[PAYFAST] signature verification error: %s", e)
        return False


def check_signature(pairs: Sequence[Pair], signature: Optional[str], passphrase: Optional[str]) -> SignatureCheck:
    """패스프레이즈가 없으면 검증을 건너뛴다"""

    if not passphrase:
        return SignatureCheck.SKIPPED
    if verify_signature(pairs, signature, passphrase):
        return SignatureCheck.VALID
    return SignatureCheck.INVALID


def checkout_pairs(fields: Mapping[str, Any]) -> List[Pair]:
    """결제 요청 필드를 서명용 (key, value) 목록으로 정리 (None/빈 값 제외, 앞뒤 공백 제거)"""

    pairs: List[Pair] = []
    for key, value in fields.items():
        if value is None:
            continue
        text = str(value).strip()
        if text:
            pairs.append((key, text))
    return pairs


def sign_checkout(fields: Mapping[str, Any], passphrase: Optional[str] = None) -> str:
    """PayFast 결제 페이지로 보낼 필드의 서명"""

    cleaned = (passphrase or "").strip()
    return compute_signature(checkout_pairs(fields), cleaned or None)
