"""PayFast ITN 서버 재검증 클라이언트"""
from __future__ import annotations

import asyncio
import logging

import httpx

from payfast_itn.core.interfaces import IPaymentValidator


logger = logging.getLogger(__name__)

VALID_RESPONSE = "VALID"


class PayFastValidationClient(IPaymentValidator):
    """수신한 ITN 원문을 PayFast validate 엔드포인트로 되돌려 보내 진위를 확인

    네트워크 오류나 비정상 응답은 모두 검증 실패(False)로 취급한다.
    """

    RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        validate_url: str,
        timeout: float = 3.0,
        *,
        max_retries: int = 0,
        backoff_factor: float = 0.5,
    ) -> None:
        if not validate_url or not validate_url.strip():
            raise ValueError("PayFast validate URL이 설정되지 않았습니다.")

        self.validate_url = validate_url.strip()
        self.timeout = timeout
        self.max_retries = max(0, int(max_retries))
        self.backoff_factor = max(0.0, float(backoff_factor))

    async def validate(self, raw_body: str) -> bool:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}

        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.validate_url, content=raw_body, headers=headers)
            except httpx.HTTPError as exc:
                logger.warning(
                    "[PAYFAST] validation network error: attempt=%s error=%s",
                    attempt + 1,
                    exc,
                )
                if attempt < self.max_retries:
                    await self._sleep_backoff(attempt)
                    continue
                return False

            if response.status_code in self.RETRYABLE_STATUS and attempt < self.max_retries:
                logger.warning(
                    "[PAYFAST] validation retry: status=%s attempt=%s",
                    response.status_code,
                    attempt + 1,
                )
                await self._sleep_backoff(attempt)
                continue

            if response.status_code >= 400:
                logger.error("[PAYFAST] validation request failed: status=%s", response.status_code)
                return False

            verdict = response.text.strip()
            if verdict != VALID_RESPONSE:
                logger.warning("[PAYFAST] validation rejected: response=%s", verdict[:100])
                return False
            return True

        return False

    async def _sleep_backoff(self, attempt: int) -> None:
        """재시도 전 지수 백오프 딜레이"""

        delay = self.backoff_factor * (2**attempt)
        if delay > 0:
            await asyncio.sleep(delay)
