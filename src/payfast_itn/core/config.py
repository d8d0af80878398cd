"""
애플리케이션 설정 관리
"""
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import validator
from pydantic_settings import BaseSettings


_FILE_PATH = Path(__file__).resolve()

# PayFast 공개 ITN 발신 대역 (197.97.145.144/28) + 샌드박스 호스트
DEFAULT_PAYFAST_IPS = ",".join(
    [f"197.97.145.{octet}" for octet in range(144, 160)] + ["41.74.179.194"]
)

PAYFAST_HOSTS = {
    "sandbox": "https://sandbox.payfast.co.za",
    "production": "https://www.payfast.co.za",
}


def _collect_env_files(file_path: Path) -> tuple[Path, ...]:
    """환경 파일 후보를 가까운 디렉터리부터 수집"""

    collected: list[Path] = []
    seen: set[Path] = set()

    for directory in file_path.parents:
        for name in (".env", ".env.local"):
            candidate = directory / name
            if candidate.exists() and candidate not in seen:
                collected.append(candidate)
                seen.add(candidate)

    return tuple(collected)


_ENV_FILES = _collect_env_files(_FILE_PATH)


def _load_dotenv_files() -> None:
    """프로젝트 전체에서 활용할 .env 파일들을 순차적으로 로드"""

    for dotenv_path in _ENV_FILES:
        load_dotenv(dotenv_path, override=False)


_load_dotenv_files()


class Settings(BaseSettings):
    """애플리케이션 설정"""

    # 서버 설정
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False

    # Supabase 설정 (쓰기 작업은 모두 service role 키로 수행)
    SUPABASE_URL: str
    SUPABASE_SERVICE_ROLE_KEY: str
    SUPABASE_ANON_KEY: Optional[str] = None

    # 로깅 설정
    LOG_LEVEL: str = "INFO"

    # PayFast 설정
    PAYFAST_MODE: str = "sandbox"
    PAYFAST_MERCHANT_ID: str = ""
    PAYFAST_MERCHANT_KEY: str = ""
    PAYFAST_PASSPHRASE: str = ""
    PAYFAST_TIER_NAMING: str = "aligned"
    PAYFAST_VALIDATE_TIMEOUT: float = 3.0
    PAYFAST_TRUSTED_IPS: str = DEFAULT_PAYFAST_IPS

    # 결제 페이지 return/cancel/notify URL 기준 주소
    BASE_URL: str = "https://edudashpro.org.za"
    SUPPORT_EMAIL: str = "support@edudashpro.org.za"

    @validator('SUPABASE_URL')
    def validate_supabase_url(cls, v):
        if not v:
            raise ValueError('SUPABASE_URL은 필수입니다')
        return v

    @validator('SUPABASE_SERVICE_ROLE_KEY')
    def validate_service_role_key(cls, v):
        if not v:
            raise ValueError('SUPABASE_SERVICE_ROLE_KEY는 필수입니다')
        return v

    @validator('PAYFAST_MODE')
    def validate_payfast_mode(cls, v):
        mode = (v or "").strip().lower()
        if mode not in PAYFAST_HOSTS:
            raise ValueError('PAYFAST_MODE는 sandbox 또는 production 이어야 합니다')
        return mode

    @validator('PAYFAST_TIER_NAMING')
    def validate_tier_naming(cls, v):
        naming = (v or "").strip().lower()
        if naming not in ("aligned", "legacy"):
            raise ValueError('PAYFAST_TIER_NAMING은 aligned 또는 legacy 이어야 합니다')
        return naming

    @validator('BASE_URL')
    def strip_base_url(cls, v):
        return (v or "").rstrip("/")

    @property
    def is_sandbox(self) -> bool:
        return self.PAYFAST_MODE == "sandbox"

    @property
    def payfast_process_url(self) -> str:
        return f"{PAYFAST_HOSTS[self.PAYFAST_MODE]}/eng/process"

    @property
    def payfast_validate_url(self) -> str:
        return f"{PAYFAST_HOSTS[self.PAYFAST_MODE]}/eng/query/validate"

    @property
    def trusted_ips(self) -> frozenset[str]:
        return frozenset(ip.strip() for ip in self.PAYFAST_TRUSTED_IPS.split(",") if ip.strip())

    class Config:
        env_file = tuple(str(path) for path in _ENV_FILES) if _ENV_FILES else None
        case_sensitive = True
        extra = "allow"  # 추가 환경변수 허용


# 전역 설정 인스턴스
settings = Settings()
