"""
ListPulse 설정 관리 모듈
"""

import logging
from pathlib import Path
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """애플리케이션 설정"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 프로젝트 경로
    BASE_DIR: Path = Path(__file__).parent.parent

    # 데이터베이스
    database_url: str = Field(default="sqlite:///./data/listpulse.db")
    # 서버 DB(MySQL/PostgreSQL)에서 사용할 트랜잭션 격리 수준
    db_isolation_level: str = Field(default="READ COMMITTED")

    # SMTP (비밀번호 재설정 메일)
    smtp_server: str = Field(default="smtp.gmail.com")
    smtp_port: int = Field(default=587)
    smtp_address: str = Field(default="")
    smtp_password: str = Field(default="")

    # 서비스 정보
    service_url: str = Field(default="http://localhost:3000/")

    # 계정
    reset_token_ttl_minutes: int = Field(default=60)
    bcrypt_rounds: int = Field(default=12)

    # 구독자 목록 페이지 크기
    default_page_size: int = Field(default=50)

    # 로깅
    log_level: str = Field(default="INFO")


@lru_cache()
def get_settings() -> Settings:
    """설정 싱글톤 반환"""
    return Settings()


settings = get_settings()


def configure_logging(level: str = None, log_file: Path = None) -> None:
    """로깅 설정 (애플리케이션 진입점에서 한 번 호출)"""
    handlers = [logging.StreamHandler()]
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
