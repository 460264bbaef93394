"""
입력 검증 유틸리티
"""

from email_validator import validate_email, EmailNotValidError

from .exceptions import InvalidEmail


def validate_email_address(email: str) -> str:
    """
    이메일 주소 형식 검증 (MX 조회 없음)

    Returns:
        앞뒤 공백을 제거한 이메일 주소
    """
    email = str(email or "").strip()
    if not email:
        raise InvalidEmail(email, "empty address")

    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise InvalidEmail(email, str(e))

    return email
