"""
ListPulse 예외 정의

저장소 오류(SQLAlchemyError)는 롤백 후 그대로 전파되므로 여기서 감싸지 않는다.
조회 결과가 없는 경우는 예외가 아니라 None 으로 표현한다.
"""


class ListPulseError(Exception):
    """ListPulse 기본 예외"""


class ValidationError(ListPulseError):
    """필수 입력 누락 또는 형식 오류"""


class InvalidEmail(ValidationError):
    """이메일 주소 형식 오류"""

    def __init__(self, email: str, reason: str = None):
        self.email = email
        message = f"Invalid email address: {email!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class ConflictError(ListPulseError):
    """고유 제약 조건 충돌"""


class DuplicateEmail(ConflictError):
    """다른 계정이 이미 사용 중인 이메일"""

    def __init__(self, email: str):
        self.email = email
        super().__init__(
            f"Can't change email as another user with the same email address already exists: {email}"
        )
