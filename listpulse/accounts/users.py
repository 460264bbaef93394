"""
사용자 계정 - 인증, 계정 정보 변경, 비밀번호 재설정
"""

import re
import secrets
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional
from urllib.parse import urljoin, urlencode

import bcrypt
from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..config import settings
from ..database import get_session, User
from ..exceptions import ValidationError, DuplicateEmail
from ..mailer import get_sender
from ..subscription.fields import convert_keys
from ..validators import validate_email_address

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")


def _user_to_dict(user: User) -> dict:
    return {"id": user.id, "username": user.username, "email": user.email}


class UserAccountStore:
    """사용자 계정 저장소"""

    def __init__(self, mailer=None, rounds: int = None, template_dir: str = None):
        """
        Args:
            mailer: send(recipient, subject, html_content) 를 가진 발송기
            rounds: bcrypt cost
            template_dir: 메일 템플릿 디렉토리
        """
        self.mailer = mailer
        self.rounds = rounds or settings.bcrypt_rounds
        self._dummy_hash = None

        if template_dir is None:
            template_dir = Path(__file__).parent.parent / "templates"

        # Jinja2 환경 설정
        self._env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(['html', 'xml']),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    # ------------------------------------------------------------------
    # 비밀번호 해시
    # ------------------------------------------------------------------

    def hash_password(self, password: str) -> str:
        """bcrypt 해시 생성"""
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self.hash_password(secrets.token_urlsafe(16))
        return self._dummy_hash

    @staticmethod
    def verify_password(password: Optional[str], password_hash: Optional[str]) -> bool:
        """bcrypt 해시 비교"""
        if not password or not password_hash:
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False

    # ------------------------------------------------------------------
    # 계정
    # ------------------------------------------------------------------

    def create(self, username: str, email: str, password: str) -> int:
        """계정 생성"""
        username = str(username or "").strip()
        if not username:
            raise ValidationError("Username must be set")
        email = validate_email_address(email)
        if not password:
            raise ValidationError("Password must be set")

        password_hash = self.hash_password(password)

        with get_session() as session:
            if session.query(User).filter(User.email == email).first():
                raise DuplicateEmail(email)

            user = User(username=username, email=email, password=password_hash)
            session.add(user)
            session.flush()
            logger.info(f"계정 생성: {username}")
            return user.id

    def get(self, user_id: int) -> Optional[dict]:
        """ID로 계정 조회"""
        with get_session() as session:
            user = session.get(User, user_id)
            return _user_to_dict(user) if user else None

    def authenticate(self, identifier: str, password: str) -> Optional[dict]:
        """
        사용자명 또는 이메일로 로그인

        실패 사유(계정 없음, 비밀번호 불일치)는 구분하지 않는다.
        """
        identifier = str(identifier or "").strip()
        if not identifier:
            return None

        with get_session() as session:
            user = session.query(User).filter(
                or_(User.username == identifier, User.email == identifier)
            ).first()

            if user is None:
                # 없는 계정도 같은 비용의 해시 비교를 거친다
                self.verify_password(password, self._get_dummy_hash())
                security_logger.warning(f"로그인 실패: {identifier}")
                return None

            if not self.verify_password(password, user.password):
                security_logger.warning(f"로그인 실패: {identifier}")
                return None

            security_logger.info(f"로그인 성공: {user.username}")
            return _user_to_dict(user)

    def update(self, user_id: int, updates: dict) -> int:
        """
        계정 정보 변경

        Args:
            user_id: 계정 ID
            updates: email (필수), current_password, password, password2

        Returns:
            갱신된 행 수
        """
        updates = convert_keys(updates)

        if not updates.get("email"):
            raise ValidationError("Email Address must be set")
        email = validate_email_address(updates["email"])

        with get_session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise ValidationError("Failed to check user data")

            values = {"email": email}

            if updates.get("password") or updates.get("password2"):
                if not self.verify_password(updates.get("current_password"), user.password):
                    security_logger.warning(f"비밀번호 변경 실패 (현재 비밀번호 불일치): {user.username}")
                    raise ValidationError("Incorrect current password")
                if not updates.get("password"):
                    raise ValidationError("New password not set")
                if updates["password"] != updates.get("password2"):
                    raise ValidationError("Passwords do not match")
                values["password"] = self.hash_password(updates["password"])

            duplicate = session.query(User.id).filter(User.email == email, User.id != user_id).first()
            if duplicate:
                raise DuplicateEmail(email)

            try:
                result = session.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            except IntegrityError as e:
                raise DuplicateEmail(email) from e

            logger.info(f"계정 정보 변경: {user.username}")
            return result.rowcount

    # ------------------------------------------------------------------
    # 비밀번호 재설정
    # ------------------------------------------------------------------

    @staticmethod
    def generate_reset_token() -> str:
        """영숫자 재설정 토큰 생성"""
        return re.sub(r"[^a-zA-Z0-9]", "", secrets.token_urlsafe(24))

    def send_reset(self, identifier: str) -> bool:
        """
        비밀번호 재설정 메일 발송

        메일 발송 실패는 기록만 하고 결과에 영향을 주지 않는다.

        Returns:
            계정이 없으면 False
        """
        identifier = str(identifier or "").strip()
        if not identifier:
            raise ValidationError("Username must be set")

        reset_token = self.generate_reset_token()

        with get_session() as session:
            user = session.query(User).filter(
                or_(User.username == identifier, User.email == identifier)
            ).first()
            if user is None:
                return False

            user.reset_token = reset_token
            user.reset_expire = datetime.utcnow() + timedelta(minutes=settings.reset_token_ttl_minutes)
            username, email = user.username, user.email

        security_logger.info(f"비밀번호 재설정 요청: {username}")

        try:
            self._send_reset_mail(username, email, reset_token)
        except Exception as e:
            logger.error(f"재설정 메일 발송 실패 ({email}): {e}")

        return True

    def _send_reset_mail(self, username: str, email: str, reset_token: str) -> None:
        confirm_url = urljoin(settings.service_url, "/users/reset") + "?" + urlencode({
            "token": reset_token,
            "username": username,
        })
        html_content = self._env.get_template("password-reset.html").render(
            username=username,
            confirm_url=confirm_url,
            ttl_minutes=settings.reset_token_ttl_minutes,
        )

        mailer = self.mailer or get_sender()
        result = mailer.send(
            recipient=email,
            subject="Mailer password change request",
            html_content=html_content,
        )
        if result is not None and not getattr(result, "success", True):
            logger.error(f"재설정 메일 발송 실패 ({email}): {result.error_message}")

    def check_reset_token(self, username: str, reset_token: str) -> bool:
        """재설정 토큰 유효성 확인"""
        if not username or not reset_token:
            raise ValidationError("Missing username or reset token")

        with get_session() as session:
            found = session.query(User.id).filter(
                User.username == username,
                User.reset_token == reset_token,
                User.reset_expire > datetime.utcnow(),
            ).first()
            return found is not None

    def reset_password(self, username: str, reset_token: str, password: str, password2: str) -> bool:
        """
        재설정 토큰으로 비밀번호 변경 (토큰은 한 번만 사용 가능)

        Returns:
            토큰이 유효해서 변경되었으면 True
        """
        if not username or not reset_token:
            raise ValidationError("Missing username or reset token")

        if not password or not password2 or password != password2:
            raise ValidationError("Invalid new password")

        password_hash = self.hash_password(password)

        with get_session() as session:
            result = session.execute(
                update(User)
                .where(
                    User.username == username,
                    User.reset_token == reset_token,
                    User.reset_expire > datetime.utcnow(),
                )
                .values(password=password_hash, reset_token=None, reset_expire=None)
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount > 0

        if changed:
            security_logger.info(f"비밀번호 재설정 완료: {username}")
        else:
            security_logger.warning(f"비밀번호 재설정 실패: {username}")
        return changed
