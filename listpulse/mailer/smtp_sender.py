"""
SMTP 이메일 발송 모듈 (계정 알림 메일)
"""

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from dataclasses import dataclass
from typing import Optional

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    """발송 결과"""
    recipient: str
    success: bool
    error_message: Optional[str] = None


class SmtpSender:
    """STARTTLS SMTP 발송기"""

    def __init__(self, sender_email: str = None, password: str = None, server: str = None, port: int = None):
        self.sender_email = sender_email or settings.smtp_address
        self.password = password or settings.smtp_password
        self.server = server or settings.smtp_server
        self.port = port or settings.smtp_port

    def build_message(self, recipient: str, subject: str, html_content: str, sender_name: str) -> EmailMessage:
        """HTML 본문 메일 생성"""
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = formataddr((sender_name, self.sender_email))
        message["To"] = recipient
        message.set_content("HTML 메일을 지원하는 클라이언트에서 확인하세요.")
        message.add_alternative(html_content, subtype="html")
        return message

    def send(self, recipient: str, subject: str, html_content: str, sender_name: str = "ListPulse") -> SendResult:
        """
        메일 발송

        SMTP 오류는 예외 대신 실패한 SendResult 로 돌려준다.
        """
        if not self.sender_email or not self.password:
            logger.warning("SMTP_ADDRESS / SMTP_PASSWORD 가 설정되지 않아 메일을 보내지 않습니다.")
            return SendResult(recipient, False, "SMTP not configured")

        message = self.build_message(recipient, subject, html_content, sender_name)

        try:
            with smtplib.SMTP(self.server, self.port, timeout=30) as smtp:
                smtp.starttls()
                smtp.login(self.sender_email, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"메일 발송 실패 ({recipient}): {e}")
            return SendResult(recipient, False, str(e))

        logger.info(f"메일 발송: {recipient} ({subject})")
        return SendResult(recipient, True)


_sender: Optional[SmtpSender] = None


def get_sender() -> SmtpSender:
    """싱글톤 발송기 반환"""
    global _sender
    if _sender is None:
        _sender = SmtpSender()
    return _sender
