"""
이메일 발송 모듈
"""

from .smtp_sender import SmtpSender, SendResult, get_sender

__all__ = ["SmtpSender", "SendResult", "get_sender"]
