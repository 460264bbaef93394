"""
사용자 계정 모듈
"""

from .users import UserAccountStore

__all__ = ["UserAccountStore"]
