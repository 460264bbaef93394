"""
ListPulse - 메일링 리스트 구독자 및 계정 관리
"""

__version__ = "0.1.0"
