"""Core 패키지 초기화 (경량화)

설정(settings)은 환경변수 검증이 필요하므로 여기서 불러오지 않습니다.
"""
