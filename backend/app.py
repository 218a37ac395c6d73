"""FastAPI WebRTC Signaling Server for 4-party P2P rooms.

이 모듈은 최대 4명이 짧은 숫자 코드로 방에 모여 P2P로 오디오/비디오를
주고받는 화상 통화 시스템의 시그널링 서버를 제공합니다.
미디어는 서버를 거치지 않으며, 서버는 룸 관리와 시그널링 메시지 중계만 담당합니다.

주요 기능:
    - 4자리 숫자 룸 코드 발급 및 상태 조회
    - 룸 정원(4명) 관리 및 빈 룸 자동 정리
    - WebRTC offer/answer/ICE candidate 대상 지정 중계
    - 참가자 입/퇴장 알림
    - TURN 자격증명 프록시

Architecture:
    - Mesh P2P: 참가자 쌍마다 독립적인 peer connection
    - RoomRegistry: 룸 코드 → 참가자 집합 (프로세스 전역 단일 서비스 객체)
    - SessionGateway: 연결-룸 바인딩 및 메시지 중계
    - WebSocket: 실시간 시그널링 메시지 전송
"""
import logging
from contextlib import asynccontextmanager
import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from modules import RoomRegistry, SessionGateway
from routes import (
    health_router, init_health,
    rooms_router, init_rooms_registry,
    signaling_router, init_signaling_gateway,
)
from dotenv import load_dotenv
from pathlib import Path

# config/.env 환경변수 로드
load_dotenv(Path(__file__).parent / "config" / ".env")


# 로그 설정
os.makedirs("logs", exist_ok=True)
log_filename = f"logs/server_{__import__('datetime').datetime.now().strftime('%Y%m%d')}.log"

# 환경별 로그 레벨 설정 (환경변수로 제어)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ENV = os.getenv("ENV", "development")

# 로그 보관 기간 (일) - 기본 60일
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "60"))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "10000"))


def cleanup_old_logs(log_dir: str = "logs", retention_days: int = LOG_RETENTION_DAYS) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    import glob
    from datetime import datetime, timedelta

    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob.glob(os.path.join(log_dir, "server_*.log")):
        try:
            date_str = os.path.basename(log_file).replace("server_", "").replace(".log", "")
            file_date = datetime.strptime(date_str, "%Y%m%d")

            if file_date < cutoff_date:
                os.remove(log_file)
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),  # 콘솔 출력
        logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
    ]
)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={LOG_LEVEL}, env={ENV}")


# 글로벌 서비스 인스턴스
room_registry = RoomRegistry()
session_gateway = SessionGateway(room_registry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    Args:
        app (FastAPI): FastAPI 애플리케이션 인스턴스

    Yields:
        None: 앱이 실행되는 동안 제어를 반환

    Note:
        - 시작: 오래된 로그 정리, 빈 룸 스윕 태스크 시작
        - 종료: 스윕 태스크와 예약된 룸 삭제 취소
    """
    logger.info("WebRTC 시그널링 서버 시작 중...")

    deleted_logs = cleanup_old_logs()
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({LOG_RETENTION_DAYS}일 이상)")

    await room_registry.start()

    yield

    logger.info("서버 종료 중...")
    await room_registry.stop()


app = FastAPI(title="P2P Video Room Signaling Server", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",")],
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(rooms_router)
app.include_router(signaling_router)

# 라우터에 서비스 인스턴스 전달
init_health(room_registry, session_gateway)
init_rooms_registry(room_registry)
init_signaling_gateway(session_gateway)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트 (Health check).

    Returns:
        dict: 서버 상태 정보를 포함하는 딕셔너리
            - status (str): 서버 상태
            - service (str): 서비스 이름
    """
    return {"status": "ok", "service": "P2P Video Room Signaling Server"}


def main():
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
