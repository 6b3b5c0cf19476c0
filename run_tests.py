#!/usr/bin/env python3
"""
PIN 채팅 백엔드 테스트 실행 스크립트

Usage:
    python run_tests.py                # 전체 테스트
    python run_tests.py --unit         # 단위 테스트 (서비스, 게이트웨이, REST API)
    python run_tests.py --integration  # WebSocket 통합 테스트
    python run_tests.py --coverage     # 커버리지 리포트 포함
    python run_tests.py --install      # 패키지와 테스트 의존성 설치
"""

import sys
import subprocess
import argparse
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
PYTEST = [sys.executable, "-m", "pytest"]


def run_command(cmd, description=""):
    """명령어 실행"""
    print(f"\n{'='*60}")
    print(f"🚀 {description}")
    print(f"{'='*60}")
    print(f"실행 명령어: {' '.join(cmd)}\n")

    try:
        subprocess.run(cmd, check=True, cwd=PROJECT_ROOT)
        print(f"\n✅ {description} 성공!")
        return True
    except subprocess.CalledProcessError as e:
        print(f"\n❌ {description} 실패! (exit code: {e.returncode})")
        return False


def install_dependencies():
    """editable 설치 + test extra"""
    return run_command(
        [sys.executable, "-m", "pip", "install", "-e", ".[test]"],
        "패키지 및 테스트 의존성 설치"
    )


def run_pytest(target: str, description: str, *extra: str):
    return run_command([*PYTEST, target, "-v", "--tb=short", *extra], description)


def run_tests_with_coverage():
    """커버리지 포함하여 테스트 실행"""
    success = run_pytest(
        "tests/",
        "커버리지 포함 테스트 실행",
        "--cov=app", "--cov-report=term-missing", "--cov-report=html:htmlcov"
    )
    if success:
        print("\n📊 커버리지 리포트가 htmlcov/index.html에 생성되었습니다.")
    return success


def main():
    parser = argparse.ArgumentParser(description="PIN 채팅 테스트 실행 스크립트")
    parser.add_argument("--unit", action="store_true", help="단위 테스트만 실행")
    parser.add_argument("--integration", action="store_true", help="통합 테스트만 실행")
    parser.add_argument("--coverage", action="store_true", help="커버리지 포함하여 실행")
    parser.add_argument("--quick", action="store_true", help="실패 시 즉시 중단")
    parser.add_argument("--install", action="store_true", help="의존성 설치")

    args = parser.parse_args()
    print(f"📁 프로젝트 디렉토리: {PROJECT_ROOT.absolute()}")

    success = True

    if args.install:
        success &= install_dependencies()

    if args.unit:
        success &= run_pytest("tests/unit/", "단위 테스트 실행")
    elif args.integration:
        success &= run_pytest("tests/integration/", "통합 테스트 실행")
    elif args.coverage:
        success &= run_tests_with_coverage()
    elif args.quick:
        success &= run_pytest("tests/", "빠른 테스트 실행 (실패 시 중단)", "-x")
    else:
        success &= run_pytest("tests/", "전체 테스트 실행")

    print(f"\n{'='*60}")
    if success:
        print("🎉 모든 테스트가 통과했습니다!")
    else:
        print("💥 일부 테스트가 실패했습니다. 로그를 확인해주세요.")
    print(f"{'='*60}")

    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
