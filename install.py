#!/usr/bin/env python3
"""Bootstrap a local webhook-bridge checkout.

Usage:
    python install.py          # runtime dependencies only
    python install.py --dev    # also pytest / pytest-asyncio

Creates ``.venv``, installs the package into it, seeds ``config.yaml`` and
``.env`` from their examples and validates the result with
``webhook-bridge config-check``.
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)
PROJECT_DIR = os.path.dirname(os.path.abspath(__file__))
VENV_DIR = os.path.join(PROJECT_DIR, ".venv")
IS_WINDOWS = platform.system() == "Windows"
SEED_FILES = [("config.example.yaml", "config.yaml"), (".env.example", ".env")]


def venv_bin(name: str) -> str:
    return os.path.join(VENV_DIR, "Scripts" if IS_WINDOWS else "bin", name)


def require_python() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            "webhook-bridge needs Python %d.%d+, found %d.%d"
            % (*MIN_PYTHON, sys.version_info.major, sys.version_info.minor)
        )


def ensure_venv() -> None:
    if os.path.isdir(VENV_DIR):
        print(".venv found, reusing it.")
        return
    print("Creating .venv ...")
    subprocess.check_call([sys.executable, "-m", "venv", VENV_DIR])


def install_package(dev: bool) -> None:
    pip = venv_bin("pip")
    subprocess.check_call([pip, "install", "--upgrade", "pip"])
    target = ["-e", ".[dev]"] if dev else ["."]
    print(f"Installing webhook-bridge ({'editable, dev extras' if dev else 'runtime'}) ...")
    subprocess.check_call([pip, "install", *target], cwd=PROJECT_DIR)


def seed_files() -> None:
    os.makedirs(os.path.join(PROJECT_DIR, "data", "media"), exist_ok=True)
    for example, target in SEED_FILES:
        target_path = os.path.join(PROJECT_DIR, target)
        example_path = os.path.join(PROJECT_DIR, example)
        if os.path.exists(target_path):
            print(f"{target}: kept existing file")
        elif os.path.exists(example_path):
            shutil.copy(example_path, target_path)
            print(f"{target}: created from {example}")


def check_config() -> bool:
    cli = venv_bin("webhook-bridge")
    result = subprocess.run([cli, "config-check"], cwd=PROJECT_DIR)
    return result.returncode == 0


def main() -> None:
    require_python()
    ensure_venv()
    install_package(dev="--dev" in sys.argv)
    seed_files()

    activate = r".\.venv\Scripts\activate" if IS_WINDOWS else "source .venv/bin/activate"
    print()
    if not check_config():
        print("config.yaml does not validate yet; fill in the values below and rerun config-check.")
    print("Set these in .env:")
    print("  WEBHOOK_INBOUND_TOKEN   bearer token callers must send")
    print("  WEBHOOK_OUTBOUND_URL    where replies are POSTed")
    print("  WEBHOOK_OUTBOUND_TOKEN  bearer token for the outbound URL")
    print("  ANTHROPIC_API_KEY       only for backend.kind: anthropic")
    print()
    print(f"Then: {activate} && webhook-bridge start")


if __name__ == "__main__":
    main()
