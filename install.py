#!/usr/bin/env python3
"""Cross-platform install script for gemini-chat.

Usage:
    python install.py          # Production install
    python install.py --dev    # Development install (includes test tools)
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)
CONFIG_HOME = os.path.join(os.path.expanduser("~"), ".gemini-chat")


def main() -> None:
    # 1. Check Python version
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"Error: Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ is required. "
            f"You have {sys.version_info.major}.{sys.version_info.minor}."
        )

    print(f"Python {sys.version_info.major}.{sys.version_info.minor} detected. OK.")

    dev = "--dev" in sys.argv
    project_dir = os.path.dirname(os.path.abspath(__file__))
    venv_dir = os.path.join(project_dir, ".venv")
    is_windows = platform.system() == "Windows"

    bin_dir = "Scripts" if is_windows else "bin"
    pip = os.path.join(venv_dir, bin_dir, "pip")
    cli = os.path.join(venv_dir, bin_dir, "gemini-chat")

    # 2. Create virtual environment
    if not os.path.isdir(venv_dir):
        print("Creating virtual environment...")
        subprocess.check_call([sys.executable, "-m", "venv", venv_dir])
    else:
        print("Virtual environment already exists.")

    # 3. Install project
    target = ".[dev]" if dev else "."
    print(f"Installing gemini-chat ({'development' if dev else 'production'})...")
    subprocess.check_call([pip, "install", "-e" if dev else "--upgrade", target], cwd=project_dir)

    # 4. Copy config files if missing
    os.makedirs(CONFIG_HOME, exist_ok=True)
    for src, dst in [
        (os.path.join(project_dir, "config.example.yaml"), os.path.join(CONFIG_HOME, "config.yaml")),
        (os.path.join(project_dir, ".env.example"), os.path.join(project_dir, ".env")),
    ]:
        if not os.path.exists(dst) and os.path.exists(src):
            shutil.copy(src, dst)
            print(f"Created {dst}")
        elif os.path.exists(dst):
            print(f"{dst} already exists, skipping.")

    # 5. Initialize the conversation workspace
    subprocess.check_call([cli, "init"], cwd=project_dir)

    activate_cmd = r".\.venv\Scripts\activate" if is_windows else "source .venv/bin/activate"
    print()
    print("=" * 50)
    print("  gemini-chat installation complete!")
    print("=" * 50)
    print()
    print("Next steps:")
    print("  1. Edit .env - set GEMINI_API_KEY=...")
    print(f"  2. Activate the virtual environment: {activate_cmd}")
    print('  3. Ask something: gemini-chat ask "Hello"')
    print("  4. Check config:  gemini-chat config check")
    print()


if __name__ == "__main__":
    main()
