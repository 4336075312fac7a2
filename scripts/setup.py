#!/usr/bin/env python3
"""
Setup script for Device Rotation Tester.
Installs the project, Playwright and the Chromium build it drives.
"""

import subprocess
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def run_command(cmd, description):
    """Run a command and report status."""
    print(f"\n📦 {description}...")
    try:
        result = subprocess.run(cmd, shell=True, check=True, capture_output=True, text=True)
        print(f"✅ {description} completed")
        if result.stdout:
            print(result.stdout)
        return True
    except subprocess.CalledProcessError as e:
        print(f"❌ {description} failed")
        if e.stderr:
            print(e.stderr)
        return False


def bootstrap_steps(python=sys.executable, root=PROJECT_ROOT):
    return [
        (f'"{python}" -m pip install -e "{root}"', "Installing Device Rotation Tester"),
        (f'"{python}" -m playwright install chromium', "Installing Chromium browser"),
    ]


def main():
    print("🚀 Setting up Device Rotation Tester...")

    if sys.version_info < (3, 8):
        print("❌ Python 3.8+ required")
        sys.exit(1)

    for cmd, description in bootstrap_steps():
        if not run_command(cmd, description):
            sys.exit(1)

    print("\n✅ Setup complete! You can now run:")
    print("   device-rotation https://example.com")


if __name__ == "__main__":
    main()
