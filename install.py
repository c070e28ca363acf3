#!/usr/bin/env python3
"""Bootstrap a local agent-orchestrator checkout.

Usage:
    python install.py          # Install into .venv
    python install.py --dev    # Editable install with pytest and pytest-asyncio
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
BIN_DIR = os.path.join(VENV_DIR, "Scripts" if IS_WINDOWS else "bin")

# (example file, live file) pairs copied on first install
SEED_FILES = [("config.example.yaml", "config.yaml"), (".env.example", ".env")]


def _check_python() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"Error: Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ is required "
            f"(found {sys.version_info.major}.{sys.version_info.minor})."
        )


def _ensure_venv() -> None:
    if os.path.isdir(VENV_DIR):
        print("Reusing .venv")
        return
    print("Creating .venv ...")
    subprocess.check_call([sys.executable, "-m", "venv", VENV_DIR])


def _install(dev: bool) -> None:
    pip = os.path.join(BIN_DIR, "pip")
    subprocess.check_call([pip, "install", "--quiet", "--upgrade", "pip"])
    args = [pip, "install", "-e", ".[dev]"] if dev else [pip, "install", "."]
    print("Installing agent-orchestrator" + (" with dev extras" if dev else "") + " ...")
    subprocess.check_call(args, cwd=PROJECT_DIR)


def _seed_files() -> None:
    # Session database lives under ./data unless config.yaml says otherwise
    os.makedirs(os.path.join(PROJECT_DIR, "data"), exist_ok=True)
    for example, live in SEED_FILES:
        live_path = os.path.join(PROJECT_DIR, live)
        example_path = os.path.join(PROJECT_DIR, example)
        if os.path.exists(live_path):
            print(f"Keeping existing {live}")
        elif os.path.exists(example_path):
            shutil.copy(example_path, live_path)
            print(f"Wrote {live} from {example}")


def _verify_config() -> bool:
    python = os.path.join(BIN_DIR, "python")
    result = subprocess.run(
        [python, "-m", "agent_orchestrator", "config-check"],
        cwd=PROJECT_DIR,
        capture_output=True,
        text=True,
    )
    print(result.stdout or result.stderr)
    return result.returncode == 0


def main() -> None:
    _check_python()
    dev = "--dev" in sys.argv

    _ensure_venv()
    _install(dev)
    _seed_files()
    config_ok = _verify_config()

    activate = r".\.venv\Scripts\activate" if IS_WINDOWS else "source .venv/bin/activate"
    print()
    print("agent-orchestrator is installed." if config_ok else "Installed, but config.yaml needs attention.")
    print()
    print("Next steps:")
    print("  1. Put ANTHROPIC_API_KEY (and optionally OPENAI_API_KEY) in .env.")
    print("     Without a key, sessions answer in limited mode.")
    print("  2. Adjust flags, permissions and memory limits in config.yaml.")
    print(f"  3. {activate}")
    print("  4. agent-orchestrator agents")
    print("  5. agent-orchestrator chat --agent DISPATCH_CONCIERGE --user demo")


if __name__ == "__main__":
    main()
