#!/usr/bin/env python3
"""
Yield Buffer Simulation Runner

Convenience script to run the buffer simulation from the repository root.
Forwards all arguments to yield_buffer.main.
"""

import subprocess
import sys
from pathlib import Path


def main():
    """Run the buffer simulation with proper path handling"""
    script_dir = Path(__file__).parent.absolute()

    if not (script_dir / "yield_buffer" / "main.py").exists():
        print("Error: yield_buffer/main.py not found!")
        print(f"Expected location: {script_dir / 'yield_buffer'}")
        return 1

    cmd = [sys.executable, "-m", "yield_buffer.main"] + sys.argv[1:]
    try:
        return subprocess.run(cmd, cwd=str(script_dir)).returncode
    except KeyboardInterrupt:
        print("\nSimulation interrupted by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
