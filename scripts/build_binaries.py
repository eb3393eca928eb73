#!/usr/bin/env python3
"""
Build standalone provenancectl binaries with PyInstaller, for agents without Python.
"""

import os
import platform
import subprocess
import sys
from pathlib import Path


def build_binary(script_path, output_name, dist_dir):
    """Build a single binary using PyInstaller."""
    cmd = [
        sys.executable,
        "-m",
        "PyInstaller",
        "--onefile",
        "--name",
        output_name,
        "--distpath",
        str(dist_dir),
        "--specpath",
        str(dist_dir),
        "--add-data",
        f"{Path(script_path).parent / 'provenance-schema-v0.1.json'}{os.pathsep}.",
        str(script_path),
    ]
    print(f"Building {output_name}...")
    try:
        result = subprocess.run(cmd, cwd=os.getcwd(), capture_output=True, text=True)
        if result.returncode != 0:
            print(f"Command failed: {' '.join(cmd)}")
            print(f"stdout: {result.stdout}")
            print(f"stderr: {result.stderr}")
            return False
        return True
    except OSError as e:
        print(f"Error running PyInstaller: {e}")
        return False


def binary_suffix(system: str, machine: str) -> str:
    # Buildkite agents download the plugin binary by <os>-<arch>
    arch = {"x86_64": "amd64", "aarch64": "arm64"}.get(machine, machine)
    return f"{system}-{arch}"


def main(argv: list[str] | None = None) -> int:
    """Main build function."""
    _ = argv
    project_root = Path(__file__).parent.parent
    os.chdir(project_root)

    binaries_dir = project_root / "dist" / "binaries"
    binaries_dir.mkdir(parents=True, exist_ok=True)

    suffix = binary_suffix(platform.system().lower(), platform.machine().lower())

    script_path = project_root / "provenancectl.py"
    if not script_path.exists():
        print(f"Error: {script_path} not found")
        return 1

    if not build_binary(script_path, f"provenancectl-{suffix}", binaries_dir):
        print("Failed to build provenancectl binary")
        return 1

    mcp_script_path = project_root / "provenance_mcp_server.py"
    if mcp_script_path.exists():
        if not build_binary(mcp_script_path, f"provenance-mcp-server-{suffix}", binaries_dir):
            print("Failed to build MCP server binary")
            return 1

    print(f"Binaries built successfully in {binaries_dir}")
    print("Contents:")
    for binary in binaries_dir.iterdir():
        if binary.is_file():
            print(f"  {binary.name}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
