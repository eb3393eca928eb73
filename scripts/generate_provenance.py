#!/usr/bin/env python3
# Copyright 2026 Jason M. Lovell
# SPDX-License-Identifier: Apache-2.0
"""
Generate SLSA provenance from inside a Buildkite job.
Reads the build and agent context from BUILDKITE_* environment variables.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import provenancectl  # noqa: E402

BUILD_ENV = {
    "repository": "BUILDKITE_REPO",
    "build_url": "BUILDKITE_BUILD_URL",
    "commit": "BUILDKITE_COMMIT",
    "step_id": "BUILDKITE_STEP_ID",
    "command": "BUILDKITE_COMMAND",
}

AGENT_ENV = {
    "agent_name": "BUILDKITE_AGENT_NAME",
    "agent_id": "BUILDKITE_AGENT_ID",
    "agent_organization": "BUILDKITE_ORGANIZATION_SLUG",
}


def context_from_env(mapping: dict[str, str], env: dict[str, str] | None = None) -> dict[str, str]:
    source = os.environ if env is None else env
    return {key: source.get(var, "") for key, var in mapping.items()}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate SLSA provenance for a Buildkite job")
    parser.add_argument(
        "--artifact-path",
        action="append",
        default=[],
        help="File or directory of artifacts to attest (repeatable)",
    )
    parser.add_argument("--output", default="provenance.json", help="Output provenance JSON path")
    parser.add_argument(
        "--print-contexts",
        action="store_true",
        help="Print the build and agent context read from the environment and exit",
    )
    args = parser.parse_args(argv)

    build = context_from_env(BUILD_ENV)
    agent = context_from_env(AGENT_ENV)

    if args.print_contexts:
        print(provenancectl.dump_json({"build": build, "agent": agent}), end="")
        return 0

    if not args.artifact_path:
        parser.error("--artifact-path is required unless --print-contexts is given")

    cmd = ["generate", "--quiet", "--output-path", args.output]
    for path in args.artifact_path:
        cmd += ["--artifact-path", path]
    cmd += ["--build-context", json.dumps(build), "--agent-context", json.dumps(agent)]
    rc = provenancectl.main(cmd)
    if rc == 0:
        print(args.output)
    return rc


if __name__ == "__main__":
    raise SystemExit(main())
