#!/usr/bin/env python3
# Copyright 2026 Jason M. Lovell
# SPDX-License-Identifier: Apache-2.0
"""
A reference MCP server for Buildkite SLSA provenance.
Exposes the statement schema as a resource and provides tools to normalize
repository locators, digest artifacts and generate unsigned statements.
"""

import json
from pathlib import Path

from mcp.server.fastmcp import FastMCP

import provenancectl

# Initialize FastMCP server
mcp = FastMCP("SLSA Provenance Server")

SCHEMA_PATH = Path(__file__).parent / "provenance-schema-v0.1.json"


@mcp.resource("provenance://schema")
def get_schema() -> str:
    """
    Returns the JSON Schema that generated provenance statements conform to.
    """
    if SCHEMA_PATH.exists():
        return SCHEMA_PATH.read_text(encoding="utf-8")
    return json.dumps({"error": "Provenance schema not found on this server."})


@mcp.tool()
def normalize_repository(repository: str) -> str:
    """
    Normalize a repository locator (URL, SCP-style remote or local path) and derive its materials URI.
    """
    url = provenancectl.parse_repository_url(repository)
    out = url.to_dict()
    out["materialsUri"] = provenancectl.materials_uri(url)
    return json.dumps(out)


@mcp.tool()
def digest_artifact(path: str) -> str:
    """
    Compute sha256 subjects for a file or every file below a directory.
    """
    try:
        subjects = provenancectl.collect_subjects(path)
    except provenancectl.ArtifactNotFoundError as e:
        return f"Error: {e}"
    return json.dumps([s.to_dict() for s in subjects])


@mcp.tool()
def generate_provenance(artifact_paths: list[str], build_context_json: str, agent_context_json: str) -> str:
    """
    Generate an unsigned SLSA provenance statement for the given artifacts.
    """
    try:
        config = provenancectl.ProvenanceConfig(
            artifact_paths=artifact_paths,
            build=provenancectl.parse_build_context(build_context_json),
            agent=provenancectl.parse_agent_context(agent_context_json),
        )
        statement = provenancectl.generate_statement(config)
        return provenancectl.dump_json(statement)
    except Exception as e:
        return f"Error: {e!s}"


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
