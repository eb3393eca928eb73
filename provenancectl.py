#!/usr/bin/env python3
"""
provenancectl.py - SLSA provenance statements for Buildkite builds.

This script provides:
- Repository locator normalization (transport URLs, SCP-style git remotes, local paths)
- Artifact content addressing (sha256 per file, for a file or a whole directory tree)
- In-toto Statement / SLSA v0.1 provenance assembly from build + agent context
- Stable JSON output, RFC8785 canonical digests and schema checks for statements

Notes:
- The statement is emitted unsigned. Wrapping it in a signed envelope is left to other tooling.
- Nothing is fetched from or uploaded to Buildkite; the caller passes the context in.
"""

from __future__ import annotations

import argparse
import datetime as dt
import errno
import hashlib
import json
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit, urlunsplit

try:
    from jsonschema import Draft202012Validator, FormatChecker
except ImportError as e:
    raise SystemExit(
        "Missing dependency 'jsonschema'. Install with: python3 -m pip install -e ."
    ) from e

try:
    import jcs
except ImportError as e:
    raise SystemExit(
        "Missing dependency 'jcs'. Install with: python3 -m pip install -e ."
    ) from e


STATEMENT_TYPE = "https://in-toto.io/Statement/v0.1"
PREDICATE_TYPE = "https://slsa.dev/provenance/v0.1"
RECIPE_TYPE = "https://buildkite.com/Attestations/BuildkiteBuild@v1"
BUILDER_ID_PREFIX = "https://buildkite.com/organizations/"

SCHEMA_PATH = Path(__file__).parent / "provenance-schema-v0.1.json"

CHUNK_SIZE = 1024 * 1024


class ArtifactNotFoundError(FileNotFoundError):
    """An artifact root given by the caller does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Resource path not found: [provided={path}]")
        self.path = path


class ContextError(ValueError):
    """A build or agent context blob is not valid JSON of the expected shape."""


# ---------------------------
# Utilities
# ---------------------------

def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def now_rfc3339() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def jcs_canonicalize(obj: Any) -> str:
    """
    RFC 8785 (JCS) canonicalization via the 'jcs' library.
    """
    canonical = jcs.canonicalize(obj)
    if isinstance(canonical, bytes):
        return canonical.decode("utf-8")
    return canonical


def load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise SystemExit(f"Invalid JSON in {path}: {e}") from e


def dump_json(obj: Any, *, pretty: bool = True) -> str:
    """
    Serialize without escaping '<', '>', '&' or non-ASCII text; the output is diffed byte for byte.
    """
    if pretty:
        return json.dumps(obj, indent=2, ensure_ascii=False, sort_keys=False) + "\n"
    return json.dumps(obj, ensure_ascii=False) + "\n"


# ---------------------------
# Repository locators
# ---------------------------

TRANSPORTS = frozenset(
    {
        "ssh",
        "git",
        "git+ssh",
        "http",
        "https",
        "ftp",
        "ftps",
        "rsync",
        "file",
    }
)

# [user@]host:path[?query], never "scheme://..."
SCP_SYNTAX = re.compile(r"^([A-Za-z0-9._~-]+@)?([A-Za-z0-9._-]+):(?!//)([A-Za-z0-9./_-]+)(?:\?(.*))?$")


@dataclass(frozen=True)
class RepositoryURL:
    scheme: str
    host: str
    path: str
    user: Optional[str] = None
    query: str = ""

    def geturl(self) -> str:
        if self.scheme == "file" and not self.host and not self.path.startswith("/"):
            # relative local path, no URL form
            return self.path
        netloc = f"{self.user}@{self.host}" if self.user else self.host
        path = self.path if not self.path or self.path.startswith("/") else "/" + self.path
        return urlunsplit((self.scheme, netloc, path, self.query, ""))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scheme": self.scheme,
            "host": self.host,
            "path": self.path,
            "user": self.user,
            "query": self.query,
        }


def parse_transport(raw: str) -> Optional[RepositoryURL]:
    """
    Standard URL whose scheme is a known git transport; anything else is skipped.
    """
    try:
        parts = urlsplit(raw)
    except ValueError:
        return None
    if parts.scheme not in TRANSPORTS:
        return None
    userinfo, _, host = parts.netloc.rpartition("@")
    user = userinfo.split(":", 1)[0] or None
    return RepositoryURL(scheme=parts.scheme, host=host, path=parts.path, user=user, query=parts.query)


def parse_scp(raw: str) -> Optional[RepositoryURL]:
    m = SCP_SYNTAX.match(raw)
    if m is None:
        return None
    user = (m.group(1) or "").rstrip("@") or None
    return RepositoryURL(scheme="ssh", host=m.group(2), path=m.group(3), user=user, query=m.group(4) or "")


def parse_local(raw: str) -> RepositoryURL:
    return RepositoryURL(scheme="file", host="", path=raw)


PARSERS: Tuple[Callable[[str], Optional[RepositoryURL]], ...] = (
    parse_transport,
    parse_scp,
    parse_local,
)


def parse_repository_url(raw: str) -> RepositoryURL:
    """
    Try each locator form in order and return the first match.
    parse_local accepts anything, so the ValueError below only fires if PARSERS is changed.
    """
    for parser in PARSERS:
        url = parser(raw)
        if url is not None:
            return url
    raise ValueError(f"failed to parse {raw!r}")


def materials_uri(url: RepositoryURL) -> str:
    """
    git+https://<host>/<path>, without a leading '/' on the path and without a trailing '.git'.
    """
    path = url.path[1:] if url.path.startswith("/") else url.path
    if path.endswith(".git"):
        path = path[: -len(".git")]
    return f"git+https://{url.host}/{path}"


# ---------------------------
# Artifact digests
# ---------------------------

@dataclass(frozen=True)
class Subject:
    name: str
    digest: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "digest": dict(self.digest)}


def _entry_name(name: str) -> str:
    # undecodable bytes in file names become U+FFFD so the statement stays valid UTF-8
    return os.fsencode(name).decode("utf-8", "replace")


def _iter_files(root: str, rel: str = "") -> Iterator[Tuple[str, str]]:
    """
    Yield (abspath, relpath) for every non-directory entry below root, depth first in name order.
    A symlink to a directory inside the tree aborts the walk with IsADirectoryError.
    """
    with os.scandir(root) as it:
        entries = sorted(it, key=lambda e: os.fsencode(e.name))
    for entry in entries:
        name = _entry_name(entry.name)
        relpath = f"{rel}/{name}" if rel else name
        if entry.is_dir(follow_symlinks=False):
            yield from _iter_files(entry.path, relpath)
        elif entry.is_symlink() and entry.is_dir():
            raise IsADirectoryError(errno.EISDIR, "symlinked directory inside artifact tree", entry.path)
        else:
            yield entry.path, relpath


def collect_subjects(root: str) -> List[Subject]:
    """
    Hash every file under root (or root itself when it is a file).

    Raises ArtifactNotFoundError if root does not exist, including a root that is a
    dangling symlink. Any other OSError while walking or reading aborts the whole walk.
    """
    try:
        os.stat(root)
    except FileNotFoundError as e:
        raise ArtifactNotFoundError(root) from e

    if not os.path.isdir(root):
        # a lone file is named after itself, never "."
        name = _entry_name(os.path.basename(os.path.normpath(root)))
        return [Subject(name=name, digest={"sha256": sha256_file(Path(root))})]

    subjects: List[Subject] = []
    for abspath, relpath in _iter_files(root):
        subjects.append(Subject(name=relpath, digest={"sha256": sha256_file(Path(abspath))}))
    return subjects


def collect_all_subjects(roots: Iterable[str]) -> List[Subject]:
    subjects: List[Subject] = []
    for root in roots:
        subjects.extend(collect_subjects(root))
    return subjects


# ---------------------------
# Build / agent context
# ---------------------------

BUILD_CONTEXT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "repository": {"type": "string"},
        "build_url": {"type": "string"},
        "commit": {"type": "string"},
        "step_id": {"type": "string"},
        "command": {"type": "string"},
    },
}

AGENT_CONTEXT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "agent_name": {"type": "string"},
        "agent_id": {"type": "string"},
        "agent_organization": {"type": "string"},
    },
}


@dataclass(frozen=True)
class BuildContext:
    repository: str = ""
    build_url: str = ""
    commit: str = ""
    step_id: str = ""
    command: str = ""


@dataclass(frozen=True)
class AgentContext:
    agent_name: str = ""
    agent_id: str = ""
    agent_organization: str = ""


def _load_context(text: str, schema: Dict[str, Any], label: str) -> Dict[str, Any]:
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise ContextError(f"Invalid JSON in {label}: {e}") from e
    errors = sorted(Draft202012Validator(schema).iter_errors(obj), key=lambda e: [str(p) for p in e.path])
    if errors:
        err = errors[0]
        path = ".".join(str(p) for p in err.path) or "<root>"
        raise ContextError(f"Invalid {label} at {path}: {err.message}")
    return {k: obj[k] for k in schema["properties"] if k in obj}


def parse_build_context(text: str) -> BuildContext:
    return BuildContext(**_load_context(text, BUILD_CONTEXT_SCHEMA, "build context"))


def parse_agent_context(text: str) -> AgentContext:
    return AgentContext(**_load_context(text, AGENT_CONTEXT_SCHEMA, "agent context"))


# ---------------------------
# Statement
# ---------------------------

@dataclass(frozen=True)
class ProvenanceConfig:
    artifact_paths: Sequence[str]
    build: BuildContext
    agent: AgentContext


def builder_id(agent: AgentContext) -> str:
    return BUILDER_ID_PREFIX + agent.agent_organization + "/agents/" + agent.agent_id


def build_statement(
    subjects: Sequence[Subject],
    build: BuildContext,
    agent: AgentContext,
    *,
    finished_on: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Assemble the in-toto Statement with a SLSA v0.1 provenance predicate.
    Key order follows the published schema so that the encoded document is stable.
    """
    repository = parse_repository_url(build.repository)
    return {
        "_type": STATEMENT_TYPE,
        "subject": [s.to_dict() for s in subjects],
        "predicateType": PREDICATE_TYPE,
        "predicate": {
            "builder": {"id": builder_id(agent)},
            "metadata": {
                "buildInvocationId": build.build_url,
                "completeness": {
                    "arguments": True,
                    "environment": False,
                    "materials": False,
                },
                "reproducible": False,
                "buildFinishedOn": finished_on or now_rfc3339(),
            },
            "recipe": {
                "type": RECIPE_TYPE,
                "definedInMaterial": 0,
                "entryPoint": build.command,
                "arguments": None,
                "environment": None,
            },
            "materials": [
                {
                    "uri": materials_uri(repository),
                    "digest": {"sha1": build.commit},
                }
            ],
        },
    }


def generate_statement(config: ProvenanceConfig, *, finished_on: Optional[str] = None) -> Dict[str, Any]:
    subjects = collect_all_subjects(config.artifact_paths)
    return build_statement(subjects, config.build, config.agent, finished_on=finished_on)


def encode_statement(statement: Dict[str, Any]) -> bytes:
    return dump_json(statement, pretty=True).encode("utf-8")


def statement_digest(statement: Dict[str, Any]) -> str:
    return "sha256:" + hashlib.sha256(jcs_canonicalize(statement).encode("utf-8")).hexdigest()


def validate_statement(statement: Any, schema: Dict[str, Any]) -> List[Tuple[str, str]]:
    validator = Draft202012Validator(schema, format_checker=FormatChecker())
    errors = sorted(validator.iter_errors(statement), key=lambda e: [str(p) for p in e.path])
    return [(".".join(str(p) for p in err.path) or "<root>", err.message) for err in errors]


# ---------------------------
# Commands
# ---------------------------

def cmd_generate(args: argparse.Namespace) -> int:
    try:
        build = parse_build_context(args.build_context)
        agent = parse_agent_context(args.agent_context)
    except ContextError as e:
        raise SystemExit(str(e)) from e

    config = ProvenanceConfig(artifact_paths=list(args.artifact_path), build=build, agent=agent)
    try:
        statement = generate_statement(config)
    except ArtifactNotFoundError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    payload = encode_statement(statement)
    if not args.quiet:
        print("Provenance:\n" + payload.decode("utf-8"), end="")

    Path(args.output_path).parent.mkdir(parents=True, exist_ok=True)
    Path(args.output_path).write_bytes(payload)
    return 0


def cmd_normalize_repo(args: argparse.Namespace) -> int:
    url = parse_repository_url(args.repository)
    out = url.to_dict()
    out["url"] = url.geturl()
    out["materialsUri"] = materials_uri(url)
    print(dump_json(out), end="")
    return 0


def cmd_digest(args: argparse.Namespace) -> int:
    try:
        subjects = collect_all_subjects(args.paths)
    except ArtifactNotFoundError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1
    print(dump_json([s.to_dict() for s in subjects]), end="")
    return 0


def cmd_canon(args: argparse.Namespace) -> int:
    obj = load_json(Path(args.input))
    print(jcs_canonicalize(obj))
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    statement = load_json(Path(args.statement))
    schema = load_json(Path(args.schema))
    errors = validate_statement(statement, schema)
    if errors:
        for path, message in errors:
            print(f"[SCHEMA] {path}: {message}", file=sys.stderr)
        return 2
    print("OK")
    if args.print_digest:
        print(statement_digest(statement))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="provenancectl.py")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_gen = sub.add_parser("generate", help="Generate an unsigned SLSA provenance statement for build artifacts")
    p_gen.add_argument(
        "--artifact-path",
        "--artifact_path",
        dest="artifact_path",
        action="append",
        required=True,
        help="File or directory of artifacts to attest (repeatable)",
    )
    p_gen.add_argument(
        "--output-path",
        "--output_path",
        dest="output_path",
        default="provenance.json",
        help="Path to write the provenance JSON",
    )
    p_gen.add_argument(
        "--build-context",
        "--build_context",
        dest="build_context",
        required=True,
        help="The '${build}' context value (JSON object)",
    )
    p_gen.add_argument(
        "--agent-context",
        "--agent_context",
        dest="agent_context",
        required=True,
        help="The '${agent}' context value (JSON object)",
    )
    p_gen.add_argument("--quiet", action="store_true", help="Do not echo the statement to stdout")
    p_gen.set_defaults(func=cmd_generate)

    p_repo = sub.add_parser("normalize-repo", help="Normalize a repository locator and print its materials URI")
    p_repo.add_argument("repository")
    p_repo.set_defaults(func=cmd_normalize_repo)

    p_dig = sub.add_parser("digest", help="Print sha256 subjects for files or directories")
    p_dig.add_argument("paths", nargs="+")
    p_dig.set_defaults(func=cmd_digest)

    p_canon = sub.add_parser("canon", help="Print canonical JSON (RFC8785)")
    p_canon.add_argument("input")
    p_canon.set_defaults(func=cmd_canon)

    p_chk = sub.add_parser("check", help="Validate a provenance statement against the schema")
    p_chk.add_argument("--schema", default=str(SCHEMA_PATH), help="Path to provenance schema JSON")
    p_chk.add_argument("--print-digest", action="store_true", help="Also print the statement's canonical digest")
    p_chk.add_argument("statement")
    p_chk.set_defaults(func=cmd_check)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
