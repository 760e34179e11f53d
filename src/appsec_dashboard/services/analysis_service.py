"""Analysis service — one-shot code review and threat modeling.

Learn: Unlike chat, these runs don't use the user's session. Each request
opens a fresh agent conversation, gives it a bounded snapshot of the
source tree, stores the markdown answer as a report file, and throws
the conversation away.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import structlog

from appsec_dashboard.agent.backends import AgentBackend, AgentConfig, Capability
from appsec_dashboard.agent.runner import AgentRunner
from appsec_dashboard.config import settings
from appsec_dashboard.errors import ConfigurationError, InvalidInput

logger = structlog.get_logger()

DEFAULT_QUERIES: dict[Capability, str] = {
    Capability.CODE_REVIEW: "Review this codebase for security vulnerabilities",
    Capability.THREAT_MODEL: "Perform threat modeling analysis",
}

REPORT_PREFIXES: dict[Capability, str] = {
    Capability.CODE_REVIEW: "code_review_report",
    Capability.THREAT_MODEL: "threat_model_report",
}

SKIP_DIRS = {
    ".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv",
    "dist", "build", ".mypy_cache", ".pytest_cache", ".tox",
}

SOURCE_SUFFIXES = {
    ".py", ".js", ".jsx", ".ts", ".tsx", ".go", ".java", ".kt", ".rb", ".php",
    ".cs", ".c", ".h", ".cpp", ".rs", ".swift", ".scala", ".sh", ".sql",
    ".yaml", ".yml", ".json", ".toml", ".ini", ".cfg", ".tf", ".xml", ".html",
    ".md", ".txt", ".env", ".conf", ".gradle", ".dockerfile",
}


@dataclass
class AnalysisReport:
    capability: Capability
    report_path: str
    content: str


def build_repository_snapshot(
    root: Path,
    max_files: Optional[int] = None,
    max_bytes: Optional[int] = None,
) -> str:
    """Render a source tree as a markdown document for the agent.

    Walks `root` in sorted order, skipping VCS/dependency dirs and
    non-source files. Stops adding file bodies once `max_bytes` of
    content is included; remaining files are listed by path only.
    """
    max_files = max_files or settings.max_context_files
    max_bytes = max_bytes or settings.max_context_bytes

    files: list[Path] = []
    for path in sorted(root.rglob("*")):
        if any(part in SKIP_DIRS for part in path.relative_to(root).parts):
            continue
        if not path.is_file():
            continue
        if path.suffix.lower() in SOURCE_SUFFIXES or path.name in ("Dockerfile", "Makefile"):
            files.append(path)
        if len(files) >= max_files:
            break

    sections = [f"# Repository: {root.name}", "", "## Files", ""]
    sections += [f"- {p.relative_to(root)}" for p in files]
    sections.append("")

    used = 0
    for path in files:
        try:
            body = path.read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError):
            continue
        if used + len(body) > max_bytes:
            sections.append(f"_(content truncated after {used} bytes)_")
            break
        used += len(body)
        sections += [f"## {path.relative_to(root)}", "```", body, "```", ""]

    return "\n".join(sections)


class AnalysisService:
    """Run a capability over a source directory and save the report."""

    def __init__(
        self,
        backend: AgentBackend,
        runner: AgentRunner,
        reports_dir: Optional[str] = None,
    ):
        self.backend = backend
        self.runner = runner
        self.reports_dir = Path(reports_dir or settings.reports_dir)

    async def analyze(
        self, capability: Capability, repo_path: Optional[str], query: Optional[str] = None
    ) -> AnalysisReport:
        if not repo_path:
            raise InvalidInput("Repository path required")
        root = Path(repo_path).expanduser()
        if not root.is_dir():
            raise InvalidInput("Repository path not found", f"{repo_path} is not a directory")

        ok, msg = self.backend.validate_environment()
        if not ok:
            raise ConfigurationError(message=msg)

        prompt = "\n\n".join([
            query or DEFAULT_QUERIES[capability],
            build_repository_snapshot(root),
        ])
        context = await self.backend.create_context(
            AgentConfig(
                capability=capability,
                environment=settings.agent_environment,
                verbose=settings.agent_verbose,
                src_dir=str(root),
            )
        )
        response = await self.runner.run_once(context, capability, prompt)

        report_path = self._write_report(capability, response.text)
        logger.info(
            "analysis.completed",
            capability=capability.value,
            repo=str(root),
            report=str(report_path),
        )
        return AnalysisReport(
            capability=capability,
            report_path=str(report_path),
            content=response.text,
        )

    def _write_report(self, capability: Capability, content: str) -> Path:
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        path = self.reports_dir / f"{REPORT_PREFIXES[capability]}_{stamp}.md"
        path.write_text(content, encoding="utf-8")
        return path

    def list_reports(self, name_filter: Optional[str] = None) -> list[dict]:
        """Markdown reports in the reports dir, newest first."""
        if not self.reports_dir.is_dir():
            return []
        pattern = re.compile(re.escape(name_filter)) if name_filter else None
        reports = []
        for path in self.reports_dir.glob("*.md"):
            if pattern and not pattern.search(path.name):
                continue
            stat = path.stat()
            reports.append({
                "name": path.name,
                "path": str(path),
                "createdAt": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            })
        return sorted(reports, key=lambda r: r["createdAt"], reverse=True)
