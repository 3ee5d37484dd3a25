"""
Content analyzer used by the extractData and generateReport steps.

Deterministic, local-only analysis: category by extension, keyword
frequency for text files, a content hash for duplicate detection, and a
markdown rendering of the results. Never writes to disk.
"""

import hashlib
import logging
import os
import re
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Text files larger than this are hashed but not scanned for keywords
MAX_TEXT_BYTES = 1024 * 1024
MAX_KEYWORDS = 10

# extension -> (category, subcategory)
_CATEGORIES: Dict[str, Tuple[str, str]] = {
    ".pdf": ("document", "pdf"),
    ".doc": ("document", "word"),
    ".docx": ("document", "word"),
    ".txt": ("document", "text"),
    ".md": ("document", "markdown"),
    ".rtf": ("document", "rtf"),
    ".jpg": ("image", "photo"),
    ".jpeg": ("image", "photo"),
    ".png": ("image", "graphic"),
    ".gif": ("image", "animated"),
    ".svg": ("image", "vector"),
    ".bmp": ("image", "bitmap"),
    ".tiff": ("image", "photo"),
    ".mp4": ("video", "mp4"),
    ".avi": ("video", "avi"),
    ".mov": ("video", "mov"),
    ".mkv": ("video", "mkv"),
    ".mp3": ("audio", "mp3"),
    ".wav": ("audio", "wav"),
    ".flac": ("audio", "flac"),
    ".zip": ("archive", "zip"),
    ".tar": ("archive", "tar"),
    ".gz": ("archive", "gzip"),
    ".7z": ("archive", "7z"),
    ".py": ("code", "python"),
    ".js": ("code", "javascript"),
    ".ts": ("code", "typescript"),
    ".html": ("code", "html"),
    ".css": ("code", "css"),
    ".sql": ("code", "sql"),
    ".json": ("data", "json"),
    ".xml": ("data", "xml"),
    ".csv": ("data", "csv"),
    ".xlsx": ("data", "spreadsheet"),
    ".xls": ("data", "spreadsheet"),
}

_TEXT_EXTENSIONS = frozenset({
    ".txt", ".md", ".json", ".xml", ".csv", ".py", ".js", ".ts",
    ".html", ".css", ".sql",
})

_STOPWORDS = frozenset({
    "that", "this", "with", "from", "have", "were", "which", "their",
    "there", "would", "about", "into", "your", "will", "been", "they",
    "them", "then", "than", "what", "when", "where", "while", "also",
})

# keyword -> topical label, first hit wins
_TOPIC_KEYWORDS: List[Tuple[str, frozenset]] = [
    ("financial", frozenset({"invoice", "receipt", "payment", "bill", "transaction", "cost", "price"})),
    ("legal", frozenset({"contract", "agreement", "legal", "terms", "policy", "license"})),
    ("technical", frozenset({"api", "documentation", "technical", "manual", "guide"})),
    ("report", frozenset({"report", "summary", "analysis", "dashboard", "metrics", "kpi"})),
]

_WORD_RE = re.compile(r"[a-z0-9]+")


@dataclass
class FileAnalysis:
    path: str
    name: str
    extension: str
    size: int
    category: str
    subcategory: str
    sha256: str
    keywords: List[str] = field(default_factory=list)
    topic: Optional[str] = None
    data_format: Optional[str] = None
    line_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def categorize(filename: str) -> Tuple[str, str]:
    """Return (category, subcategory) for a file name."""
    ext = os.path.splitext(filename)[1].lower()
    return _CATEGORIES.get(ext, ("other", ext.lstrip(".") or "none"))


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> List[str]:
    """Most frequent words longer than 3 characters, ties broken alphabetically."""
    counts = Counter(
        w for w in _WORD_RE.findall(text.lower())
        if len(w) > 3 and w not in _STOPWORDS and not w.isdigit()
    )
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [word for word, _ in ranked[:limit]]


def _topic_for(keywords: Iterable[str]) -> Optional[str]:
    words = set(keywords)
    for topic, markers in _TOPIC_KEYWORDS:
        if words & markers:
            return topic
    return None


def _data_format(ext: str, text: str) -> str:
    if ext == ".json":
        return "json"
    if ext == ".csv":
        return "csv"
    if ext == ".xml":
        return "xml"
    if "{" in text and "}" in text:
        return "structured"
    return "unstructured"


class ContentAnalyzer:
    """Analyze files inside an already-resolved directory."""

    def __init__(self, max_text_bytes: int = MAX_TEXT_BYTES) -> None:
        self.max_text_bytes = max_text_bytes

    def analyze_file(self, path: str) -> FileAnalysis:
        name = os.path.basename(path)
        ext = os.path.splitext(name)[1].lower()
        category, subcategory = categorize(name)
        size = os.path.getsize(path)

        digest = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                digest.update(chunk)

        analysis = FileAnalysis(
            path=path,
            name=name,
            extension=ext,
            size=size,
            category=category,
            subcategory=subcategory,
            sha256=digest.hexdigest(),
        )

        if ext in _TEXT_EXTENSIONS and size <= self.max_text_bytes:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                text = f.read()
            analysis.keywords = extract_keywords(text)
            analysis.topic = _topic_for(analysis.keywords)
            analysis.data_format = _data_format(ext, text)
            analysis.line_count = text.count("\n") + (1 if text and not text.endswith("\n") else 0)
        return analysis

    def analyze_directory(
        self,
        directory: str,
        extensions: Optional[Iterable[str]] = None,
        recursive: bool = False,
    ) -> List[FileAnalysis]:
        """Analyze regular files under ``directory``. Unreadable files are skipped."""
        wanted = {e.lower() if e.startswith(".") else "." + e.lower() for e in extensions or []}
        results: List[FileAnalysis] = []
        for root, dirs, files in os.walk(directory):
            dirs.sort()
            for fname in sorted(files):
                if wanted and os.path.splitext(fname)[1].lower() not in wanted:
                    continue
                full = os.path.join(root, fname)
                if os.path.islink(full):
                    continue
                try:
                    results.append(self.analyze_file(full))
                except OSError as e:
                    logger.warning("Skipping %s: %s", full, e)
            if not recursive:
                break
        return results

    @staticmethod
    def find_duplicates(analyses: Iterable[FileAnalysis]) -> List[List[str]]:
        """Groups of file names sharing the same content hash."""
        by_hash: Dict[str, List[str]] = {}
        for a in analyses:
            by_hash.setdefault(a.sha256, []).append(a.name)
        return [sorted(names) for names in by_hash.values() if len(names) > 1]

    def summarize(self, analyses: List[FileAnalysis]) -> Dict[str, Any]:
        categories: Dict[str, List[str]] = {}
        for a in analyses:
            categories.setdefault(a.category, []).append(a.name)
        keyword_counts = Counter(k for a in analyses for k in a.keywords)
        return {
            "totalFiles": len(analyses),
            "totalBytes": sum(a.size for a in analyses),
            "categories": {k: sorted(v) for k, v in sorted(categories.items())},
            "topKeywords": [k for k, _ in keyword_counts.most_common(MAX_KEYWORDS)],
            "duplicates": self.find_duplicates(analyses),
        }

    def render_report(self, goal: str, summary: Optional[Dict[str, Any]] = None) -> str:
        """Markdown report for ``goal``; ``summary`` comes from summarize()."""
        lines = ["# Generated Report", "", f"**Goal:** {goal}", ""]
        if not summary:
            lines.append("No analyzed data was available for this report.")
            return "\n".join(lines) + "\n"

        lines.append(
            f"Analyzed {summary.get('totalFiles', 0)} file(s), "
            f"{summary.get('totalBytes', 0)} bytes in total."
        )
        lines.append("")
        categories = summary.get("categories") or {}
        if categories:
            lines.append("## Files by category")
            lines.append("")
            for category, names in categories.items():
                lines.append(f"- **{category}** ({len(names)}): {', '.join(names)}")
            lines.append("")
        keywords = summary.get("topKeywords") or []
        if keywords:
            lines.append("## Top keywords")
            lines.append("")
            lines.append(", ".join(keywords))
            lines.append("")
        duplicates = summary.get("duplicates") or []
        if duplicates:
            lines.append("## Duplicate files")
            lines.append("")
            for group in duplicates:
                lines.append("- " + ", ".join(group))
            lines.append("")
        return "\n".join(lines)
