"""
Markdown backup format (version 1).

Planner state is backed up as human-readable Markdown, one file per day,
month overview and year overview. The format is a small explicit grammar
rather than general Markdown:

- A file is a ``# `` title line followed by sections.
- A section starts at one of the fixed ``## `` headings below and runs to
  the next ``## `` line or the end of the file.
- Checklist lines are ``- [x] text`` / ``- [ ] text``, optionally followed
  by `` (#tag)`` and an `` <!-- id:... -->`` marker.
- Free text is written verbatim, except that a line starting with ``#`` or
  ``*`` (after any backslashes) gets one extra leading backslash, so user
  text can never be mistaken for a heading or a field label.

Parsers return only the fields whose section is present. Unknown or
malformed sections are skipped with a warning; they never fail the file.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from .types import ExportFile

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Headings
# -----------------------------------------------------------------------------

# Daily page
DAILY_JOURNAL = "## 📔 Daily Journal"
BRAIN_DUMP = "### Brain Dump"
TASKS = "## ✅ Tasks"
NOTES_PANEL = "## 🗒️ Notes Panel"
FORTIFICATION_LOG = "## 🛡️ Fortification Log"

# Monthly overview
MONTHLY_FOCUS = "## 🎯 Monthly Focus"
MONTHLY_RULES = "## 📜 Rules"
MONTHLY_GOALS = "## ✅ Goals"
MONTHLY_REFLECTION = "## 🧠 Reflection"
MONTHLY_HABITS = "## 🔄 Habits"
MONTHLY_NOTES = "## 📝 Notes"

# Yearly overview
YEARLY_FOCUS = "## Theme/Focus"
YEARLY_WHY = "## Why"
YEARLY_VISION = "## Vision"
YEARLY_PRIORITIES = "## Priorities"
YEARLY_GOALS = "## Goals"
YEARLY_NOTES = "## Notes"

PRIORITY_TIERS = ("P1", "P2", "P3", "P4")
DEFAULT_PRIORITY = "P4"

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

_CHECKLIST_RE = re.compile(
    r"^- \[(?P<mark>[ xX])\](?: (?P<text>.*?))?"
    r"(?: \(#(?P<tag>[^)]+)\))?"
    r"(?: <!-- id:(?P<id>\S+) -->)?\s*$"
)
_ANSWER_RE = re.compile(r"^> \*\*(?P<key>.+?)\*\*: ?(?P<text>.*)$")
_LABEL_RE = re.compile(r"^\*\*(?P<key>.+?)\*\*: ?(?P<text>.*)$")
_PRIORITY_RE = re.compile(r"^### (?P<priority>\S.*?)\s*$")
_ESCAPE_RE = re.compile(r"^(\\*[#*])")
_UNESCAPE_RE = re.compile(r"^\\(\\*[#*])")
_INLINE_MARKER_RE = re.compile(r"(\\|\(#|<!--)")
_INLINE_UNESCAPE_RE = re.compile(r"\\(\\|\(#|<!--)")

YEAR_FILE_RE = re.compile(r"^(?P<year>\d{4})-Overview\.md$")
MONTH_FILE_RE = re.compile(r"^(?P<year>\d{4})-(?P<month>\d{2})-Overview\.md$")
DAY_FILE_RE = re.compile(r"^(?P<date>\d{4}-\d{2}-\d{2})\.md$")


# -----------------------------------------------------------------------------
# Text primitives
# -----------------------------------------------------------------------------


def escape_text(text: str) -> str:
    """Escape lines that would read as headings or labels."""
    return "\n".join(_ESCAPE_RE.sub(r"\\\1", line) for line in text.split("\n"))


def unescape_text(text: str) -> str:
    return "\n".join(_UNESCAPE_RE.sub(r"\1", line) for line in text.split("\n"))


def _one_line(text: Any) -> str:
    return " ".join(str(text).split())


def render_checklist_item(text: str, completed: bool, *, tag: Optional[str] = None,
                          id: Optional[str] = None) -> str:
    name = _INLINE_MARKER_RE.sub(r"\\\1", _one_line(text))
    line = f"- [{'x' if completed else ' '}] {name}"
    if tag:
        line += f" (#{_one_line(tag)})"
    if id:
        line += f" <!-- id:{id} -->"
    return line


def parse_checklist_item(line: str) -> Optional[dict[str, Any]]:
    """Parse one checklist line into ``{completed, text, tag?, id?}``."""
    m = _CHECKLIST_RE.match(line.rstrip())
    if not m:
        return None
    item: dict[str, Any] = {
        "completed": m.group("mark") in ("x", "X"),
        "text": _INLINE_UNESCAPE_RE.sub(r"\1", (m.group("text") or "").strip()),
    }
    if m.group("tag"):
        item["tag"] = m.group("tag")
    if m.group("id"):
        item["id"] = m.group("id")
    return item


def parse_checklist(text: str) -> list[dict[str, Any]]:
    items = []
    for line in text.split("\n"):
        item = parse_checklist_item(line)
        if item is not None:
            items.append(item)
    return items


def split_sections(content: str) -> dict[str, str]:
    """
    Split a file into ``{heading: body}``.

    A heading is any line starting with ``## ``; the body is the text up to
    the next heading, with surrounding blank lines removed. Text before the
    first heading (the title) is dropped.
    """
    sections: dict[str, str] = {}
    heading: Optional[str] = None
    body: list[str] = []
    for line in content.replace("\r\n", "\n").split("\n"):
        if line.startswith("## "):
            if heading is not None:
                sections[heading] = "\n".join(body).strip("\n")
            heading = line.rstrip()
            body = []
        elif heading is not None:
            body.append(line)
    if heading is not None:
        sections[heading] = "\n".join(body).strip("\n")
    return sections


def _warn_unknown(sections: dict[str, str], known: tuple[str, ...], kind: str) -> None:
    for heading in sections:
        if heading not in known:
            logger.warning("Skipping unrecognized section in %s file: %r", kind, heading)


# -----------------------------------------------------------------------------
# Daily page
# -----------------------------------------------------------------------------


def _render_labeled(key: str, value: Any, prefix: str = "") -> list[str]:
    lines = escape_text(str(value)).split("\n")
    out = [f"{prefix}**{key}**: {lines[0]}"]
    out.extend(f"{prefix}{line}".rstrip() if prefix else line for line in lines[1:])
    return out


def render_daily_page(
    date_str: str,
    tasks: list[dict[str, Any]],
    note: Optional[dict[str, Any]] = None,
    journal: Optional[dict[str, Any]] = None,
    fortification: Any = None,
) -> str:
    """Render one day: journal, tasks by priority, notes panel, fortification log."""
    md = f"# {date_str}\n\n"

    if journal:
        md += f"{DAILY_JOURNAL}\n"
        for key, answer in (journal.get("responses") or {}).items():
            if answer:
                md += "\n".join(_render_labeled(key, answer, prefix="> ")) + "\n\n"
        if journal.get("notes"):
            md += f"{BRAIN_DUMP}\n{escape_text(journal['notes'])}\n\n"

    if tasks:
        md += f"{TASKS}\n"
        tiers: dict[str, list[dict[str, Any]]] = {p: [] for p in PRIORITY_TIERS}
        for task in tasks:
            tiers.setdefault(task.get("priority") or DEFAULT_PRIORITY, []).append(task)
        for priority, tier in tiers.items():
            if not tier:
                continue
            md += f"### {priority}\n"
            for task in tier:
                md += render_checklist_item(
                    task.get("name", ""),
                    bool(task.get("completed")),
                    tag=task.get("tag"),
                    id=task.get("id"),
                ) + "\n"
            md += "\n"

    if note and note.get("content"):
        md += f"{NOTES_PANEL}\n{escape_text(note['content'])}\n\n"

    if fortification:
        md += f"{FORTIFICATION_LOG}\n```json\n{json.dumps(fortification, indent=2, ensure_ascii=False)}\n```\n"

    return md


def _parse_journal(body: str) -> dict[str, Any]:
    journal: dict[str, Any] = {"responses": {}}
    answers_part, has_dump, dump = body.partition(f"\n{BRAIN_DUMP}\n")
    if body.startswith(f"{BRAIN_DUMP}\n"):
        answers_part, has_dump, dump = "", BRAIN_DUMP, body[len(BRAIN_DUMP) + 1:]
    elif body.strip() == BRAIN_DUMP:
        answers_part, has_dump, dump = "", BRAIN_DUMP, ""

    key: Optional[str] = None
    lines: list[str] = []

    def close() -> None:
        if key is not None:
            journal["responses"][key] = unescape_text("\n".join(lines).rstrip("\n"))

    for line in answers_part.split("\n"):
        m = _ANSWER_RE.match(line)
        if m:
            close()
            key, lines = m.group("key"), [m.group("text")]
        elif key is not None and line.startswith(">"):
            lines.append(line[2:] if line.startswith("> ") else line[1:])
        elif line.strip():
            logger.warning("Skipping unrecognized journal line: %r", line)

    close()
    if has_dump:
        journal["notes"] = unescape_text(dump.strip("\n"))
    return journal


def _parse_tasks(body: str) -> list[dict[str, Any]]:
    tasks = []
    priority = DEFAULT_PRIORITY
    for line in body.split("\n"):
        m = _PRIORITY_RE.match(line)
        if m:
            priority = m.group("priority")
            continue
        item = parse_checklist_item(line)
        if item is None:
            continue
        task = {
            "name": item["text"],
            "completed": item["completed"],
            "priority": priority,
        }
        if "tag" in item:
            task["tag"] = item["tag"]
        if "id" in item:
            task["id"] = item["id"]
        tasks.append(task)
    return tasks


def _parse_json_block(body: str) -> Any:
    text = body.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse fortification log: %s", e)
        return None


@dataclass
class DailyPage:
    """Fragments recovered from one daily file."""
    tasks: list[dict[str, Any]] = field(default_factory=list)
    note: Optional[str] = None
    journal: Optional[dict[str, Any]] = None
    fortification: Any = None


def parse_daily_page(content: str) -> DailyPage:
    sections = split_sections(content)
    _warn_unknown(sections, (DAILY_JOURNAL, TASKS, NOTES_PANEL, FORTIFICATION_LOG), "daily")
    page = DailyPage()
    if TASKS in sections:
        page.tasks = _parse_tasks(sections[TASKS])
    if NOTES_PANEL in sections:
        page.note = unescape_text(sections[NOTES_PANEL])
    if DAILY_JOURNAL in sections:
        page.journal = _parse_journal(sections[DAILY_JOURNAL])
    if FORTIFICATION_LOG in sections:
        page.fortification = _parse_json_block(sections[FORTIFICATION_LOG])
    return page


# -----------------------------------------------------------------------------
# Monthly overview
# -----------------------------------------------------------------------------


def render_monthly_plan(month_id: str, data: Optional[dict[str, Any]]) -> str:
    if not data:
        return ""
    md = f"# Plan for {month_id}\n\n"
    if data.get("monthlyFocus"):
        md += f"{MONTHLY_FOCUS}\n{escape_text(data['monthlyFocus'])}\n\n"
    if data.get("rules"):
        md += f"{MONTHLY_RULES}\n{escape_text(data['rules'])}\n\n"
    if data.get("goals"):
        md += f"{MONTHLY_GOALS}\n"
        for goal in data["goals"]:
            md += render_checklist_item(goal.get("text", ""), bool(goal.get("completed"))) + "\n"
        md += "\n"
    reflection = {k: v for k, v in (data.get("journal") or {}).items() if v}
    if reflection:
        md += f"{MONTHLY_REFLECTION}\n"
        for key, value in reflection.items():
            md += "\n".join(_render_labeled(key, value)) + "\n\n"
    if data.get("habits"):
        md += f"{MONTHLY_HABITS}\n"
        for habit in data["habits"]:
            days = sum(1 for done in (habit.get("days") or {}).values() if done)
            md += f"- {_one_line(habit.get('name', ''))}: {days} days\n"
        md += "\n"
    if data.get("notes"):
        md += f"{MONTHLY_NOTES}\n{escape_text(data['notes'])}\n"
    return md


def _parse_labeled(body: str) -> dict[str, str]:
    entries: dict[str, str] = {}
    key: Optional[str] = None
    lines: list[str] = []
    for line in body.split("\n"):
        m = _LABEL_RE.match(line)
        if m:
            if key is not None:
                entries[key] = unescape_text("\n".join(lines).strip("\n"))
            key, lines = m.group("key"), [m.group("text")]
        elif key is not None:
            lines.append(line)
    if key is not None:
        entries[key] = unescape_text("\n".join(lines).strip("\n"))
    return entries


def parse_monthly_plan(content: str) -> dict[str, Any]:
    """Recover monthly fields; habits are a render-only summary."""
    sections = split_sections(content)
    _warn_unknown(sections, (MONTHLY_FOCUS, MONTHLY_RULES, MONTHLY_GOALS, MONTHLY_REFLECTION,
                             MONTHLY_HABITS, MONTHLY_NOTES), "monthly")
    data: dict[str, Any] = {}
    if MONTHLY_FOCUS in sections:
        data["monthlyFocus"] = unescape_text(sections[MONTHLY_FOCUS])
    if MONTHLY_RULES in sections:
        data["rules"] = unescape_text(sections[MONTHLY_RULES])
    if MONTHLY_GOALS in sections:
        data["goals"] = [
            {"text": item["text"], "completed": item["completed"]}
            for item in parse_checklist(sections[MONTHLY_GOALS])
        ]
    if MONTHLY_REFLECTION in sections:
        data["journal"] = _parse_labeled(sections[MONTHLY_REFLECTION])
    if MONTHLY_NOTES in sections:
        data["notes"] = unescape_text(sections[MONTHLY_NOTES])
    return data


# -----------------------------------------------------------------------------
# Yearly overview
# -----------------------------------------------------------------------------

_YEARLY_TEXT_FIELDS = (
    (YEARLY_WHY, "whyStatement"),
    (YEARLY_VISION, "vision"),
    (YEARLY_PRIORITIES, "priorities"),
)


def render_yearly_plan(year: str, data: Optional[dict[str, Any]]) -> str:
    if not data:
        return ""
    md = f"# {year} Year Plan\n\n"
    md += f"{YEARLY_FOCUS}\n{escape_text(data.get('yearFocus') or '')}\n\n"
    for heading, key in _YEARLY_TEXT_FIELDS:
        if data.get(key):
            md += f"{heading}\n{escape_text(data[key])}\n\n"
    if data.get("goals"):
        md += f"{YEARLY_GOALS}\n"
        for goal in data["goals"]:
            md += render_checklist_item(goal.get("text", ""), bool(goal.get("completed"))) + "\n"
        md += "\n"
    if data.get("notes"):
        md += f"{YEARLY_NOTES}\n{escape_text(data['notes'])}\n"
    return md


def parse_yearly_plan(content: str) -> dict[str, Any]:
    sections = split_sections(content)
    known = (YEARLY_FOCUS, YEARLY_GOALS, YEARLY_NOTES) + tuple(h for h, _ in _YEARLY_TEXT_FIELDS)
    _warn_unknown(sections, known, "yearly")
    data: dict[str, Any] = {}
    if YEARLY_FOCUS in sections:
        data["yearFocus"] = unescape_text(sections[YEARLY_FOCUS])
    for heading, key in _YEARLY_TEXT_FIELDS:
        if heading in sections:
            data[key] = unescape_text(sections[heading])
    if YEARLY_GOALS in sections:
        data["goals"] = [
            {"text": item["text"], "completed": item["completed"]}
            for item in parse_checklist(sections[YEARLY_GOALS])
        ]
    if YEARLY_NOTES in sections:
        data["notes"] = unescape_text(sections[YEARLY_NOTES])
    return data


# -----------------------------------------------------------------------------
# File layout
# -----------------------------------------------------------------------------


def parse_date(date_str: str) -> Optional[date]:
    """Strict YYYY-MM-DD parse; None for anything else."""
    if not DAY_FILE_RE.match(f"{date_str}.md"):
        return None
    try:
        return date.fromisoformat(date_str)
    except ValueError:
        return None


def parse_month_id(month_id: str) -> Optional[tuple[int, int]]:
    """``"2025-5"`` or ``"2025-05"`` -> ``(2025, 5)``."""
    m = re.match(r"^(\d{4})-(\d{1,2})$", month_id)
    if not m:
        return None
    year, month = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        return None
    return year, month


def month_key(year: int, month: int) -> str:
    """Document id of a monthly plan as the planner stores it (unpadded month)."""
    return f"{year}-{month}"


def month_folder(year: int, month: int) -> str:
    return f"{year:04d}/{month:02d}-{MONTH_NAMES[month - 1]}"


@dataclass
class BackupData:
    """Snapshot of everything the backup covers, as read from the store."""
    tasks: list[dict[str, Any]] = field(default_factory=list)
    daily_notes: dict[str, dict[str, Any]] = field(default_factory=dict)
    monthly_plans: dict[str, dict[str, Any]] = field(default_factory=dict)
    yearly_plans: dict[str, dict[str, Any]] = field(default_factory=dict)
    journal: dict[str, Any] = field(default_factory=dict)
    fortification: dict[str, Any] = field(default_factory=dict)


def render_backup(data: BackupData) -> list[ExportFile]:
    """
    Render a snapshot into backup files grouped by year and month.

    Keys that are not valid years / months / dates are skipped.
    """
    files: dict[str, str] = {}

    for year, plan in data.yearly_plans.items():
        if re.match(r"^\d{4}$", year) and plan:
            files[f"{year}/{year}-Overview.md"] = render_yearly_plan(year, plan)

    for month_id, plan in data.monthly_plans.items():
        parsed = parse_month_id(month_id)
        if parsed is None or not plan:
            continue
        year, month = parsed
        files[f"{month_folder(year, month)}/{year:04d}-{month:02d}-Overview.md"] = \
            render_monthly_plan(month_id, plan)

    journal = {k: v for k, v in data.journal.items() if not k.startswith("_")}
    fortification = {k: v for k, v in data.fortification.items() if not k.startswith("_")}
    dates = set(data.daily_notes) | set(journal) | set(fortification)
    dates |= {t["date"] for t in data.tasks if t.get("date")}

    for date_str in sorted(dates):
        day = parse_date(date_str)
        if day is None:
            continue
        day_tasks = [t for t in data.tasks if t.get("date") == date_str]
        note = data.daily_notes.get(date_str)
        day_journal = journal.get(date_str)
        day_fortification = fortification.get(date_str)
        if not (day_tasks or note or day_journal or day_fortification):
            continue
        files[f"{month_folder(day.year, day.month)}/{date_str}.md"] = render_daily_page(
            date_str, day_tasks, note, day_journal, day_fortification,
        )

    return [ExportFile(path, content) for path, content in sorted(files.items())]
