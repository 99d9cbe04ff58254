"""
Output rendering and formatting.

Turns a SessionSnapshot into dashboard text. Rendering is a pure function of
the snapshot; nothing here touches the terminal.
"""

from __future__ import annotations

import os
from typing import Sequence

from wcwidth import wcswidth

from .catalog import CATEGORY_KEYS, CATEGORY_ORDER, category_label
from .common import strip_ansi
from .session import (
    UPDATE_STATUSES,
    SessionSnapshot,
    SessionState,
    ToolRuntimeState,
    ToolStatus,
    UpdateSummary,
)
from .version import MISSING, PLACEHOLDER, is_resolved

# Environment options
USE_EMOJI = os.environ.get("SPARK_EMOJI", "1") == "1"
USE_COLOR = os.environ.get("SPARK_COLOR", "1") == "1"

# ANSI color codes
GREEN = "\033[32m"
BOLD_GREEN = "\033[1;32m"
YELLOW = "\033[33m"
BLUE = "\033[34m"
RED = "\033[31m"
GRAY = "\033[90m"
BOLD = "\033[1m"
HEADER = "\033[1;97;44m"
REVERSE = "\033[7m"
RESET = "\033[0m"

NAME_WIDTH = 22
TWO_COLUMN_MIN_WIDTH = 110
SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
PLAIN_SPINNER_FRAMES = "|/-\\"

KEY_FOR_CATEGORY = {category: key.upper() for key, category in CATEGORY_KEYS.items()}

SPLASH_ART = r"""
   ____  ____   _    ____  _  __
  / ___||  _ \ / \  |  _ \| |/ /
  \___ \| |_) / _ \ | |_) | ' /
   ___) |  __/ ___ \|  _ <| . \
  |____/|_| /_/   \_\_| \_\_|\_\
"""


def colorize(text: str, color: str) -> str:
    """Apply color to text.

    Args:
        text: Text to colorize
        color: ANSI color code

    Returns:
        Colored text or plain text if colors disabled
    """
    if not USE_COLOR or not text:
        return text
    return f"{color}{text}{RESET}"


def _icon(emoji: str, plain: str) -> str:
    return emoji if USE_EMOJI else plain


def spinner(frame: int) -> str:
    frames = SPINNER_FRAMES if USE_EMOJI else PLAIN_SPINNER_FRAMES
    return frames[frame % len(frames)]


def visible_len(text: str) -> int:
    """Display width in terminal cells; emoji count as two."""
    plain = strip_ansi(text)
    width = wcswidth(plain)
    # -1 means a non-printable character slipped through
    return width if width >= 0 else len(plain)


def pad(text: str, width: int) -> str:
    """Left-justify text to a visible width, ignoring ANSI codes."""
    return text + " " * max(0, width - visible_len(text))


def truncate(text: str, width: int) -> str:
    if len(text) > width:
        return text[: width - 1] + "…"
    return text


def status_text(state: ToolRuntimeState, frame: int = 0) -> str:
    """Status column for a tool outside of an update cycle."""
    status = state.status
    if status == ToolStatus.CHECKING:
        return colorize(f"{spinner(frame)} Checking...", GRAY)
    if status == ToolStatus.MISSING:
        return colorize(f"{_icon('❌', 'x')} Missing", RED)
    if status == ToolStatus.INSTALLED:
        return colorize(f"{_icon('✅', '✓')} {state.local_version}", GREEN)
    if status == ToolStatus.OUTDATED:
        arrow = _icon("⬆", "↑")
        return (
            colorize(f"{arrow} {state.local_version}", YELLOW)
            + " → "
            + colorize(state.remote_version, BOLD_GREEN)
        )
    if status == ToolStatus.UNMANAGED:
        return colorize(f"{_icon('❓', '?')} {state.local_version} (unmanaged)", BLUE)
    if status == ToolStatus.MANUAL_CHECK:
        return colorize(f"{_icon('⚠', '!')} {state.local_version} (manual check)", YELLOW)
    if status == ToolStatus.UPDATING:
        return colorize(f"{spinner(frame)} Updating...", BLUE)
    if status == ToolStatus.UPDATED:
        return colorize(f"{_icon('✅', '✓')} Updated {state.local_version}", BOLD_GREEN)
    if status == ToolStatus.FAILED:
        return colorize(f"{_icon('❌', 'x')} Failed", RED)
    return state.local_version


def _update_phase_status(snapshot: SessionSnapshot, index: int) -> str:
    state = snapshot.tools[index]
    if state.status in UPDATE_STATUSES:
        return status_text(state, snapshot.frame)
    if index in snapshot.selection:
        return colorize(f"{_icon('⏳', '~')} Pending...", GRAY)
    return colorize(state.local_version, GRAY)


def render_tool_line(snapshot: SessionSnapshot, index: int) -> str:
    """One row: cursor, checkbox, name and status."""
    state = snapshot.tools[index]
    at_cursor = index == snapshot.cursor and snapshot.state in (SessionState.MAIN, SessionState.SEARCH)

    cursor = colorize("❯", BOLD_GREEN) if at_cursor else " "
    checked = colorize("[✔]", GREEN) if index in snapshot.selection else colorize("[ ]", GRAY)
    name = pad(truncate(state.tool.name, NAME_WIDTH), NAME_WIDTH)
    if at_cursor:
        name = colorize(name, BOLD)

    if snapshot.state in (SessionState.UPDATING, SessionState.SUMMARY):
        status = _update_phase_status(snapshot, index)
    else:
        status = status_text(state, snapshot.frame)

    return f"{cursor} {checked} {name} {status}"


def render_category_card(snapshot: SessionSnapshot, category: str) -> list[str]:
    """Title line plus one line per visible tool; empty when nothing is visible."""
    visible = set(snapshot.visible)
    rows = [
        render_tool_line(snapshot, i)
        for i, state in enumerate(snapshot.tools)
        if state.tool.category == category and i in visible
    ]
    if not rows:
        return []

    key = KEY_FOR_CATEGORY.get(category, " ")
    title = f"[{colorize(key, GREEN)}] {colorize(category_label(category), BOLD)}"
    if category in snapshot.protected_categories:
        title += colorize(" (protected)", RED)
    return [title, *rows, ""]


def _categories(snapshot: SessionSnapshot) -> list[str]:
    present = []
    for state in snapshot.tools:
        if state.tool.category not in present:
            present.append(state.tool.category)
    ordered = [c for c in CATEGORY_ORDER if c in present]
    return ordered + [c for c in present if c not in ordered]


def render_grid(snapshot: SessionSnapshot, width: int) -> list[str]:
    """Category cards, in two columns when the terminal is wide enough."""
    cards = [card for card in (render_category_card(snapshot, c) for c in _categories(snapshot)) if card]
    if not cards:
        return [colorize("No tools match the filter.", GRAY)]

    if width < TWO_COLUMN_MIN_WIDTH or len(cards) < 2:
        return [line for card in cards for line in card]

    half = (len(cards) + 1) // 2
    left = [line for card in cards[:half] for line in card]
    right = [line for card in cards[half:] for line in card]
    column_width = width // 2
    lines = []
    for i in range(max(len(left), len(right))):
        lhs = left[i] if i < len(left) else ""
        rhs = right[i] if i < len(right) else ""
        lines.append(pad(lhs, column_width) + rhs)
    return lines


def render_header(snapshot: SessionSnapshot) -> str:
    if snapshot.state == SessionState.UPDATING:
        remaining = snapshot.total_updates - snapshot.completed_updates
        text = f" UPDATING ({remaining} remaining)... "
    elif snapshot.state == SessionState.SUMMARY:
        text = " UPDATE SUMMARY "
    elif snapshot.scanning:
        text = f" SPARK DASHBOARD (Scanning {snapshot.pending_local}...) "
    else:
        text = " SPARK DASHBOARD "
    return colorize(text, HEADER)


def render_search_bar(snapshot: SessionSnapshot) -> str:
    caret = "█" if snapshot.state == SessionState.SEARCH else ""
    count = f" ({len(snapshot.visible)} results)" if snapshot.filter_text else ""
    line = colorize("Search: ", YELLOW) + colorize(f" {snapshot.filter_text}{caret} ", REVERSE) + colorize(count, GRAY)
    if snapshot.state == SessionState.SEARCH:
        line += "\n" + colorize("[ESC] Cancel • [ENTER] Confirm", GRAY)
    return line


def render_progress_bar(snapshot: SessionSnapshot, width: int) -> str:
    bar_width = max(10, min(50, width - 30))
    filled = int(bar_width * snapshot.progress)
    bar = "█" * filled + "░" * (bar_width - filled)
    label = f"Progress: {snapshot.completed_updates}/{snapshot.total_updates} completed"
    return colorize(label, BLUE) + "\n" + colorize(bar, GREEN) + f" {snapshot.progress * 100:.0f}%"


def help_text(snapshot: SessionSnapshot) -> str:
    if snapshot.state == SessionState.SEARCH:
        return "[Type to search] • [ESC] Cancel • [ENTER] Confirm"
    if snapshot.state == SessionState.UPDATING:
        return "[UPDATING IN PROGRESS... PLEASE WAIT] • [CTRL+C] Abort"
    if snapshot.state == SessionState.SUMMARY:
        return "[UPDATE COMPLETE] Press any key to return to dashboard"
    text = "[SPACE] Select • [G/A] Group/All • [/] Search • [D] Dry-Run • [ENTER] Update • [Q] Quit"
    if snapshot.filter_text:
        text = "[Filter active] " + text + " • [ESC] Clear filter"
    return text


def render_main(snapshot: SessionSnapshot, width: int) -> str:
    parts = [render_header(snapshot), ""]
    if snapshot.state == SessionState.SEARCH or snapshot.filter_text:
        parts += [render_search_bar(snapshot), ""]
    parts += render_grid(snapshot, width)
    if snapshot.state == SessionState.UPDATING and snapshot.total_updates:
        parts += [render_progress_bar(snapshot, width), ""]
    parts.append(colorize(help_text(snapshot), GRAY))
    return "\n".join(parts)


def render_splash(snapshot: SessionSnapshot, width: int) -> str:
    colors = (BLUE, GREEN, YELLOW, BOLD_GREEN)
    art = colorize(SPLASH_ART, colors[(snapshot.frame // 3) % len(colors)])
    dots = "." * ((snapshot.frame // 3) % 4)
    subtitle = f"   Developer tool update dashboard\n   Initializing{dots}"
    return art + "\n" + colorize(subtitle, GRAY)


def _grouped(snapshot: SessionSnapshot, indices: Sequence[int]) -> dict[str, list[int]]:
    groups: dict[str, list[int]] = {}
    for i in indices:
        groups.setdefault(snapshot.tools[i].tool.category, []).append(i)
    return groups


def render_preview(snapshot: SessionSnapshot, width: int) -> str:
    """Dry-run listing of the pending batch."""
    groups = _grouped(snapshot, snapshot.pending)
    lines = [
        colorize(f" {_icon('🔍 ', '')}UPDATE PREVIEW (DRY-RUN) ", HEADER),
        "",
        colorize("Review the tools that will be updated. No changes will be made yet.", GRAY),
        "",
        colorize("SUMMARY", BOLD),
        f"Total Tools Selected: {len(snapshot.pending)}",
    ]
    for category, indices in groups.items():
        lines.append(f"  • {category_label(category)}: {len(indices)} tools")

    for category, indices in groups.items():
        lines += ["", colorize(category_label(category), BOLD_GREEN)]
        for i in indices:
            state = snapshot.tools[i]
            if state.local_version == MISSING:
                info = colorize(" (will install)", YELLOW)
            elif is_resolved(state.local_version):
                info = colorize(f" (current: {state.local_version})", GRAY)
                if state.status == ToolStatus.OUTDATED:
                    info += colorize(f" → {state.remote_version}", BOLD_GREEN)
            else:
                info = ""
            lines.append(f"  → {state.tool.name}{info}")

    if any(snapshot.is_protected(i) for i in snapshot.pending):
        lines += ["", colorize(" ⚠ WARNING: Protected updates detected - confirmation will be required ", RED)]

    lines += ["", colorize("[ENTER] Proceed with Updates • [ESC] Cancel", GRAY)]
    return "\n".join(lines)


def render_confirm(snapshot: SessionSnapshot, width: int) -> str:
    """Danger-zone confirmation over the dashboard."""
    protected = [snapshot.tools[i].tool.name for i in snapshot.pending if snapshot.is_protected(i)]
    modal = [
        "",
        colorize(f"{_icon('⚠️ ', '!')} DANGER ZONE {_icon('⚠️', '!')}", RED + BOLD),
        "",
        "You have selected protected tools:",
        *[f"  • {name}" for name in protected],
        "Updating runtimes may break your projects.",
        "",
        colorize("Are you sure? (y/N)", BOLD),
    ]
    return render_main(snapshot, width) + "\n" + "\n".join(modal)


def render_summary(summary: UpdateSummary | None) -> str:
    """Per-tool results of the finished update cycle."""
    if summary is None:
        return ""
    lines = [
        colorize(" UPDATE SUMMARY ", HEADER),
        "",
        f"Success rate: {summary.success_rate:.0f}% "
        f"({len(summary.successes)} updated, {len(summary.failures)} failed, "
        f"{len(summary.skipped)} skipped)",
        f"Duration: {summary.duration_seconds:.1f}s",
    ]
    if summary.successes:
        lines += ["", colorize("UPDATED", BOLD_GREEN)]
        for entry in summary.successes:
            lines.append(f"  {_icon('✅', '✓')} {entry.name}: {entry.version}")
    if summary.failures:
        lines += ["", colorize("FAILED", RED)]
        for entry in summary.failures:
            lines.append(f"  {_icon('❌', 'x')} {entry.name}")
            for detail in entry.message.splitlines()[-3:]:
                lines.append(colorize(f"      {detail}", GRAY))
    lines += ["", colorize("[Press any key to return to the dashboard]", GRAY)]
    return "\n".join(lines)


def render_snapshot(snapshot: SessionSnapshot, width: int = 100) -> str:
    """
    Render the whole screen for a snapshot.

    Args:
        snapshot: Session snapshot
        width: Terminal width in columns

    Returns:
        Screen text (may contain ANSI codes)
    """
    if snapshot.state == SessionState.SPLASH:
        return render_splash(snapshot, width)
    if snapshot.state == SessionState.PREVIEW:
        return render_preview(snapshot, width)
    if snapshot.state == SessionState.CONFIRM:
        return render_confirm(snapshot, width)
    if snapshot.state == SessionState.SUMMARY:
        return render_summary(snapshot.summary)
    return render_main(snapshot, width)


def render_table(states: Sequence[ToolRuntimeState]) -> str:
    """Pipe-delimited table for non-interactive listing.

    Args:
        states: Probed tool states

    Returns:
        Table text with a trailing readiness line
    """
    rows = ["|".join(("state", "tool", "installed", "latest", "category"))]
    for state in states:
        latest = state.remote_version if state.remote_version != PLACEHOLDER else ""
        rows.append("|".join((
            state.status.value,
            state.tool.name,
            state.local_version,
            latest,
            state.tool.category,
        )))

    outdated = sum(1 for s in states if s.status == ToolStatus.OUTDATED)
    missing = sum(1 for s in states if s.status == ToolStatus.MISSING)
    manual = sum(1 for s in states if s.status in (ToolStatus.MANUAL_CHECK, ToolStatus.UNMANAGED))
    rows.append("")
    rows.append(f"Readiness: {len(states)} tools, {outdated} outdated, {missing} missing, {manual} need manual check")
    return "\n".join(rows)
