"""
Keystroke to intent mapping.

Keys arrive as the names produced by terminal.decode_key(): single printable
characters, or "up", "down", "enter", "esc", "backspace", "tab", "ctrl+c".
"""

from __future__ import annotations

from .catalog import CATEGORY_KEYS
from .events import (
    Cancel,
    CancelSearch,
    Commit,
    Confirm,
    ConfirmSearch,
    Dismiss,
    EnterSearch,
    Intent,
    JumpToCategory,
    Navigate,
    NextCategory,
    OpenPreview,
    Quit,
    SearchBackspace,
    SearchInput,
    ToggleAll,
    ToggleGroup,
    ToggleSelection,
)
from .session import SessionState

MAIN_KEYS: dict[str, Intent] = {
    "up": Navigate(-1),
    "k": Navigate(-1),
    "down": Navigate(1),
    "j": Navigate(1),
    "tab": NextCategory(),
    " ": ToggleSelection(),
    "g": ToggleGroup(),
    "G": ToggleGroup(),
    "a": ToggleAll(),
    "A": ToggleAll(),
    "/": EnterSearch(),
    "d": OpenPreview(),
    "D": OpenPreview(),
    "enter": Commit(),
    "q": Quit(),
    "Q": Quit(),
}

SEARCH_KEYS: dict[str, Intent] = {
    "up": Navigate(-1),
    "down": Navigate(1),
    "enter": ConfirmSearch(),
    "esc": CancelSearch(),
    "backspace": SearchBackspace(),
}

PREVIEW_KEYS: dict[str, Intent] = {
    "enter": Commit(),
    "esc": Cancel(),
    "q": Cancel(),
}

CONFIRM_KEYS: dict[str, Intent] = {
    "y": Confirm(),
    "Y": Confirm(),
    "n": Cancel(),
    "N": Cancel(),
    "esc": Cancel(),
    "q": Cancel(),
}


def _main_intent(key: str, filter_active: bool) -> Intent | None:
    if key == "esc":
        return Cancel() if filter_active else Quit()
    if key in MAIN_KEYS:
        return MAIN_KEYS[key]
    category = CATEGORY_KEYS.get(key.lower()) if len(key) == 1 else None
    if category:
        return JumpToCategory(category)
    return None


def _search_intent(key: str) -> Intent | None:
    if key in SEARCH_KEYS:
        return SEARCH_KEYS[key]
    if len(key) == 1 and key.isprintable():
        return SearchInput(key)
    return None


def translate_key(state: SessionState, key: str, filter_active: bool = False) -> Intent | None:
    """
    Map a key to the intent it means in the given session state.

    Args:
        state: Current session state
        key: Decoded key name
        filter_active: Whether a search filter is applied (Escape clears it)

    Returns:
        Intent, or None when the key does nothing in this state
    """
    if key == "ctrl+c":
        return Quit(force=True)

    if state == SessionState.SPLASH or state == SessionState.SUMMARY:
        return Dismiss()
    if state == SessionState.MAIN:
        return _main_intent(key, filter_active)
    if state == SessionState.SEARCH:
        return _search_intent(key)
    if state == SessionState.PREVIEW:
        return PREVIEW_KEYS.get(key)
    if state == SessionState.CONFIRM:
        return CONFIRM_KEYS.get(key)
    # Updating: only a hard interrupt is honoured
    return None
