"""
Theme definitions for codemap.

Provides dark and light palettes for the PNG renderer plus the fixed colour
tables shared by every theme:
- node kind colours (outline/fill for each kind)
- the 16-colour component palette, picked by a stable string hash
- highlight colours for changed files
"""

from __future__ import annotations
from dataclasses import dataclass


@dataclass
class ThemePalette:
    """Color palette for a theme."""

    # Canvas
    background: str

    # Text
    title_color: str
    label_color: str
    muted_text_color: str

    # Boxes
    box_fill: str
    header_fill: str
    file_fill: str
    external_fill: str
    external_text: str

    # Connectors
    connector: str
    edge: str


# Catppuccin Mocha (dark theme) - default
DARK_THEME = ThemePalette(
    background="#11111b",
    title_color="#cdd6f4",
    label_color="#cdd6f4",
    muted_text_color="#6c7086",
    box_fill="#181825",
    header_fill="#313244",
    file_fill="#1e1e2e",
    external_fill="#2a2a3c",
    external_text="#ffffff",
    connector="#7f849c",
    edge="#585b70",
)


# Light theme - clean white background with darker accents
LIGHT_THEME = ThemePalette(
    background="#ffffff",
    title_color="#1e1e2e",
    label_color="#1e1e2e",
    muted_text_color="#6c6f85",
    box_fill="#eff1f5",
    header_fill="#dce0e8",
    file_fill="#e6e9ef",
    external_fill="#ccd0da",
    external_text="#1e1e2e",
    connector="#8c8fa1",
    edge="#9ca0b0",
)


# Theme registry
THEMES: dict[str, ThemePalette] = {
    "dark": DARK_THEME,
    "light": LIGHT_THEME,
}


# Colours per node kind
KIND_COLORS: dict[str, str] = {
    "component": "#00BCD4",
    "directory": "#607D8B",
    "file": "#78909C",
    "external": "#FFFFFF",
}

# Colours for component boxes, picked by name hash
COMPONENT_PALETTE: list[str] = [
    "#E57373",  # Coral red
    "#64B5F6",  # Sky blue
    "#81C784",  # Light green
    "#FFB74D",  # Orange
    "#BA68C8",  # Purple
    "#4DB6AC",  # Teal
    "#F06292",  # Pink
    "#7986CB",  # Indigo
    "#AED581",  # Lime green
    "#FFD54F",  # Amber
    "#9575CD",  # Deep purple
    "#4DD0E1",  # Cyan
    "#FF8A65",  # Deep orange
    "#A1887F",  # Brown
    "#90A4AE",  # Blue grey
    "#DCE775",  # Yellow green
]

NEW_FILES_COLOR = "#90EE90"
CHANGED_FILL = "#FFEB3B"
CHANGED_STROKE = "#FF6B00"


def hash_string_to_color(name: str) -> str:
    """Stable palette colour for a component name.

    Uses the classic ``h = c + (h << 5) - h`` string hash in signed 32-bit
    arithmetic so a name keeps its colour across runs and hosts.
    """
    h = 0
    for ch in name:
        h = (ord(ch) + ((h << 5) - h)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return COMPONENT_PALETTE[abs(h) % len(COMPONENT_PALETTE)]


def get_theme(name: str) -> ThemePalette:
    """Get a theme palette by name.

    Args:
        name: Theme name ("dark" or "light")

    Returns:
        ThemePalette for the requested theme

    Raises:
        ValueError: If theme name is not recognized
    """
    if name not in THEMES:
        valid = ", ".join(THEMES.keys())
        raise ValueError(f"Unknown theme '{name}'. Valid themes: {valid}")
    return THEMES[name]
