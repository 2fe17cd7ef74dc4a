"""Color & style helpers.

Decisions:
- Truecolor preferred; falls back to 256-color cube if unsupported.
- Disables automatically when not a TTY unless FORCE_COLOR=1.
- Honors NO_COLOR for complete disable.
- Palette overrides via KANBIN_PRIMARY / KANBIN_TODO / KANBIN_INPROGRESS /
  KANBIN_DONE, from the environment or the project .env file.
"""
from __future__ import annotations
import os, sys
from config import read_env_file

_FORCE = os.environ.get("FORCE_COLOR", "").lower() in {"1", "true", "yes", "on"}
_NO_COLOR = os.environ.get("NO_COLOR") is not None
_ENABLE = (_FORCE or sys.stdout.isatty()) and not _NO_COLOR
_COLORTERM = os.environ.get("COLORTERM", "").lower()
_USE_TRUECOLOR = _ENABLE and any(tok in _COLORTERM for tok in ("truecolor", "24bit"))

def _code(part: str) -> str:
    return f"\033[{part}m" if _ENABLE else ''

def _hex_to_rgb(hex_code: str) -> tuple[int,int,int]:
    h = hex_code.lstrip('#')
    return int(h[0:2],16), int(h[2:4],16), int(h[4:6],16)

def _fg_256(r: int, g: int, b: int) -> str:
    """Approximate RGB to xterm 256-color cube."""
    def to_6(x: int) -> int:
        return int(round(x / 255 * 5))
    idx = 16 + 36 * to_6(r) + 6 * to_6(g) + to_6(b)
    return f"\033[38;5;{idx}m"

def _from_hex(hex_code: str) -> str:
    if not _ENABLE:
        return ''
    r, g, b = _hex_to_rgb(hex_code)
    if _USE_TRUECOLOR:
        return f"\033[38;2;{r};{g};{b}m"
    return _fg_256(r, g, b)

def _valid_hex(value: str) -> bool:
    h = value.lstrip('#')
    return len(h) == 6 and all(c in '0123456789abcdefABCDEF' for c in h)

RESET = _code('0')
BOLD = _code('1')
DIM = _code('2')

PALETTE_DEFAULTS = {
    'KANBIN_PRIMARY': '#476EAE',
    'KANBIN_TODO': '#48B3AF',
    'KANBIN_INPROGRESS': '#F6FF99',
    'KANBIN_DONE': '#A7E399',
    'KANBIN_ERROR': '#E06C75',
}

def resolve_palette() -> dict[str, str]:
    """Hex per palette key (priority: real env var > .env override > default)."""
    file_env = read_env_file()
    palette: dict[str, str] = {}
    for key, default in PALETTE_DEFAULTS.items():
        value = os.environ.get(key) or file_env.get(key) or default
        palette[key] = '#' + value.lstrip('#') if _valid_hex(value) else default
    return palette

_PALETTE = resolve_palette()

PRIMARY = _from_hex(_PALETTE['KANBIN_PRIMARY'])
ERROR_COLOR = _from_hex(_PALETTE['KANBIN_ERROR'])

STATUS_COLOR = {
    'TODO': _from_hex(_PALETTE['KANBIN_TODO']),
    'IN_PROGRESS': _from_hex(_PALETTE['KANBIN_INPROGRESS']),
    'DONE': _from_hex(_PALETTE['KANBIN_DONE']),
}

HEADER_COLOR = PRIMARY
ID_COLOR = PRIMARY + BOLD
EMPTY_COLOR = DIM + PRIMARY

def color(text: str, *styles: str) -> str:
    if not _ENABLE:
        return text
    return ''.join(styles) + text + RESET

__all__ = [
    'color','RESET','BOLD','DIM','STATUS_COLOR','HEADER_COLOR','ID_COLOR','EMPTY_COLOR','ERROR_COLOR',
    'resolve_palette',
]
