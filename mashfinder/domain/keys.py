"""Musical key names and harmonic compatibility.

Compatibility follows the circle of fifths: each key lists its relative
major/minor and its dominant and subdominant neighbours (with their relatives).
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

UNKNOWN_KEY = "Unknown"

# Spotify pitch class notation (0-11)
PITCH_CLASSES = ('C', 'C#', 'D', 'D#', 'E', 'F', 'F#', 'G', 'G#', 'A', 'A#', 'B')

MODES = ('major', 'minor')

_ENHARMONIC = {
    'C#': 'Db', 'Db': 'C#',
    'D#': 'Eb', 'Eb': 'D#',
    'F#': 'Gb', 'Gb': 'F#',
    'G#': 'Ab', 'Ab': 'G#',
    'A#': 'Bb', 'Bb': 'A#',
}

_PITCH_NAMES = frozenset(PITCH_CLASSES) | frozenset(_ENHARMONIC)

KEY_COMPATIBILITY: Dict[str, Tuple[str, ...]] = {
    # Major keys
    'C major': ('A minor', 'F major', 'G major', 'D minor', 'E minor'),
    'G major': ('E minor', 'C major', 'D major', 'A minor', 'B minor'),
    'D major': ('B minor', 'G major', 'A major', 'E minor', 'F# minor'),
    'A major': ('F# minor', 'D major', 'E major', 'B minor', 'C# minor'),
    'E major': ('C# minor', 'A major', 'B major', 'F# minor', 'G# minor'),
    'B major': ('G# minor', 'E major', 'F# major', 'C# minor', 'D# minor'),
    'F# major': ('D# minor', 'B major', 'C# major', 'G# minor', 'A# minor'),
    'C# major': ('A# minor', 'F# major', 'G# major', 'D# minor', 'F minor'),
    'F major': ('D minor', 'C major', 'Bb major', 'A minor', 'G minor'),
    'Bb major': ('G minor', 'F major', 'Eb major', 'D minor', 'C minor'),
    'Eb major': ('C minor', 'Bb major', 'Ab major', 'G minor', 'F minor'),
    'Ab major': ('F minor', 'Eb major', 'Db major', 'C minor', 'Bb minor'),
    'Db major': ('Bb minor', 'Ab major', 'Gb major', 'F minor', 'Eb minor'),

    # Minor keys
    'A minor': ('C major', 'F major', 'G major', 'D minor', 'E minor'),
    'E minor': ('G major', 'C major', 'D major', 'A minor', 'B minor'),
    'B minor': ('D major', 'G major', 'A major', 'E minor', 'F# minor'),
    'F# minor': ('A major', 'D major', 'E major', 'B minor', 'C# minor'),
    'C# minor': ('E major', 'A major', 'B major', 'F# minor', 'G# minor'),
    'G# minor': ('B major', 'E major', 'F# major', 'C# minor', 'D# minor'),
    'D# minor': ('F# major', 'B major', 'C# major', 'G# minor', 'A# minor'),
    'A# minor': ('C# major', 'F# major', 'D# major', 'D# minor', 'F minor'),
    'D minor': ('F major', 'C major', 'Bb major', 'A minor', 'G minor'),
    'G minor': ('Bb major', 'F major', 'Eb major', 'D minor', 'C minor'),
    'C minor': ('Eb major', 'Bb major', 'Ab major', 'G minor', 'F minor'),
    'F minor': ('Ab major', 'Eb major', 'Db major', 'C minor', 'Bb minor'),
    'Bb minor': ('Db major', 'Ab major', 'Gb major', 'F minor', 'Eb minor'),
}


def _split_key(name: str) -> Optional[Tuple[str, str]]:
    parts = (name or '').split()
    if len(parts) != 2:
        return None
    pitch, mode = parts
    if pitch not in _PITCH_NAMES or mode not in MODES:
        return None
    return pitch, mode


def is_valid_key(name: str) -> bool:
    """Return True for '<pitch> major|minor' (any enharmonic spelling) or 'Unknown'."""
    return name == UNKNOWN_KEY or _split_key(name) is not None


def table_spelling(name: str) -> str:
    """Respell a key so it matches the spelling used in KEY_COMPATIBILITY.

    Keys already in the table, and names that are not keys at all, are returned as is.
    """
    if name in KEY_COMPATIBILITY:
        return name
    parsed = _split_key(name)
    if parsed is None:
        return name
    pitch, mode = parsed
    alias = _ENHARMONIC.get(pitch)
    if alias is not None:
        respelled = f"{alias} {mode}"
        if respelled in KEY_COMPATIBILITY:
            return respelled
    return name


def key_from_pitch_class(pitch_class: Optional[int], mode: Optional[int]) -> str:
    """Build a key name from a pitch class (0-11) and a mode flag (1 = major, 0 = minor)."""
    if pitch_class is None or not 0 <= pitch_class < len(PITCH_CLASSES):
        return UNKNOWN_KEY
    return f"{PITCH_CLASSES[pitch_class]} {'major' if mode == 1 else 'minor'}"


def compatible_keys(key: str) -> List[str]:
    """Return the harmonically compatible keys for ``key``.

    Keys absent from the table are compatible only with themselves.
    """
    entry = KEY_COMPATIBILITY.get(table_spelling(key))
    if entry is None:
        return [key]
    return list(entry)


def _identity(name: str) -> Optional[Tuple[int, str]]:
    parsed = _split_key(name)
    if parsed is None:
        return None
    pitch, mode = parsed
    if pitch not in PITCH_CLASSES:
        pitch = _ENHARMONIC[pitch]
    return PITCH_CLASSES.index(pitch), mode


def is_key_compatible(candidate: str, target: str) -> bool:
    """True when ``candidate`` is ``target`` or one of its neighbours, regardless of spelling."""
    if not candidate or not target or UNKNOWN_KEY in (candidate, target):
        return False
    cand = _identity(candidate)
    if cand is None:
        return False
    if cand == _identity(target):
        return True
    return cand in {_identity(k) for k in compatible_keys(target)}
