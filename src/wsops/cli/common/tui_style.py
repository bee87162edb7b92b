"""Questionary / prompt_toolkit theme for wsops.

Questionary uses prompt_toolkit under the hood. Destructive confirmations
share one style so they stand out from ordinary output.
"""

from __future__ import annotations

from prompt_toolkit.styles import Style

QUESTIONARY_STYLE_CONFIRM = Style.from_dict(
    {
        "qmark": "bold ansibrightred",
        "question": "bold ansibrightred",
        "answer": "bold ansibrightred",
        "instruction": "ansibrightblack",
        "error": "bold ansired",
    }
)
