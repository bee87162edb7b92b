"""Name and label selectors used for detection and cleanup filtering.

A selector decides whether a named, optionally labelled cluster object
(a username, a namespace, a workspace) belongs to the current deployment.
Selectors are pure, side-effect-free objects and can be composed with
AND / OR, so detection rules stay declarative and testable.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Mapping


class Selector(ABC):
    """
    Abstract base class for all selectors.

    A Selector encapsulates a single matching rule evaluated against an
    object's name and labels.
    """

    @abstractmethod
    def matches(self, name: str, labels: Mapping[str, str] | None = None) -> bool:
        """
        Determine whether the object matches this selector.

        Args:
            name: Object name (username, namespace name, ...).
            labels: Object labels, if the object carries any.

        Returns:
            True if the object matches, False otherwise.
        """
        ...


class NameRegexSelector(Selector):
    """Matches objects whose whole name matches a regular expression."""

    def __init__(self, pattern: str):
        try:
            self.regex = re.compile(pattern)
        except re.error as exc:
            raise ValueError(f"Invalid regex expression: {exc}") from exc

    def matches(self, name: str, labels: Mapping[str, str] | None = None) -> bool:
        return bool(self.regex.fullmatch(name))


class LabelSelector(Selector):
    """Matches objects carrying a specific label key/value pair."""

    def __init__(self, key: str, value: str):
        self.key = key
        self.value = value

    def matches(self, name: str, labels: Mapping[str, str] | None = None) -> bool:
        if not labels:
            return False
        return labels.get(self.key) == self.value

    def as_query(self) -> str:
        """Render as a Kubernetes label selector string."""
        return f"{self.key}={self.value}"


class AndSelector(Selector):
    """Composite selector that matches only if all child selectors match."""

    def __init__(self, selectors: list[Selector]):
        self.selectors = selectors

    def matches(self, name: str, labels: Mapping[str, str] | None = None) -> bool:
        return all(s.matches(name, labels) for s in self.selectors)

