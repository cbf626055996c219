"""Variable substitution and response extraction.

Extractors pull named values out of a response body through an XPathEvaluator;
the engine feeds them back into later request bodies as ``${name}``.
"""

from __future__ import annotations

import re
from typing import Iterable, Mapping, Protocol
from xml.etree import ElementTree

from .logging_config import get_logger
from .models import Extractor

logger = get_logger("extraction")

XPATH_EXTRACTOR = "XPath"


class XPathEvaluator(Protocol):
    """Extracts a string from an XML document. Returns None when nothing matches."""

    def evaluate(self, xml: str, path: str) -> str | None: ...


def substitute_variables(template: str, variables: Mapping[str, str]) -> str:
    """Replace every ``${name}`` in template with its value. Unknown names are left as-is."""
    if not variables or "${" not in template:
        return template
    body = template
    for key, value in variables.items():
        body = re.sub(r"\$\{" + re.escape(key) + r"\}", lambda _m, v=value: v, body)
    return body


class ExtractionStep:
    """Applies a request's extractors to a response body."""

    __slots__ = ("_evaluator",)

    def __init__(self, evaluator: XPathEvaluator) -> None:
        self._evaluator = evaluator

    def extract_value(self, body: str, extractor: Extractor) -> str | None:
        if extractor.type != XPATH_EXTRACTOR:
            logger.debug("Unsupported extractor type %r for %s", extractor.type, extractor.variable)
            return None
        return self._evaluator.evaluate(body, extractor.path)

    def apply(self, body: str, extractors: Iterable[Extractor]) -> dict[str, str]:
        """Run all extractors; empty or failing extractions are skipped."""
        values: dict[str, str] = {}
        for extractor in extractors:
            try:
                value = self.extract_value(body, extractor)
            except Exception as e:  # noqa: BLE001
                logger.warning("Extractor failed: %s - %s", extractor.variable, e)
                continue
            if value:
                values[extractor.variable] = value
        return values


class ElementTreeXPathEvaluator:
    """XPathEvaluator over xml.etree's XPath subset.

    Namespaces are stripped from tag names so ``//GetQuoteResult`` matches a
    SOAP body regardless of prefixes. Attribute selection (``/@attr``) is supported
    as the last step.
    """

    def evaluate(self, xml: str, path: str) -> str | None:
        try:
            root = ElementTree.fromstring(xml)
        except ElementTree.ParseError:
            return None
        for el in root.iter():
            if isinstance(el.tag, str) and "}" in el.tag:
                el.tag = el.tag.split("}", 1)[1]

        attr = None
        if "/@" in path:
            path, attr = path.rsplit("/@", 1)
        if path.startswith("//"):
            path = "." + path
        elif path.startswith("/"):
            # Absolute path: first step names the root element itself
            steps = path.lstrip("/").split("/", 1)
            if steps[0] != root.tag:
                return None
            path = "./" + steps[1] if len(steps) > 1 else "."

        try:
            node = root.find(path)
        except SyntaxError:
            return None
        if node is None:
            return None
        if attr is not None:
            return node.get(attr)
        return node.text
