from __future__ import annotations

"""Riddle catalog loading and lookup helpers."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from .indexing import SECTIONS


CATALOG_SCHEMA_VERSION = "0.1"


def _schema_path() -> Path:
    return Path(__file__).resolve().with_name("riddle.schema.json")


def load_schema() -> dict[str, Any]:
    path = _schema_path()
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Riddle schema is not valid JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Riddle schema must be a JSON object: {path}")
    return payload


@dataclass(frozen=True)
class Riddle:
    section: int
    local_index: int
    target: str
    text: str = ""
    accepted_answers: tuple[str, ...] = ()
    image_urls: tuple[str, ...] = ()
    hints: tuple[str, ...] = ()
    telescope: bool = False

    @property
    def auto_verified(self) -> bool:
        return self.section != 1

    def public_view(self) -> dict[str, Any]:
        """Riddle fields safe to show a team; targets and accepted answers are withheld."""

        return {
            "section": self.section,
            "local_index": self.local_index,
            "text": self.text,
            "image_urls": list(self.image_urls),
            "hints": list(self.hints),
            "telescope": self.telescope,
        }


@dataclass(frozen=True)
class Star:
    id: str
    name: str
    constellation: str = ""
    magnitude: float | None = None
    fact: str = ""


@dataclass
class RiddleCatalog:
    catalog_id: str
    title: str
    sections: dict[int, list[Riddle]]
    section_titles: dict[int, str] = field(default_factory=dict)
    guidelines: dict[int, list[str]] = field(default_factory=dict)
    stars: dict[str, Star] = field(default_factory=dict)
    source: str | None = None

    @classmethod
    def load(cls, path: Path) -> "RiddleCatalog":
        """Load and validate a YAML catalog file."""

        if not path.exists():
            raise ValueError(f"Riddle catalog not found: {path}")
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Riddle catalog must be a mapping: {path}")
        catalog = cls.from_dict(payload)
        catalog.source = str(path)
        return catalog

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "RiddleCatalog":
        validator = Draft202012Validator(load_schema())
        errors = sorted(validator.iter_errors(payload), key=lambda err: list(err.path))
        if errors:
            first = errors[0]
            where = ".".join(str(part) for part in first.path) or "<root>"
            raise ValueError(f"Riddle catalog schema validation failed at {where}: {first.message}")

        sections: dict[int, list[Riddle]] = {}
        titles: dict[int, str] = {}
        guidelines: dict[int, list[str]] = {}
        for block in payload["sections"]:
            number = int(block["section"])
            if number in sections:
                raise ValueError(f"Duplicate section in riddle catalog: {number}")
            titles[number] = block["title"]
            guidelines[number] = list(block.get("guidelines", []))
            sections[number] = [
                Riddle(
                    section=number,
                    local_index=idx,
                    target=item["target"],
                    text=item.get("text", ""),
                    accepted_answers=tuple(item.get("accepted_answers", [])),
                    image_urls=tuple(item.get("image_urls", [])),
                    hints=tuple(item.get("hints", [])),
                    telescope=bool(item.get("telescope", False)),
                )
                for idx, item in enumerate(block["riddles"])
            ]
        for number in SECTIONS:
            sections.setdefault(number, [])

        stars = {
            item["id"]: Star(
                id=item["id"],
                name=item["name"],
                constellation=item.get("constellation", ""),
                magnitude=item.get("magnitude"),
                fact=item.get("fact", ""),
            )
            for item in payload.get("stars", [])
        }
        meta = payload["catalog"]
        return cls(
            catalog_id=meta["id"],
            title=meta["title"],
            sections=sections,
            section_titles=titles,
            guidelines=guidelines,
            stars=stars,
        )

    def riddles(self, section: int) -> list[Riddle]:
        return list(self.sections.get(section, []))

    def riddle_count(self, section: int) -> int:
        return len(self.sections.get(section, []))

    def get_riddle(self, section: int, local_index: int) -> Riddle:
        riddles = self.sections.get(section, [])
        if not 0 <= local_index < len(riddles):
            raise KeyError(f"Unknown riddle: section {section} index {local_index}")
        return riddles[local_index]

    def find_by_target(self, section: int, target: str) -> Riddle | None:
        for riddle in self.sections.get(section, []):
            if riddle.target == target:
                return riddle
        return None

    def star_name(self, subject_id: str) -> str:
        star = self.stars.get(subject_id)
        return star.name if star else subject_id
