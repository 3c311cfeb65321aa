from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from .answers import normalize_answer
from .catalog import load_schema


SEVERITY_ORDER = {"ERROR": 0, "WARN": 1, "INFO": 2}
IMAGE_PLACEHOLDER = re.compile(r"\[\[IMAGE_(\d+)\]\]")


@dataclass
class Finding:
    rule_id: str
    severity: str
    file: str
    path: str
    message: str
    suggested_fix: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


def _add(
    findings: list[Finding],
    *,
    rule_id: str,
    severity: str,
    file: Path,
    path: str,
    message: str,
    suggested_fix: str,
) -> None:
    findings.append(
        Finding(
            rule_id=rule_id,
            severity=severity,
            file=str(file).replace("\\", "/"),
            path=path,
            message=message,
            suggested_fix=suggested_fix,
        )
    )


def lint_catalog(target_path: str | Path) -> list[Finding]:
    target = Path(target_path).resolve()
    if not target.exists():
        raise FileNotFoundError(f"Path not found: {target}")

    findings: list[Finding] = []
    try:
        data = yaml.safe_load(target.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        _add(
            findings,
            rule_id="SCHEMA-001",
            severity="ERROR",
            file=target,
            path="$",
            message=f"YAML parse failure: {exc}",
            suggested_fix="Fix YAML syntax.",
        )
        return findings
    if not isinstance(data, dict):
        _add(
            findings,
            rule_id="SCHEMA-001",
            severity="ERROR",
            file=target,
            path="$",
            message="Catalog root must be a mapping.",
            suggested_fix="Start the file with schema_version, catalog, stars and sections keys.",
        )
        return findings

    validator = Draft202012Validator(load_schema())
    for error in sorted(validator.iter_errors(data), key=lambda err: list(err.path)):
        pointer = "$" + "".join(f"[{part}]" if isinstance(part, int) else f".{part}" for part in error.path)
        _add(
            findings,
            rule_id="SCHEMA-002",
            severity="ERROR",
            file=target,
            path=pointer,
            message=error.message,
            suggested_fix="Match riddle.schema.json.",
        )
    if findings:
        findings.sort(key=lambda f: (SEVERITY_ORDER.get(f.severity, 99), f.file, f.rule_id, f.path))
        return findings

    star_ids = {item["id"] for item in data.get("stars", [])}
    seen_sections: set[int] = set()
    for s_idx, block in enumerate(data["sections"]):
        section = int(block["section"])
        base = f"$.sections[{s_idx}]"
        if section in seen_sections:
            _add(
                findings,
                rule_id="SECTION-001",
                severity="ERROR",
                file=target,
                path=f"{base}.section",
                message=f"Section {section} is declared more than once.",
                suggested_fix="Merge the riddle lists into one section block.",
            )
        seen_sections.add(section)
        riddles = block.get("riddles", [])
        if not riddles:
            _add(
                findings,
                rule_id="SECTION-002",
                severity="WARN",
                file=target,
                path=f"{base}.riddles",
                message=f"Section {section} has no riddles; it counts as complete for the natural unlock.",
                suggested_fix="Add riddles or drop the section.",
            )

        targets: set[str] = set()
        for r_idx, riddle in enumerate(riddles):
            where = f"{base}.riddles[{r_idx}]"
            answers: list[str] = riddle.get("accepted_answers", [])
            if section != 1 and not [a for a in answers if a.strip()]:
                _add(
                    findings,
                    rule_id="ANSWER-001",
                    severity="ERROR",
                    file=target,
                    path=f"{where}.accepted_answers",
                    message=f"Section {section} is auto-verified but this riddle accepts no answer.",
                    suggested_fix="List at least one accepted answer.",
                )
            elif section == 1 and not answers:
                _add(
                    findings,
                    rule_id="ANSWER-002",
                    severity="WARN",
                    file=target,
                    path=f"{where}.accepted_answers",
                    message="No accepted answers; every submission will be scored incorrect until an admin approves it.",
                    suggested_fix="List at least one accepted answer.",
                )
            normalized = [normalize_answer(a) for a in answers]
            if len(set(normalized)) != len(normalized):
                _add(
                    findings,
                    rule_id="ANSWER-003",
                    severity="WARN",
                    file=target,
                    path=f"{where}.accepted_answers",
                    message="Accepted answers repeat after case and whitespace normalization.",
                    suggested_fix="Remove the duplicates.",
                )

            target_id = riddle["target"]
            if target_id in targets:
                _add(
                    findings,
                    rule_id="TARGET-001",
                    severity="ERROR",
                    file=target,
                    path=f"{where}.target",
                    message=f"Target '{target_id}' is used twice in section {section}; admin approval resolves riddles by target.",
                    suggested_fix="Give every riddle in a section a distinct target.",
                )
            targets.add(target_id)
            if section == 1 and target_id not in star_ids:
                _add(
                    findings,
                    rule_id="TARGET-002",
                    severity="WARN",
                    file=target,
                    path=f"{where}.target",
                    message=f"Section 1 target '{target_id}' has no star entry; pointing requests will show the raw id.",
                    suggested_fix="Add the star to the stars list.",
                )

            image_count = len(riddle.get("image_urls", []))
            for match in IMAGE_PLACEHOLDER.finditer(riddle.get("text", "")):
                if int(match.group(1)) >= image_count:
                    _add(
                        findings,
                        rule_id="IMAGE-001",
                        severity="ERROR",
                        file=target,
                        path=f"{where}.text",
                        message=f"Placeholder {match.group(0)} has no matching image_urls entry.",
                        suggested_fix="Add the image URL or remove the placeholder.",
                    )

    findings.sort(key=lambda f: (SEVERITY_ORDER.get(f.severity, 99), f.file, f.rule_id, f.path))
    return findings


def findings_to_json(findings: list[Finding]) -> str:
    return json.dumps([item.to_dict() for item in findings], indent=2)


def findings_to_text(findings: list[Finding]) -> str:
    if not findings:
        return "No findings."
    lines: list[str] = []
    for finding in findings:
        lines.append(
            f"[{finding.severity}] {finding.rule_id} {finding.file} {finding.path} :: {finding.message}"
        )
        lines.append(f"  fix: {finding.suggested_fix}")
    return "\n".join(lines)


def has_errors(findings: list[Finding]) -> bool:
    return any(item.severity == "ERROR" for item in findings)


def summarize(findings: list[Finding]) -> dict[str, Any]:
    return {
        "error_count": sum(1 for item in findings if item.severity == "ERROR"),
        "warn_count": sum(1 for item in findings if item.severity == "WARN"),
    }
