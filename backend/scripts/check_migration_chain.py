"""Static governance checks for the Alembic revision files.

Usage:
    python scripts/check_migration_chain.py [versions_dir]

Checks:
- file names follow ``<revision>_<slug>.py``
- revision ids are unique and every down_revision resolves
- exactly one root and one head, with an unbroken linear chain between them
- every revision defines both upgrade() and downgrade()
"""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass
from pathlib import Path


REVISION_RE = re.compile(r'^revision\s*=\s*["\']([^"\']+)["\']', re.MULTILINE)
DOWN_RE = re.compile(r'^down_revision\s*=\s*(.+)$', re.MULTILINE)
FILE_RE = re.compile(r"^(\d{8}_\d{4})_[a-z0-9_]+\.py$")
UPGRADE_RE = re.compile(r"^def upgrade\(", re.MULTILINE)
DOWNGRADE_RE = re.compile(r"^def downgrade\(", re.MULTILINE)


@dataclass
class ChainReport:
    files: int
    revisions: dict[str, str | None]
    chain: list[str]
    errors: list[str]

    @property
    def ok(self) -> bool:
        return not self.errors


def _extract_scalar(raw: str) -> str | None:
    raw = raw.strip()
    if raw in {"None", ""}:
        return None
    if raw.startswith(("'", '"')) and raw.endswith(("'", '"')):
        return raw[1:-1]
    return None


def check_chain(versions_dir: Path) -> ChainReport:
    files = sorted(p for p in versions_dir.glob("*.py") if p.name != "__init__.py")
    owners: dict[str, str] = {}
    down_map: dict[str, str | None] = {}
    errors: list[str] = []

    for file in files:
        text = file.read_text(encoding="utf-8")
        rev_m = REVISION_RE.search(text)
        if not rev_m:
            errors.append(f"{file.name}: missing revision")
            continue
        rev = rev_m.group(1)

        name_m = FILE_RE.match(file.name)
        if not name_m:
            errors.append(f"{file.name}: file name must look like YYYYMMDD_NNNN_slug.py")
        elif name_m.group(1) != rev:
            errors.append(f"{file.name}: file prefix {name_m.group(1)} does not match revision {rev}")

        if not UPGRADE_RE.search(text) or not DOWNGRADE_RE.search(text):
            errors.append(f"{file.name}: upgrade() and downgrade() are both required")

        if rev in owners:
            errors.append(f"Duplicate revision id {rev} in {file.name} and {owners[rev]}")
        owners[rev] = file.name

        down_m = DOWN_RE.search(text)
        down_map[rev] = _extract_scalar(down_m.group(1)) if down_m else None

    for rev, down in down_map.items():
        if down is not None and down not in down_map:
            errors.append(f"Revision {rev} references missing down_revision {down}")

    roots = sorted(r for r, d in down_map.items() if d is None)
    if len(roots) != 1:
        errors.append(f"Expected exactly one root revision, found {len(roots)} ({roots})")

    referenced = {d for d in down_map.values() if d is not None}
    heads = sorted(r for r in down_map if r not in referenced)
    if len(heads) != 1:
        errors.append(f"Expected exactly one head revision, found {len(heads)} ({heads})")

    children: dict[str, list[str]] = {}
    for rev, down in down_map.items():
        if down is not None:
            children.setdefault(down, []).append(rev)
    for parent, kids in sorted(children.items()):
        if len(kids) > 1:
            errors.append(f"Revision {parent} branches into {sorted(kids)}")

    chain: list[str] = []
    if len(roots) == 1:
        current: str | None = roots[0]
        while current is not None and current not in chain:
            chain.append(current)
            kids = children.get(current, [])
            current = kids[0] if len(kids) == 1 else None
        unreachable = sorted(set(down_map) - set(chain))
        if unreachable:
            errors.append(f"Revisions not reachable from root {roots[0]}: {unreachable}")

    return ChainReport(files=len(files), revisions=down_map, chain=chain, errors=errors)


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    default_dir = Path(__file__).resolve().parents[1] / "alembic" / "versions"
    report = check_chain(Path(args[0]) if args else default_dir)

    print("Migration chain check")
    print(f"- files: {report.files}")
    print(f"- revisions: {len(report.revisions)}")

    if not report.ok:
        for err in report.errors:
            print(f"[FAIL] {err}")
        return 1

    print(f"[PASS] linear chain: {' -> '.join(report.chain)}")
    print("[PASS] naming, revision/down_revision and upgrade/downgrade checks")
    return 0


if __name__ == "__main__":
    sys.exit(main())
