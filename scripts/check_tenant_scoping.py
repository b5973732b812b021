#!/usr/bin/env python3
"""
Multi-tenancy scoping lint check.

Scans Backend/app for common multi-tenancy violations:
1. Hardcoded tenant_id values
2. Queries on tenant-owned models without a tenant_id filter

Queries built with ``scoped_select(...)`` or ``require_owned(...)`` are
scoped by construction and are not reported.

USAGE:
    python scripts/check_tenant_scoping.py
    python scripts/check_tenant_scoping.py -v        # detailed findings
    python scripts/check_tenant_scoping.py --strict  # exit 1 on CRITICAL/HIGH (CI)

EXIT CODES:
    0 - No critical/high issues (or not running with --strict)
    1 - Critical/high issues found in strict mode
"""

import argparse
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

# ────────────────────────────────────────────────────────────────
# Configuration
# ────────────────────────────────────────────────────────────────

SCAN_ROOT = Path(__file__).parent.parent / "Backend" / "app"

EXCLUDE_PATTERNS = [
    "__pycache__",
    ".pyc",
    "tenancy/",  # The tenancy helpers build the scoped queries themselves
    "test_",
    "migrations/",
]

# Lines after a query start that are searched for the tenant filter
CONTEXT_LINES = 6

SCOPED_MODELS = ("Product", "Category", "Order", "Coupon", "Customer", "StockMovement", "InventoryAlert")

BAD_PATTERNS: List[Tuple[str, str, str]] = [
    # (pattern, severity, description)
    (
        r"^[A-Z_]*TENANT_ID\s*=\s*\d+",
        "CRITICAL",
        "Hardcoded TENANT_ID constant - should use TenantContext resolution",
    ),
    (
        r"tenant_id\s*=\s*\d+[,\)\s]",
        "WARNING",
        "Hardcoded tenant_id literal - should come from TenantContext",
    ),
]
BAD_PATTERNS += [
    (
        rf"select\({model}\)",
        "HIGH" if model in ("Product", "Order", "Coupon", "Customer") else "MEDIUM",
        f"{model} query without tenant_id filter - potential cross-tenant leak",
    )
    for model in SCOPED_MODELS
]

IGNORE_PATTERNS = [
    r"^\s*#",  # Comments
    r"tenant_id: int",  # Type annotations
    r"tenant_id=tenant_id",  # Passing through
    r"noqa:\s*tenant-scoping",  # Explicit suppression
    r"tenant_id=(ctx|tenant)\.tenant_id",  # Using context
    r"tenant_id=tenant\.id",  # Using tenant row
]

SCOPED_CONTEXT = re.compile(r"\.tenant_id\s*==|scoped_select\(|tenant_filter\(|require_owned\(")


# ────────────────────────────────────────────────────────────────
# Data Classes
# ────────────────────────────────────────────────────────────────

@dataclass
class Finding:
    """A single tenant scoping issue."""

    file: Path
    line_num: int
    line_text: str
    severity: str
    description: str

    def __str__(self):
        return f"{self.severity}: {self.file}:{self.line_num} - {self.description}\n  > {self.line_text.strip()}"


# ────────────────────────────────────────────────────────────────
# Scanning Logic
# ────────────────────────────────────────────────────────────────

def should_exclude(path: Path) -> bool:
    path_str = path.as_posix()
    return any(excl in path_str for excl in EXCLUDE_PATTERNS)


def should_ignore_line(line: str) -> bool:
    return any(re.search(pattern, line) for pattern in IGNORE_PATTERNS)


def scan_text(file_path: Path, content: str) -> List[Finding]:
    findings = []
    lines = content.split("\n")

    for line_num, line in enumerate(lines, 1):
        if should_ignore_line(line):
            continue

        for pattern, severity, description in BAD_PATTERNS:
            if not re.search(pattern, line):
                continue
            if pattern.startswith("select"):
                # Multi-line statements: the filter usually follows on the next lines
                window = "\n".join(lines[line_num - 1:line_num - 1 + CONTEXT_LINES])
                if SCOPED_CONTEXT.search(window):
                    continue
            findings.append(Finding(
                file=file_path,
                line_num=line_num,
                line_text=line,
                severity=severity,
                description=description,
            ))

    return findings


def scan_file(file_path: Path) -> List[Finding]:
    try:
        content = file_path.read_text(encoding="utf-8")
    except OSError as e:
        print(f"Warning: Could not read {file_path}: {e}", file=sys.stderr)
        return []
    return scan_text(file_path, content)


def scan_directory(root: Path) -> List[Finding]:
    all_findings = []
    for path in sorted(root.rglob("*.py")):
        if should_exclude(path.relative_to(root)):
            continue
        all_findings.extend(scan_file(path))
    return all_findings


# ────────────────────────────────────────────────────────────────
# Reporting
# ────────────────────────────────────────────────────────────────

SEVERITY_ORDER = ["CRITICAL", "HIGH", "MEDIUM", "WARNING", "INFO"]


def print_report(findings: List[Finding], verbose: bool = False):
    if not findings:
        print("No tenant scoping issues found.")
        return

    by_severity = {}
    for f in findings:
        by_severity.setdefault(f.severity, []).append(f)

    print("\n" + "=" * 60)
    print("MULTI-TENANCY SCOPING CHECK REPORT")
    print("=" * 60)

    print("\nSUMMARY:")
    for sev in SEVERITY_ORDER:
        count = len(by_severity.get(sev, []))
        if count > 0:
            print(f"  {sev}: {count}")

    print(f"\nTOTAL: {len(findings)} issues")

    if verbose:
        print("\n" + "-" * 60)
        print("DETAILS:")
        print("-" * 60)
        for sev in SEVERITY_ORDER:
            for f in by_severity.get(sev, []):
                print(f"  {f.file}:{f.line_num} [{sev}]")
                print(f"    {f.description}")
                print(f"    > {f.line_text.strip()[:80]}")
    else:
        print("\nRun with -v for detailed findings.")


def count_blocking(findings: List[Finding]) -> int:
    return sum(1 for f in findings if f.severity in ("CRITICAL", "HIGH"))


# ────────────────────────────────────────────────────────────────
# Main
# ────────────────────────────────────────────────────────────────

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Check codebase for multi-tenancy scoping issues")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed findings")
    parser.add_argument("--strict", action="store_true", help="Exit with code 1 on critical/high issues (for CI)")
    parser.add_argument("--path", type=Path, default=SCAN_ROOT, help=f"Path to scan (default: {SCAN_ROOT})")
    args = parser.parse_args(argv)

    if not args.path.exists():
        print(f"Error: Path {args.path} does not exist", file=sys.stderr)
        return 1

    print(f"Scanning {args.path}...")
    findings = scan_directory(args.path)
    print_report(findings, verbose=args.verbose)

    blocking = count_blocking(findings)
    if args.strict and blocking:
        print(f"\n{blocking} critical/high issues found. Failing.")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
