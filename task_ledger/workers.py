"""
Built-in capability table.

Used when the configuration does not register any workers. Registration
order matters: it breaks ties between equally ranked workers.
"""

from typing import Any, Dict, List

from task_ledger.models import CapabilityRule, RuleKind, WorkerProfile, WorkerTable


COORDINATOR_ID = "coordinator"


DEFAULT_WORKERS: List[Dict[str, Any]] = [
    {
        "id": "frontend",
        "name": "Front-end Developer",
        "rules": [
            {"kind": "path", "precedence": 1, "patterns": [
                "*.tsx", "*.jsx", "*.vue", "*.svelte", "*.css", "*.scss", "*.html",
                "src/components/*",
            ]},
            {"kind": "keyword", "precedence": 1, "patterns": [
                "ui", "frontend", "component", "layout", "css", "stylesheet",
            ]},
        ],
    },
    {
        "id": "backend",
        "name": "Back-end Developer",
        "rules": [
            {"kind": "path", "precedence": 1, "patterns": [
                "*.py", "*.go", "*.rs", "*.java", "*.sql", "api/*", "server/*",
            ]},
            {"kind": "keyword", "precedence": 1, "patterns": [
                "api", "backend", "endpoint", "database", "migration", "server",
            ]},
        ],
    },
    {
        "id": "tester",
        "name": "Test Engineer",
        "rules": [
            # Test files also match the language globs above; outrank them
            {"kind": "path", "precedence": 2, "patterns": [
                "test_*.py", "*_test.py", "*_test.go", "*.test.ts", "*.test.js",
                "*.spec.ts", "*.spec.js", "tests/*",
            ]},
            {"kind": "keyword", "precedence": 1, "patterns": [
                "test", "tests", "coverage", "regression",
            ]},
        ],
    },
    {
        "id": "docs",
        "name": "Technical Writer",
        "rules": [
            {"kind": "path", "precedence": 1, "patterns": ["*.md", "*.rst", "docs/*"]},
            {"kind": "keyword", "precedence": 1, "patterns": [
                "documentation", "docs", "readme", "changelog",
            ]},
        ],
    },
    {
        "id": "devops",
        "name": "DevOps Engineer",
        "rules": [
            {"kind": "path", "precedence": 1, "patterns": [
                "Dockerfile", "*.yml", "*.yaml", ".github/*", "*.tf", "Makefile",
            ]},
            {"kind": "keyword", "precedence": 1, "patterns": [
                "deploy", "deployment", "docker", "ci", "pipeline", "kubernetes",
            ]},
        ],
    },
    {
        "id": COORDINATOR_ID,
        "name": "Coordinator",
        "rules": [],
    },
]


def build_worker(spec: Dict[str, Any]) -> WorkerProfile:
    """Build a WorkerProfile from a plain dict (config or built-in table)."""
    return WorkerProfile(
        id=spec["id"],
        name=spec.get("name", ""),
        rules=[
            CapabilityRule(
                kind=RuleKind(rule["kind"]),
                patterns=list(rule["patterns"]),
                precedence=rule.get("precedence", 0),
            )
            for rule in spec.get("rules", [])
        ],
    )


def default_worker_table() -> WorkerTable:
    """Fresh copy of the built-in table with the coordinator as default."""
    return WorkerTable(
        workers=[build_worker(spec) for spec in DEFAULT_WORKERS],
        default_worker=COORDINATOR_ID,
    )
