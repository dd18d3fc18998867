#!/usr/bin/env python3
"""Static associations: prompt word -> memory tags, attention classes, severity words.

DEFAULT_CORTEX is the base mapping the retrieval engine consults for
pattern recognition. The cortex learner grows a project-specific layer on
top of it (see cortex_learner.merge_cortex).
"""

from .utils import tokenize

DEFAULT_CORTEX = {
    # --- Version control & hosting ---
    "git": ["git", "version-control"],
    "github": ["github", "git"],
    "repo": ["github", "git"],
    "repository": ["github", "git"],
    "commit": ["github", "git"],
    "pr": ["github", "git"],
    "pull": ["github", "git"],
    "merge": ["git"],
    "branch": ["git"],
    "rebase": ["git"],
    "push": ["git"],

    # --- Packaging & tooling ---
    "npm": ["npm", "dependencies", "packages"],
    "pip": ["python", "dependencies", "packages"],
    "package": ["npm"],
    "publish": ["npm"],
    "install": ["npm", "dependencies"],
    "dependency": ["npm", "dependencies"],
    "dependencies": ["npm", "dependencies"],
    "node_modules": ["npm"],
    "python": ["python"],
    "pytest": ["python", "testing"],
    "plugin": ["plugins"],
    "plugins": ["plugins"],
    "hook": ["hooks"],
    "hooks": ["hooks"],
    "mcp": ["mcp"],
    "playwright": ["playwright", "browser"],
    "browser": ["browser", "playwright"],
    "selector": ["playwright", "browser"],
    "stripe": ["stripe", "payments"],
    "payment": ["stripe", "payments"],
    "checkout": ["stripe"],
    "subscription": ["stripe"],
    "invoice": ["stripe"],

    # --- Infrastructure ---
    "deploy": ["deployment", "infrastructure"],
    "deploying": ["deployment"],
    "deployment": ["deployment"],
    "production": ["deployment"],
    "ship": ["deployment", "npm"],
    "release": ["deployment"],
    "docker": ["infrastructure", "deployment"],
    "kubernetes": ["infrastructure", "deployment"],
    "ci": ["ci-cd", "deployment"],
    "pipeline": ["ci-cd"],
    "migration": ["database", "migration"],
    "migrate": ["database", "migration"],

    # --- Build, test, refactor ---
    "build": ["build", "compilation"],
    "compile": ["build", "compilation"],
    "test": ["testing"],
    "tests": ["testing"],
    "testing": ["testing"],
    "mock": ["testing"],
    "refactor": ["refactoring", "architecture"],
    "lint": ["linting", "build"],

    # --- Errors and debugging ---
    "bug": ["debugging", "errors"],
    "error": ["errors", "debugging"],
    "exception": ["errors", "debugging"],
    "traceback": ["errors", "debugging"],
    "crash": ["errors", "debugging"],
    "fix": ["debugging"],
    "debug": ["debugging"],
    "flaky": ["testing", "debugging"],

    # --- Auth and security ---
    "auth": ["authentication", "security"],
    "login": ["authentication"],
    "password": ["authentication", "security"],
    "token": ["tokens", "authentication", "security"],
    "credential": ["authentication", "security"],
    "credentials": ["authentication", "security"],
    "secret": ["security", "opsec"],
    "security": ["security"],

    # --- API and data ---
    "api": ["api", "integration"],
    "endpoint": ["api"],
    "http": ["api", "network"],
    "database": ["database"],
    "sql": ["database"],
    "sqlite": ["database"],
    "postgres": ["database"],
    "query": ["database"],
    "schema": ["database", "architecture"],
    "json": ["serialization"],
    "yaml": ["serialization", "configuration"],

    # --- Frontend ---
    "react": ["react", "frontend"],
    "component": ["react", "frontend"],
    "css": ["styling", "frontend"],
    "style": ["styling", "frontend"],

    # --- Performance ---
    "performance": ["performance", "optimization"],
    "slow": ["performance"],
    "latency": ["performance"],
    "cache": ["caching", "performance"],
    "memory": ["memory", "performance"],

    # --- Configuration ---
    "config": ["configuration"],
    "configuration": ["configuration"],
    "env": ["configuration", "environment"],
    "windows": ["windows"],
    "path": ["windows"],

    # --- Session & model concepts ---
    "remember": ["memory"],
    "forgot": ["memory"],
    "context": ["memory", "tokens"],
    "session": ["memory"],
    "persist": ["memory"],
    "model": ["model-selection"],
    "tokens": ["tokens"],
    "cost": ["tokens", "strategy"],
    "budget": ["tokens", "strategy"],

    # --- Writing & social ---
    "blog": ["writing"],
    "article": ["writing"],
    "draft": ["writing"],
    "docs": ["writing", "documentation"],
    "readme": ["writing", "documentation"],
    "tweet": ["twitter", "social"],
    "reddit": ["reddit", "social"],

    # --- Architecture ---
    "architecture": ["architecture"],
    "design": ["architecture", "design"],
    "strategy": ["strategy"],
    "pricing": ["strategy"],
}

# Hard interrupts: the first keyword found in a prompt names its attention filter
ATTENTION_PATTERNS = {
    "deploy": "DEPLOYMENT detected: check deployment memories",
    "production": "PRODUCTION context: extra caution required",
    "security": "SECURITY context: review security memories",
    "delete": "DESTRUCTIVE operation: check for related pain memories",
    "payment": "PAYMENT context: mandatory human review",
    "migration": "MIGRATION detected: check for related pain memories",
}

HIGH_SEVERITY_WORDS = (
    "critical", "never", "always", "hours", "broke", "lost", "destroyed",
    "catastrophe", "disaster", "data loss", "irreversible", "production",
    "security", "credential", "password", "secret",
)

MEDIUM_SEVERITY_WORDS = (
    "important", "careful", "warning", "gotcha", "tricky", "subtle",
    "mistake", "bug", "wrong", "broke",
)


def infer_severity(content: str, rule: str = "") -> str:
    """Guess a severity from alarm words in the text."""
    text = f"{content or ''} {rule or ''}".lower()
    if any(word in text for word in HIGH_SEVERITY_WORDS):
        return "high"
    if any(word in text for word in MEDIUM_SEVERITY_WORDS):
        return "medium"
    return "low"


def infer_tags(text: str, cortex: dict = None, limit: int = 8) -> list:
    """Map words of text through the cortex, preserving first-seen order."""
    cortex = DEFAULT_CORTEX if cortex is None else cortex
    tags = []
    for word in tokenize(text):
        for tag in cortex.get(word, []):
            if tag not in tags:
                tags.append(tag)
    return tags[:limit]
