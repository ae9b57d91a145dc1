"""
Detects whether a task is code-related from its title and description.
"""
import re

CODE_ACTION_WORDS = [
    "build", "implement", "fix", "debug", "refactor", "deploy", "test",
    "code", "develop", "program", "compile", "optimize", "lint", "scaffold",
    "migrate", "parse", "serialize", "render", "transpile",
]

CODE_TECHNICAL_TERMS = [
    "api", "component", "function", "class", "module", "endpoint",
    "database", "query", "schema", "migration", "route", "middleware",
    "hook", "state", "interface", "type", "bug", "error", "exception",
    "frontend", "backend", "server", "client",
    "css", "html", "typescript", "javascript", "react", "node", "sql",
    "rest", "graphql", "json", "xml", "yaml",
    "npm", "webpack", "vite", "docker", "git",
    "algorithm", "recursion", "async", "promise", "callback",
    "variable", "constant", "enum", "struct",
]

_FILE_EXTENSION_RE = re.compile(
    r"\.(ts|tsx|js|jsx|py|rb|go|rs|java|cpp|c|h|css|scss|html|sql|sh|yml|yaml|json|toml|dockerfile)\b",
    re.IGNORECASE,
)
_CODE_SPAN_RE = re.compile(r"`[^`]+`|```[\s\S]*?```")
_KEYWORD_RE = re.compile(
    r"\b(" + "|".join(CODE_ACTION_WORDS + CODE_TECHNICAL_TERMS) + r")\b",
    re.IGNORECASE,
)


def is_code_task(title: str, description: str = "") -> bool:
    text = f"{title} {description or ''}"

    if _CODE_SPAN_RE.search(text):
        return True
    if _FILE_EXTENSION_RE.search(text):
        return True
    return bool(_KEYWORD_RE.search(text))
