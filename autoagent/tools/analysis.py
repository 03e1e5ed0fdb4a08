"""Static analysis helpers the planner can call without side effects."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from autoagent.core.exceptions import ToolError

LANGUAGES: dict[str, str] = {
    ".js": "JavaScript",
    ".mjs": "JavaScript (Module)",
    ".cjs": "JavaScript (CommonJS)",
    ".ts": "TypeScript",
    ".tsx": "TypeScript React",
    ".jsx": "JavaScript React",
    ".py": "Python",
    ".java": "Java",
    ".cpp": "C++",
    ".c": "C",
    ".cs": "C#",
    ".go": "Go",
    ".rs": "Rust",
    ".php": "PHP",
    ".rb": "Ruby",
    ".swift": "Swift",
    ".kt": "Kotlin",
    ".html": "HTML",
    ".css": "CSS",
    ".scss": "SCSS",
    ".sass": "Sass",
    ".json": "JSON",
    ".xml": "XML",
    ".yaml": "YAML",
    ".yml": "YAML",
    ".md": "Markdown",
    ".sh": "Shell",
    ".bash": "Bash",
    ".sql": "SQL",
}

_SHEBANGS = {"python": "Python", "node": "JavaScript", "bash": "Bash", "sh": "Shell"}

_JS_IMPORT = re.compile(r"""import\s+(?:[\w*{}\s,]+\s+from\s+)?['"]([^'"]+)['"]""")
_JS_REQUIRE = re.compile(r"""require\s*\(\s*['"]([^'"]+)['"]\s*\)""")
_PY_IMPORT = re.compile(r"^\s*(?:from\s+(\S+)\s+import\s+.+|import\s+(.+))$", re.MULTILINE)

PROJECT_STRUCTURES: dict[str, dict] = {
    "web-react": {
        "description": "React single-page application built with Vite",
        "structure": {
            "src/": {
                "components/": "React components",
                "pages/": "Application pages",
                "hooks/": "Custom hooks",
                "utils/": "Utilities",
                "styles/": "CSS/SCSS files",
                "App.tsx": "Root component",
                "main.tsx": "Entry point",
            },
            "public/": "Static assets",
            "index.html": "HTML shell",
            "package.json": "npm dependencies",
            "vite.config.ts": "Vite configuration",
            "tsconfig.json": "TypeScript configuration",
        },
        "dependencies": ["react", "react-dom"],
        "dev_dependencies": ["@vitejs/plugin-react", "vite", "typescript"],
    },
    "api-express": {
        "description": "REST API with Express.js",
        "structure": {
            "src/": {
                "routes/": "API routes",
                "controllers/": "Controllers",
                "models/": "Data models",
                "middlewares/": "Express middlewares",
                "config/": "Configuration",
                "index.ts": "Entry point",
            },
            "tests/": "Tests",
            "package.json": "npm dependencies",
            "tsconfig.json": "TypeScript configuration",
            ".env.example": "Environment variables",
        },
        "dependencies": ["express", "cors", "dotenv"],
        "dev_dependencies": ["@types/express", "@types/cors", "typescript", "ts-node", "nodemon"],
    },
    "python-app": {
        "description": "Python application",
        "structure": {
            "src/": {
                "__init__.py": "Main package",
                "main.py": "Entry point",
                "utils/": "Utilities",
            },
            "tests/": "Unit tests",
            "requirements.txt": "Python dependencies",
            "README.md": "Documentation",
            ".gitignore": "Ignored files",
        },
        "dependencies": [],
        "dev_dependencies": ["pytest"],
    },
    "fullstack": {
        "description": "Full-stack application (frontend + backend)",
        "structure": {
            "client/": "React frontend",
            "server/": "Express backend",
            "shared/": "Shared types and utilities",
            "package.json": "Workspace configuration",
            "README.md": "Documentation",
        },
        "dependencies": [],
        "dev_dependencies": [],
    },
}


def detect_language(filename: str, content: Optional[str] = None) -> dict:
    ext = Path(filename).suffix.lower()
    language = LANGUAGES.get(ext, "Unknown")
    if language == "Unknown" and content and content.startswith("#!"):
        first_line = content.splitlines()[0]
        for marker, name in _SHEBANGS.items():
            if marker in first_line:
                language = name
                break
    return {"filename": filename, "extension": ext, "language": language}


def analyze_dependencies(content: str, language: str) -> dict:
    """External imports found in source text. Relative imports are dropped."""
    found: list[str] = []
    family = language.split(" ")[0]

    if family in ("JavaScript", "TypeScript"):
        found.extend(m.group(1) for m in _JS_IMPORT.finditer(content))
        found.extend(m.group(1) for m in _JS_REQUIRE.finditer(content))
    elif family == "Python":
        for m in _PY_IMPORT.finditer(content):
            if m.group(1):
                found.append(m.group(1))
            else:
                found.extend(part.strip().split(" ")[0] for part in m.group(2).split(","))
    else:
        raise ToolError(f"Dependency analysis not supported for {language}")

    external: list[str] = []
    for dep in found:
        if dep and not dep.startswith((".", "/")) and dep not in external:
            external.append(dep)
    return {"language": language, "dependencies": external, "count": len(external)}


def suggest_project_structure(project_type: str) -> dict:
    structure = PROJECT_STRUCTURES.get(project_type)
    if structure is None:
        supported = ", ".join(PROJECT_STRUCTURES)
        raise ToolError(f"Unknown project type: {project_type}. Supported: {supported}")
    return {"project_type": project_type, **structure}
