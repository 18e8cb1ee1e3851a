"""Default constants for retrieval, scoring and review."""

# File extension to language name, used when a PR file arrives without one
LANGUAGE_MAPPINGS: dict[str, str] = {
    ".py": "python",
    ".pyw": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".mts": "typescript",
    ".java": "java",
    ".cs": "csharp",
    ".go": "go",
    ".rs": "rust",
    ".php": "php",
    ".rb": "ruby",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".swift": "swift",
    ".scala": "scala",
    ".cpp": "cpp",
    ".c": "c",
    ".h": "c",
    ".hpp": "cpp",
    ".sh": "bash",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".md": "markdown",
}

# ── Keyword index ──────────────────────────────────────────────────────

# English stop words dropped from every document and query
STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from",
        "has", "he", "in", "is", "it", "its", "of", "on", "that", "the",
        "to", "was", "were", "will", "with", "this", "but", "they",
        "have", "had", "what", "when", "where", "who", "which", "why", "how",
        "or", "if", "then", "else", "do", "does", "did", "can", "could",
        "would", "should", "may", "might", "must", "shall", "not",
        "no", "yes", "all", "any", "both", "each", "few", "more", "most",
        "other", "some", "such", "only", "own", "same", "so", "than", "too",
        "very", "just", "also", "now", "here", "there", "new", "old",
    }
)  # fmt: skip

# Language keywords that carry no retrieval signal in source code
CODE_STOP_WORDS = frozenset(
    {
        "const", "let", "var", "function", "return", "if", "else", "for",
        "while", "do", "switch", "case", "break", "continue", "default",
        "try", "catch", "finally", "throw", "class", "extends", "new",
        "this", "super", "import", "export", "from", "async", "await",
        "true", "false", "null", "undefined", "typeof", "instanceof",
        "void", "delete", "in", "of", "with", "yield", "static", "public",
        "private", "protected", "interface", "type", "enum", "implements",
    }
)  # fmt: skip

# ── Relevance scoring ──────────────────────────────────────────────────

DEFAULT_RELEVANCE_WEIGHTS: dict[str, float] = {
    "semantic": 0.35,  # vector similarity
    "keyword": 0.25,  # BM25 score
    "exact_match": 0.15,
    "structure": 0.10,  # class / function / ...
    "recency": 0.05,
    "file_relevance": 0.05,  # path and filename
    "popularity": 0.05,  # reference + import counts
}

STRUCTURE_SCORES: dict[str, float] = {
    "class": 1.0,
    "interface": 0.9,
    "function": 0.85,
    "method": 0.8,
    "constant": 0.6,
    "variable": 0.4,
    "import": 0.3,
    "comment": 0.2,
    "other": 0.1,
}

FILE_TYPE_SCORES: dict[str, float] = {
    # Source code
    "js": 1.0,
    "ts": 1.0,
    "jsx": 1.0,
    "tsx": 1.0,
    "py": 1.0,
    "java": 1.0,
    "go": 1.0,
    "rs": 1.0,
    "cpp": 1.0,
    "c": 1.0,
    # Web
    "vue": 0.9,
    "svelte": 0.9,
    "html": 0.7,
    "css": 0.6,
    "scss": 0.6,
    # Config / data
    "json": 0.5,
    "yaml": 0.5,
    "yml": 0.5,
    "toml": 0.4,
    "xml": 0.4,
    # Docs
    "md": 0.3,
    "txt": 0.2,
}

UNKNOWN_FILE_TYPE_SCORE = 0.2

# BM25 scores for good matches typically land in 0-20
KEYWORD_SCORE_CEILING = 15.0

# ── Review ─────────────────────────────────────────────────────────────

DEFAULT_FOCUS_AREAS = ["security", "bugs", "performance", "style"]
