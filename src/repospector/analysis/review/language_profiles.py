"""Language-specific review rules for per-file PR review prompts.

Each profile lists what a reviewer should look for in changed code of that
language: deprecated APIs, security patterns, performance anti-patterns and
common bug patterns. Profiles are injected into the per-file prompt for the
primary language of a review unit.

Supported Languages:
    JavaScript, TypeScript, Python, Java, Go, Ruby, PHP, C#, Rust, Kotlin

Unknown languages fall back to the JavaScript profile.
"""

from dataclasses import dataclass, field
from pathlib import PurePosixPath

from ...config.defaults import LANGUAGE_MAPPINGS


@dataclass(frozen=True)
class LanguageProfile:
    """Review rules for one language.

    Attributes:
        name: Human-readable language name (e.g., "Python")
        deprecated: Deprecated APIs and their replacements
        security_checks: Language-specific security concerns
        performance_checks: Performance anti-patterns
        patterns: Common bug patterns

    Example:
        >>> rules = get_language_rules("py")
        >>> rules.name
        'Python'
    """

    name: str
    deprecated: list[str] = field(default_factory=list)
    security_checks: list[str] = field(default_factory=list)
    performance_checks: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)


LANGUAGE_REVIEW_RULES: dict[str, LanguageProfile] = {
    "javascript": LanguageProfile(
        name="JavaScript",
        deprecated=[
            "String.prototype.substr() (use slice() or substring())",
            "__proto__ access (use Object.getPrototypeOf())",
            "arguments.callee (use a named function)",
            "with statements",
            "document.write() (use DOM APIs)",
            "escape()/unescape() (use encodeURIComponent()/decodeURIComponent())",
        ],
        security_checks=[
            "eval(), new Function() or setTimeout(string) enabling code injection",
            "innerHTML assigned from unsanitized input (XSS)",
            "postMessage handlers that skip origin validation",
            "Prototype pollution through Object.assign or spread of user input",
            "RegExp built from user input without escaping (ReDoS)",
            "Secrets, API keys or tokens hardcoded in source",
        ],
        performance_checks=[
            "Synchronous XHR on the main thread",
            "Missing memoization causing needless React re-renders",
            "Importing all of lodash instead of single functions",
            "setInterval or event listeners that are never cleared",
            "Large objects captured in long-lived closures",
        ],
        patterns=[
            "Awaited promises without try/catch or .catch()",
            "Async functions that swallow or ignore errors",
            "console.log left in production code",
            "== where === is intended",
            "useEffect without a cleanup function",
        ],
    ),
    "typescript": LanguageProfile(
        name="TypeScript",
        deprecated=[
            "namespace declarations (use ES modules)",
            "<Type>value casts (use 'value as Type')",
            "Every deprecated JavaScript API",
        ],
        security_checks=[
            "'as any' assertions that bypass type checking",
            "@ts-ignore hiding genuine errors",
            "Non-null assertions (!) masking possible null values",
            "Every JavaScript security check",
        ],
        performance_checks=["Same performance checks as JavaScript"],
        patterns=[
            "any used where a precise type exists",
            "Public methods without explicit return types",
            "enum used where a union type or const enum fits better",
            "Every JavaScript bug pattern",
        ],
    ),
    "python": LanguageProfile(
        name="Python",
        deprecated=[
            "datetime.utcnow()/utcfromtimestamp() (use datetime.now(timezone.utc))",
            "os.popen() (use subprocess.run())",
            "asyncio.get_event_loop() inside coroutines (use get_running_loop())",
            "typing.Dict/List/Tuple (use builtin generics)",
            "unittest assertEquals (use assertEqual)",
            "collections.MutableMapping (use collections.abc)",
        ],
        security_checks=[
            "pickle.loads() on untrusted data",
            "yaml.load() without a safe loader (use yaml.safe_load())",
            "os.system() or subprocess with shell=True",
            "str.format() applied to user-controlled format strings",
            "SQL built by string concatenation (use parameterized queries)",
            "eval()/exec() on user input",
        ],
        performance_checks=[
            "N+1 ORM queries inside loops",
            "Materialized lists where a generator suffices",
            "CPU-bound threading limited by the GIL",
            "String concatenation in loops (use str.join())",
        ],
        patterns=[
            "Bare except: catching SystemExit and KeyboardInterrupt",
            "Mutable default arguments (def f(x=[]))",
            "logger.exception() outside an except block",
            "Errors logged at info level",
            "Packages missing __init__.py",
        ],
    ),
    "java": LanguageProfile(
        name="Java",
        deprecated=[
            "Date/Calendar (use java.time)",
            "Vector/Hashtable (use ArrayList/HashMap)",
            "Thread.stop()/suspend()/resume()",
            "finalize() overrides",
            "StringBuffer in single-threaded code (use StringBuilder)",
        ],
        security_checks=[
            "SQL built by concatenation (use PreparedStatement)",
            "XML parsers with external entities enabled (XXE)",
            "ObjectInputStream on untrusted data",
            "Hardcoded credentials",
            "Reflection on user-controlled class names",
        ],
        performance_checks=[
            "String concatenation in loops (use StringBuilder)",
            "Autoboxing inside tight loops",
            "Resources not closed (use try-with-resources)",
            "N+1 JPA/Hibernate queries",
        ],
        patterns=[
            "catch (Exception e) instead of specific exceptions",
            "Empty catch blocks",
            "equals() overridden without hashCode()",
            "Unchecked null return values",
        ],
    ),
    "go": LanguageProfile(
        name="Go",
        deprecated=["io/ioutil (use io and os, Go 1.16+)"],
        security_checks=[
            "fmt.Sprintf used to build SQL queries",
            "Unvalidated HTTP redirects",
            "tls.Config with InsecureSkipVerify: true",
            "os/exec invoked with user input",
        ],
        performance_checks=[
            "Goroutine leaks from blocked channels or missing context cancellation",
            "Allocations on hot paths (consider sync.Pool)",
            "defer inside loops",
        ],
        patterns=[
            "Ignored error return values",
            "Goroutines without WaitGroup or context",
            "Shared state mutated without a mutex",
            "Unchecked interface type assertions",
        ],
    ),
    "ruby": LanguageProfile(
        name="Ruby",
        deprecated=[
            "URI.escape (use CGI.escape or URI::DEFAULT_PARSER)",
            "File.exists? (use File.exist?)",
            "Fixnum/Bignum (use Integer)",
        ],
        security_checks=[
            "send() with a user-controlled method name",
            "system()/exec() with user input",
            "YAML.load (use YAML.safe_load)",
            "ERB templates rendering unescaped input",
        ],
        performance_checks=[
            "N+1 queries (use includes or eager_load)",
            "each over large relations (use find_each)",
        ],
        patterns=[
            "rescue Exception instead of StandardError",
            "Missing frozen_string_literal magic comment",
        ],
    ),
    "php": LanguageProfile(
        name="PHP",
        deprecated=[
            "mysql_* functions (use mysqli or PDO)",
            "ereg() (use preg_match())",
            "each() (use foreach)",
        ],
        security_checks=[
            "SQL built by concatenation (use prepared statements)",
            "exec()/system()/passthru() with user input",
            "unserialize() on untrusted data",
            "include/require with user-controlled paths",
        ],
        performance_checks=[
            "count() evaluated in loop conditions",
            "Loading entire tables into memory",
        ],
        patterns=[
            "Missing scalar type declarations",
            "Loose == comparisons on type-sensitive values",
        ],
    ),
    "csharp": LanguageProfile(
        name="C#",
        deprecated=[
            "WebRequest (use HttpClient)",
            "ArrayList (use List<T>)",
            "Thread.Abort() (use CancellationToken)",
        ],
        security_checks=[
            "SQL built by concatenation (use parameters)",
            "BinaryFormatter deserialization",
            "Regex without a timeout (ReDoS)",
        ],
        performance_checks=[
            "String concatenation in loops (use StringBuilder)",
            "LINQ on hot paths without materialization",
            "Library code missing ConfigureAwait(false)",
            "IDisposable not disposed (use using)",
        ],
        patterns=[
            "catch (Exception) instead of specific types",
            "async void outside event handlers",
            "Null dereferences nullable reference types would catch",
        ],
    ),
    "rust": LanguageProfile(
        name="Rust",
        deprecated=[],
        security_checks=[
            "unsafe blocks without a safety justification",
            "unwrap() on values derived from user input",
            "Raw SQL without parameters",
        ],
        performance_checks=[
            "Needless clone() where a borrow works",
            "collect() on large iterators without capacity hints",
            "Box<dyn Trait> where generics suffice",
        ],
        patterns=[
            "unwrap()/expect() in library code (return Result)",
            "Ignored #[must_use] results",
            "Poisoned Mutex not handled",
        ],
    ),
    "kotlin": LanguageProfile(
        name="Kotlin",
        deprecated=["java.util.Date (use java.time or kotlinx-datetime)"],
        security_checks=["Every Java security check"],
        performance_checks=[
            "Intermediate collections where a Sequence fits",
            "Coroutine scopes that outlive their owner",
        ],
        patterns=[
            "!! non-null assertions (use safe calls or let)",
            "Non-exhaustive when over sealed classes",
            "Mutable collections exposed in public APIs",
        ],
    ),
}

LANGUAGE_ALIASES: dict[str, str] = {
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "rb": "ruby",
    "cs": "csharp",
    "rs": "rust",
    "kt": "kotlin",
    "kts": "kotlin",
}

FALLBACK_LANGUAGE = "javascript"


def get_language_rules(language: str | None) -> LanguageProfile:
    """Get review rules for a language name or alias.

    Args:
        language: Language name ("python") or alias ("py"); case-insensitive

    Returns:
        Matching LanguageProfile, or the JavaScript profile when unknown
    """
    if not language:
        return LANGUAGE_REVIEW_RULES[FALLBACK_LANGUAGE]
    key = language.lower()
    key = LANGUAGE_ALIASES.get(key, key)
    return LANGUAGE_REVIEW_RULES.get(key, LANGUAGE_REVIEW_RULES[FALLBACK_LANGUAGE])


def detect_language(file_path: str) -> str | None:
    """Detect a file's language from its extension.

    Example:
        >>> detect_language("src/auth/login.tsx")
        'typescript'
    """
    extension = PurePosixPath(file_path).suffix.lower()
    return LANGUAGE_MAPPINGS.get(extension)
