"""Security — static validation of generated analysis code.

Scans generated Python code for forbidden constructs before it is allowed
anywhere near the sandbox. Every rule is an independent predicate over the
code text, tagged with a ``RuleCategory`` so it can be tested and reported
on its own.

This is lexical pattern matching, not AST analysis: a forbidden token inside
a string literal is still rejected, and obfuscated access can slip through.
The container sandbox is the real safety boundary; this is the first line.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Pattern, Sequence, Tuple

logger = logging.getLogger(__name__)


class RuleCategory(str, Enum):
    SYSTEM_ACCESS = "system-access"
    NETWORK = "network"
    DYNAMIC_EVAL = "dynamic-eval"
    REFLECTION = "reflection"
    FILE_IO = "file-io"
    SERIALIZATION = "serialization"
    PLOTTING = "plotting"
    IMPORT_ALLOWLIST = "import-allowlist"
    OUTPUT_FORMAT = "output-format"
    STRUCTURE = "structure"
    COLUMNS = "columns"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class SanitizationResult:
    """Result of code validation. ``is_valid`` is true iff there are no errors."""
    is_valid: bool
    sanitized_code: str
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# ── Forbidden Patterns ────────────────────────────────────────

_DENYLIST: Dict[RuleCategory, List[Tuple[str, str]]] = {
    RuleCategory.SYSTEM_ACCESS: [
        (r"\bos\s*\.", "OS access (os.*) is forbidden"),
        (r"\bsys\s*\.", "Interpreter access (sys.*) is forbidden"),
        (r"\bsubprocess\b", "subprocess module is forbidden"),
        (r"\bshutil\b", "shutil module is forbidden"),
        (r"\bctypes\b", "ctypes module is forbidden"),
        (r"\bmultiprocessing\b", "multiprocessing module is forbidden"),
        (r"\bthreading\b", "threading module is forbidden"),
    ],
    RuleCategory.DYNAMIC_EVAL: [
        (r"\beval\s*\(", "eval() is forbidden"),
        (r"\bexec\s*\(", "exec() is forbidden"),
        (r"\bcompile\s*\(", "compile() is forbidden"),
        (r"\b__import__\b", "__import__ is forbidden"),
        (r"\bimportlib\b", "importlib module is forbidden"),
    ],
    RuleCategory.REFLECTION: [
        (r"\bglobals\s*\(", "globals() is forbidden"),
        (r"\blocals\s*\(", "locals() is forbidden"),
        (r"\bvars\s*\(", "vars() is forbidden"),
        (r"\b__builtins__\b", "__builtins__ access is forbidden"),
        (r"\b(?:get|set|del)attr\s*\(", "Dynamic attribute access is forbidden"),
        (r"\.__(?:class|bases|mro|subclasses|globals|code|dict|closure|func)__\b",
         "Dunder attribute access is forbidden"),
    ],
    RuleCategory.FILE_IO: [
        (r"\bopen\s*\(", "open() is forbidden"),
        (r"\bpathlib\b", "pathlib module is forbidden"),
        (r"\bPath\s*\(", "Path objects are forbidden"),
        (r"\bread_(?:csv|table|excel|json|parquet|feather|orc|hdf|sql|sql_query|sql_table|html|xml|fwf|sas|spss|stata|clipboard)\s*\(",
         "Reading files is forbidden — use the preloaded df"),
        (r"\.to_(?:csv|excel|parquet|feather|orc|hdf|sql|stata|clipboard)\s*\(",
         "Writing files is forbidden"),
        (r"\bnp\.(?:load|save|savez|savetxt|loadtxt|genfromtxt|fromfile)\s*\(",
         "numpy file I/O is forbidden"),
    ],
    RuleCategory.NETWORK: [
        (r"\bsocket\b", "socket module is forbidden"),
        (r"\burllib\d?\b", "urllib module is forbidden"),
        (r"\bhttp\.(?:client|server)\b", "http module is forbidden"),
        (r"\bhttpx\b", "httpx module is forbidden"),
        (r"\baiohttp\b", "aiohttp module is forbidden"),
        (r"\brequests\s*\.\s*(?:get|post|put|patch|delete|head|request|Session)\b",
         "requests module is forbidden"),
        (r"\b(?:ftplib|smtplib|telnetlib|webbrowser)\b", "Network modules are forbidden"),
    ],
    RuleCategory.SERIALIZATION: [
        (r"\bpickle\b", "pickle module is forbidden (security risk)"),
        (r"\bread_pickle\b|\bto_pickle\b", "pickle I/O is forbidden (security risk)"),
        (r"\b(?:marshal|shelve|dill|joblib)\b", "Serialization backdoors are forbidden"),
        (r"\byaml\s*\.\s*(?:load|unsafe_load)\b", "Unsafe YAML loading is forbidden"),
    ],
    RuleCategory.PLOTTING: [
        (r"\bmatplotlib\b", "Plotting libraries are not allowed — return data, not charts"),
        (r"\bseaborn\b|\bsns\s*\.", "Plotting libraries are not allowed — return data, not charts"),
        (r"\bplotly\b", "Plotting libraries are not allowed — return data, not charts"),
        (r"\bplt\s*\.", "Plotting calls are not allowed — return data, not charts"),
        (r"\.plot\s*\(", "Plotting calls are not allowed — return data, not charts"),
        (r"\.show\s*\(", "Display calls are not allowed — print JSON instead"),
    ],
}

_COMPILED: Dict[RuleCategory, List[Tuple[Pattern[str], str]]] = {
    category: [(re.compile(pattern, re.IGNORECASE), message) for pattern, message in rules]
    for category, rules in _DENYLIST.items()
}

# Modules allowed for import (top-level name)
ALLOWED_IMPORTS = frozenset({"pandas", "numpy", "json", "math"})

_IMPORT_RE = re.compile(r"(?:^|;)[ \t]*import[ \t]+([^\n;#]+)", re.MULTILINE)
_FROM_IMPORT_RE = re.compile(r"(?:^|;)[ \t]*from[ \t]+(\.*[\w.]*)[ \t]+import\b", re.MULTILINE)
_OUTPUT_RE = re.compile(r"print\s*\(\s*json\s*\.\s*dumps\s*\(")
_DF_COLUMN_RE = re.compile(r"\bdf\s*\[\s*(['\"])(.+?)\1\s*\]")

_BALANCE_PAIRS = (("(", ")", "parentheses"), ("[", "]", "brackets"), ("{", "}", "braces"))


# ── Rule predicates ───────────────────────────────────────────


def _denylist_check(category: RuleCategory) -> Callable[[str], List[str]]:
    def check(code: str) -> List[str]:
        found: List[str] = []
        for pattern, message in _COMPILED[category]:
            if pattern.search(code) and message not in found:
                found.append(message)
        return found

    check.__name__ = f"check_{category.name.lower()}"
    return check


check_system_access = _denylist_check(RuleCategory.SYSTEM_ACCESS)
check_dynamic_eval = _denylist_check(RuleCategory.DYNAMIC_EVAL)
check_reflection = _denylist_check(RuleCategory.REFLECTION)
check_file_io = _denylist_check(RuleCategory.FILE_IO)
check_network = _denylist_check(RuleCategory.NETWORK)
check_serialization = _denylist_check(RuleCategory.SERIALIZATION)
check_plotting = _denylist_check(RuleCategory.PLOTTING)


def extract_imports(code: str) -> List[str]:
    """Return the top-level module names imported by *code*, in order, without duplicates."""
    modules: List[str] = []
    for match in _IMPORT_RE.finditer(code):
        for part in match.group(1).split(","):
            name = part.strip().split(" as ")[0].strip()
            if name:
                modules.append(name.split(".")[0])
    for match in _FROM_IMPORT_RE.finditer(code):
        name = match.group(1)
        modules.append(name if name.startswith(".") else name.split(".")[0])

    seen = set()
    return [m for m in modules if not (m in seen or seen.add(m))]


def check_imports(code: str) -> List[str]:
    return [
        f"Disallowed import: {module}"
        for module in extract_imports(code)
        if module not in ALLOWED_IMPORTS
    ]


def check_output_format(code: str) -> List[str]:
    if _OUTPUT_RE.search(code):
        return []
    return ["Code should output its result using print(json.dumps(...))"]


def check_balance(code: str) -> List[str]:
    problems: List[str] = []
    for opener, closer, name in _BALANCE_PAIRS:
        opened, closed = code.count(opener), code.count(closer)
        if opened != closed:
            problems.append(f"Unbalanced {name}: {opened} open, {closed} close")
    return problems


def check_columns(code: str, available_columns: Sequence[str]) -> List[str]:
    if not available_columns:
        return []
    known = set(available_columns)
    missing: List[str] = []
    for match in _DF_COLUMN_RE.finditer(code):
        column = match.group(2)
        if column not in known and column not in missing:
            missing.append(column)
    return [f"Column '{c}' is not in the dataset" for c in missing]


@dataclass(frozen=True)
class Rule:
    category: RuleCategory
    severity: Severity
    check: Callable[[str], List[str]]


RULES: Tuple[Rule, ...] = (
    Rule(RuleCategory.SYSTEM_ACCESS, Severity.ERROR, check_system_access),
    Rule(RuleCategory.DYNAMIC_EVAL, Severity.ERROR, check_dynamic_eval),
    Rule(RuleCategory.REFLECTION, Severity.ERROR, check_reflection),
    Rule(RuleCategory.FILE_IO, Severity.ERROR, check_file_io),
    Rule(RuleCategory.NETWORK, Severity.ERROR, check_network),
    Rule(RuleCategory.SERIALIZATION, Severity.ERROR, check_serialization),
    Rule(RuleCategory.PLOTTING, Severity.ERROR, check_plotting),
    Rule(RuleCategory.IMPORT_ALLOWLIST, Severity.ERROR, check_imports),
    Rule(RuleCategory.OUTPUT_FORMAT, Severity.WARNING, check_output_format),
)


def build_rules(
    available_columns: Sequence[str] = (),
    balance_severity: Severity = Severity.ERROR,
) -> Tuple[Rule, ...]:
    """Fixed rules plus the ones that depend on the dataset and the balance policy."""
    columns = tuple(available_columns)
    return RULES + (
        Rule(RuleCategory.STRUCTURE, Severity(balance_severity), check_balance),
        Rule(RuleCategory.COLUMNS, Severity.WARNING, lambda code: check_columns(code, columns)),
    )


# ── Public API ────────────────────────────────────────────────


def sanitize_code(code: str) -> str:
    """Light normalisation: unify line endings and strip surrounding whitespace."""
    return code.replace("\r\n", "\n").strip()


def validate_code(
    code: str,
    available_columns: Sequence[str] = (),
    balance_severity: Severity = Severity.ERROR,
    max_length: int = 50_000,
) -> SanitizationResult:
    """Validate generated code against every rule.

    Pure and deterministic: the same (code, columns, policy) always yields the
    same ``SanitizationResult``. Errors block execution; warnings never do.
    """
    sanitized = sanitize_code(code or "")

    if not sanitized:
        return SanitizationResult(is_valid=False, sanitized_code="", errors=["Empty code provided"])

    if len(sanitized) > max_length:
        return SanitizationResult(
            is_valid=False,
            sanitized_code=sanitized,
            errors=[f"Code exceeds maximum length of {max_length:,} characters"],
        )

    errors: List[str] = []
    warnings: List[str] = []

    for rule in build_rules(available_columns, balance_severity):
        found = rule.check(sanitized)
        (errors if rule.severity is Severity.ERROR else warnings).extend(found)

    is_valid = len(errors) == 0
    if not is_valid:
        logger.warning("Code validation failed: %s", errors)
    elif warnings:
        logger.info("Code validation passed with warnings: %s", warnings)

    return SanitizationResult(
        is_valid=is_valid,
        sanitized_code=sanitized,
        errors=errors,
        warnings=warnings,
    )
