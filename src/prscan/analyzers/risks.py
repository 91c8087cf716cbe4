"""Risk rules evaluated against a scanned package version.

Each rule looks at one signal and either produces a single RiskFinding or
nothing. Rules are independent: a package can trigger any combination.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from semantic_version import Version

from prscan.config import ScanSettings
from prscan.models.schemas import (
    AccessMode,
    DownloadStats,
    GlobalUsageEvidence,
    PackageMetadata,
    RiskFinding,
    RiskKind,
    Severity,
)


# === Dangerous Global Categories ===

NETWORK_GLOBALS = frozenset({
    "fetch",
    "XMLHttpRequest",
    "ActiveXObject",
    "WebSocket",
    "EventSource",
    "navigator",
    "Image",
    "Script",
})

DOM_GLOBALS = frozenset({"document", "window", "addEventListener"})

# Assigning one of these installs a handler on the global object
DOM_CALLBACKS = frozenset({
    "onsearch", "onappinstalled", "onbeforeinstallprompt", "onbeforexrselect",
    "onabort", "onbeforeinput", "onbeforematch", "onbeforetoggle", "onblur",
    "oncancel", "oncanplay", "oncanplaythrough", "onchange", "onclick",
    "onclose", "oncommand", "oncontentvisibilityautostatechange",
    "oncontextlost", "oncontextmenu", "oncontextrestored", "oncuechange",
    "ondblclick", "ondrag", "ondragend", "ondragenter", "ondragleave",
    "ondragover", "ondragstart", "ondrop", "ondurationchange", "onemptied",
    "onended", "onerror", "onfocus", "onformdata", "oninput", "oninvalid",
    "onkeydown", "onkeypress", "onkeyup", "onload", "onloadeddata",
    "onloadedmetadata", "onloadstart", "onmousedown", "onmouseenter",
    "onmouseleave", "onmousemove", "onmouseout", "onmouseover", "onmouseup",
    "onmousewheel", "onpause", "onplay", "onplaying", "onprogress",
    "onratechange", "onreset", "onresize", "onscroll", "onscrollend",
    "onsecuritypolicyviolation", "onseeked", "onseeking", "onselect",
    "onslotchange", "onstalled", "onsubmit", "onsuspend", "ontimeupdate",
    "ontoggle", "onvolumechange", "onwaiting", "onwebkitanimationend",
    "onwebkitanimationiteration", "onwebkitanimationstart",
    "onwebkittransitionend", "onwheel", "onauxclick", "ongotpointercapture",
    "onlostpointercapture", "onpointerdown", "onpointermove",
    "onpointerrawupdate", "onpointerup", "onpointercancel", "onpointerover",
    "onpointerout", "onpointerenter", "onpointerleave", "onselectstart",
    "onselectionchange", "onanimationend", "onanimationiteration",
    "onanimationstart", "ontransitionrun", "ontransitionstart",
    "ontransitionend", "ontransitioncancel", "onafterprint", "onbeforeprint",
    "onbeforeunload", "onhashchange", "onlanguagechange", "onmessage",
    "onmessageerror", "onoffline", "ononline", "onpagehide", "onpageshow",
    "onpopstate", "onrejectionhandled", "onstorage", "onunhandledrejection",
    "onunload", "ondevicemotion", "ondeviceorientation",
    "ondeviceorientationabsolute", "onpageswap", "onpagereveal",
    "onscrollsnapchange", "onscrollsnapchanging",
})

CODE_EXECUTION_GLOBALS = frozenset({"eval"})

LOCAL_STORAGE_GLOBALS = frozenset({"localStorage", "sessionStorage", "IndexedDB", "cookies"})

EXTENSION_API_GLOBALS = frozenset({"chrome"})

# (category, description) per category
NETWORK = ("network", "Issues network requests, possibly for malicious purposes")
DOM = ("dom", "May read sensitive user data such as wallet mnemonics from the page")
CODE_EXECUTION = ("code-execution", "May execute malicious code")
LOCAL_STORAGE = ("local-storage", "May read the user's locally stored data")
EXTENSION_API = ("extension-api", "Accesses the browser extension API")

# Markers left behind by common JavaScript obfuscators
OBFUSCATION_MARKERS = ("while(!![])", "+-parseInt(")
OBFUSCATED_IDENTIFIER = re.compile(r"_0x[0-9a-fA-F]{6}")


def categorize_global(name: str, mode: AccessMode) -> tuple[str, str] | None:
    """Return the (category, description) of a dangerous global, if any."""
    if name in NETWORK_GLOBALS:
        return NETWORK
    if name in DOM_GLOBALS or (name in DOM_CALLBACKS and mode == AccessMode.READ_WRITE):
        return DOM
    if name in CODE_EXECUTION_GLOBALS:
        return CODE_EXECUTION
    if name in LOCAL_STORAGE_GLOBALS:
        return LOCAL_STORAGE
    if name in EXTENSION_API_GLOBALS:
        return EXTENSION_API
    return None


@dataclass
class RuleContext:
    """Everything the rules may look at for one package version."""

    name: str
    version: str
    metadata: PackageMetadata
    download_stats: DownloadStats
    global_usage: Mapping[str, AccessMode] = field(default_factory=dict)
    # Path -> decoded text of every analyzed file
    files: Mapping[str, str] = field(default_factory=dict)
    settings: ScanSettings = field(default_factory=ScanSettings)
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BaseRule(ABC):
    """A single risk heuristic."""

    kind: RiskKind
    severity: Severity
    description: str

    @abstractmethod
    def evaluate(self, context: RuleContext) -> RiskFinding | None:
        """Evaluate the rule.

        Args:
            context: Package data gathered by the pipeline.

        Returns:
            A finding if the rule fires, otherwise None.
        """
        ...

    def finding(self, evidence: str, **extra) -> RiskFinding:
        return RiskFinding(
            kind=self.kind,
            severity=self.severity,
            description=self.description,
            evidence=evidence,
            **extra,
        )


def versions_equal(left: str, right: str) -> bool:
    """Compare two versions semantically, falling back to string equality."""
    try:
        return Version(left) == Version(right)
    except ValueError:
        return left == right


class FreshnessRule(BaseRule):
    """Flags the latest version when it was published very recently."""

    kind = RiskKind.FRESHNESS
    severity = Severity.LOW
    description = "Uses the latest or a recently published version"

    def evaluate(self, context: RuleContext) -> RiskFinding | None:
        latest = context.metadata.latest_version
        if not latest or not versions_equal(context.version, latest):
            return None

        published = context.metadata.published_at(latest)
        if published is None:
            return None
        if published.tzinfo is None:
            published = published.replace(tzinfo=timezone.utc)

        window = context.settings.freshness_days
        if context.now - published >= timedelta(days=window):
            return None

        return self.finding(
            f"{context.name} uses the latest version {context.version}, "
            f"published within the last {window} days ({published.date().isoformat()})"
        )


class PopularityRule(BaseRule):
    """Flags packages with few downloads."""

    kind = RiskKind.POPULARITY
    severity = Severity.MEDIUM
    description = "Uses a rarely downloaded npm package"

    def evaluate(self, context: RuleContext) -> RiskFinding | None:
        stats = context.download_stats
        if stats.downloads >= context.settings.popularity_threshold:
            return None
        return self.finding(
            f"{context.name} was downloaded only {stats.downloads} times "
            f"between {stats.start} and {stats.end}"
        )


class DangerousGlobalRule(BaseRule):
    """Flags access to network, DOM, eval, storage or extension globals."""

    kind = RiskKind.DANGEROUS_GLOBAL
    severity = Severity.HIGH
    description = "Uses dangerous global variables"

    def evaluate(self, context: RuleContext) -> RiskFinding | None:
        matches: list[GlobalUsageEvidence] = []
        for name, mode in context.global_usage.items():
            category = categorize_global(name, mode)
            if category is None:
                continue
            matches.append(GlobalUsageEvidence(
                name=name,
                mode=mode,
                category=category[0],
                description=category[1],
            ))

        if not matches:
            return None

        lines = []
        for match in matches:
            verb = "reads" if match.mode == AccessMode.READ else "writes"
            lines.append(f"- {verb} {match.name} ({match.category}): {match.description}")
        return self.finding("\n".join(lines), globals=tuple(matches))


class ObfuscationRule(BaseRule):
    """Flags files that carry typical obfuscator output."""

    kind = RiskKind.OBFUSCATION
    severity = Severity.MEDIUM
    description = "Code is obfuscated"

    @staticmethod
    def is_obfuscated(content: str) -> bool:
        if any(marker in content for marker in OBFUSCATION_MARKERS):
            return True
        return OBFUSCATED_IDENTIFIER.search(content) is not None

    def evaluate(self, context: RuleContext) -> RiskFinding | None:
        hits = [path for path, content in sorted(context.files.items()) if self.is_obfuscated(content)]
        if not hits:
            return None
        return self.finding("\n".join(f"- {path} is obfuscated" for path in hits))


class KeywordRule(BaseRule):
    """Flags files that mention a configured sensitive keyword."""

    kind = RiskKind.KEYWORD
    severity = Severity.LOW
    description = "Matches a sensitive keyword"

    def evaluate(self, context: RuleContext) -> RiskFinding | None:
        lines = []
        for path, content in sorted(context.files.items()):
            for keyword in context.settings.keywords:
                if keyword in content:
                    lines.append(f"- {path} uses {keyword}")
        if not lines:
            return None
        return self.finding("\n".join(lines))


RULES: tuple[BaseRule, ...] = (
    FreshnessRule(),
    PopularityRule(),
    DangerousGlobalRule(),
    ObfuscationRule(),
    KeywordRule(),
)


def classify(context: RuleContext, rules: tuple[BaseRule, ...] = RULES) -> list[RiskFinding]:
    """Run every rule and collect the findings, in rule order."""
    findings = []
    for rule in rules:
        finding = rule.evaluate(context)
        if finding is not None:
            findings.append(finding)
    return findings
