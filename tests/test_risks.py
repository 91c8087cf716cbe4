"""Tests for risk classification rules."""

from datetime import timedelta

import pytest

from prscan.adapters.npm import NpmRegistry
from prscan.analyzers.risks import (
    RULES,
    DangerousGlobalRule,
    FreshnessRule,
    KeywordRule,
    ObfuscationRule,
    PopularityRule,
    RuleContext,
    classify,
    versions_equal,
)
from prscan.config import ScanSettings
from prscan.models.schemas import AccessMode, DownloadStats, RiskKind, Severity


@pytest.fixture
def make_context(make_packument, now):
    """Factory for rule contexts around a single package."""

    def _make(
        version: str = "1.0.0",
        versions: dict[str, int] | None = None,
        downloads: int = 1_000_000,
        global_usage: dict | None = None,
        files: dict[str, str] | None = None,
        settings: ScanSettings | None = None,
    ) -> RuleContext:
        packument = make_packument("demo", versions or {"1.0.0": 365})
        return RuleContext(
            name="demo",
            version=version,
            metadata=NpmRegistry.parse_metadata(packument, "demo"),
            download_stats=DownloadStats(downloads=downloads, start="2025-05-25", end="2025-05-31", package="demo"),
            global_usage=global_usage or {},
            files=files or {},
            settings=settings or ScanSettings(),
            now=now,
        )

    return _make


class TestFreshnessRule:
    """Tests for the recently-published latest version rule."""

    def test_recent_latest(self, make_context):
        """Test that a 5 day old latest version is flagged."""
        finding = FreshnessRule().evaluate(make_context(versions={"1.0.0": 5}))

        assert finding is not None
        assert finding.kind == RiskKind.FRESHNESS
        assert finding.severity == Severity.LOW

    def test_old_latest(self, make_context):
        """Test that a 60 day old latest version is not flagged."""
        assert FreshnessRule().evaluate(make_context(versions={"1.0.0": 60})) is None

    def test_recent_but_not_latest(self, make_context):
        """Test that an older version is not flagged even if recent."""
        context = make_context(version="1.0.0", versions={"1.0.0": 5, "1.0.1": 1})

        assert FreshnessRule().evaluate(context) is None

    def test_window_from_settings(self, make_context):
        """Test that the freshness window is configurable."""
        context = make_context(versions={"1.0.0": 20}, settings=ScanSettings(freshness_days=10))

        assert FreshnessRule().evaluate(context) is None

    def test_semantic_equality(self):
        """Test semantic comparison with a string fallback."""
        assert versions_equal("1.0.0", "1.0.0")
        assert not versions_equal("1.0.0", "1.0.1")
        assert versions_equal("not-semver", "not-semver")


class TestPopularityRule:
    """Tests for the low-download rule."""

    @pytest.mark.parametrize(
        "downloads, fires",
        [(9_999, True), (10_000, False), (10_001, False), (0, True)],
    )
    def test_threshold(self, make_context, downloads, fires):
        """Test the strict below-threshold boundary."""
        finding = PopularityRule().evaluate(make_context(downloads=downloads))

        assert (finding is not None) is fires
        if fires:
            assert finding.severity == Severity.MEDIUM
            assert str(downloads) in finding.evidence


class TestDangerousGlobalRule:
    """Tests for dangerous global access."""

    def test_aggregates_categories(self, make_context):
        """Test that all dangerous globals land in one finding."""
        usage = {
            "fetch": AccessMode.READ,
            "eval": AccessMode.READ,
            "localStorage": AccessMode.READ,
            "chrome": AccessMode.READ,
            "document": AccessMode.READ,
            "lodash": AccessMode.READ,
        }

        finding = DangerousGlobalRule().evaluate(make_context(global_usage=usage))

        assert finding is not None
        assert finding.severity == Severity.HIGH
        categories = {evidence.name: evidence.category for evidence in finding.globals}
        assert categories == {
            "fetch": "network",
            "eval": "code-execution",
            "localStorage": "local-storage",
            "chrome": "extension-api",
            "document": "dom",
        }
        assert len(finding.evidence.splitlines()) == 5

    def test_dom_callback_only_when_written(self, make_context):
        """Test that on* handlers count only when assigned."""
        rule = DangerousGlobalRule()

        assert rule.evaluate(make_context(global_usage={"onload": AccessMode.READ})) is None
        finding = rule.evaluate(make_context(global_usage={"onload": AccessMode.READ_WRITE}))
        assert finding is not None
        assert finding.globals[0].category == "dom"
        assert "writes onload" in finding.evidence

    def test_harmless_globals(self, make_context):
        """Test that unrelated globals produce nothing."""
        usage = {"module": AccessMode.READ, "require": AccessMode.READ}

        assert DangerousGlobalRule().evaluate(make_context(global_usage=usage)) is None


class TestObfuscationRule:
    """Tests for obfuscator fingerprints."""

    @pytest.mark.parametrize(
        "content",
        [
            "while(!![]){try{}catch(e){}}",
            "var a=+-parseInt(b(0x1f));",
            "var _0xabc123=['x'];",
        ],
    )
    def test_markers(self, make_context, content):
        """Test each obfuscation marker."""
        finding = ObfuscationRule().evaluate(make_context(files={"package/index.js": content}))

        assert finding is not None
        assert finding.severity == Severity.MEDIUM

    def test_lists_only_matching_files(self, make_context):
        """Test that clean files are not listed as evidence."""
        files = {
            "package/clean.js": "module.exports = 1;",
            "package/dist/min.js": "var _0x1a2b3c=1;",
        }

        finding = ObfuscationRule().evaluate(make_context(files=files))

        assert finding.evidence == "- package/dist/min.js is obfuscated"

    def test_uppercase_hex_identifier(self, make_context):
        """Test an _0x identifier with an uppercase hex suffix."""
        files = {"package/index.js": "const id = 0x41a2c3; var _0xAB12CD = 1;"}

        finding = ObfuscationRule().evaluate(make_context(files=files))

        assert finding is not None
        assert finding.evidence == "- package/index.js is obfuscated"

    def test_hex_literal_is_clean(self, make_context):
        """Test that a plain hex number literal is not an obfuscated identifier."""
        assert ObfuscationRule().evaluate(make_context(files={"package/index.js": "const id = 0x41a2c3;"})) is None

    def test_short_hex_name_is_clean(self, make_context):
        """Test that short _0x names are not enough."""
        assert ObfuscationRule().evaluate(make_context(files={"a.js": "var _0xab = 1;"})) is None


class TestKeywordRule:
    """Tests for sensitive keywords."""

    def test_default_keyword(self, make_context):
        """Test the default ethereum keyword."""
        files = {"package/wallet.js": "window.ethereum.request({})", "package/other.js": "1"}

        finding = KeywordRule().evaluate(make_context(files=files))

        assert finding is not None
        assert finding.severity == Severity.LOW
        assert finding.evidence == "- package/wallet.js uses ethereum"

    def test_configured_keywords(self, make_context):
        """Test keywords from settings."""
        settings = ScanSettings(keywords=["mnemonic", "privateKey"])
        files = {"package/a.js": "const mnemonic = privateKey;"}

        finding = KeywordRule().evaluate(make_context(files=files, settings=settings))

        assert finding.evidence.splitlines() == [
            "- package/a.js uses mnemonic",
            "- package/a.js uses privateKey",
        ]


class TestClassify:
    """Tests for running the full rule set."""

    def test_rules_are_independent(self, make_context):
        """Test that several rules fire together, in rule order."""
        context = make_context(
            versions={"1.0.0": 5},
            downloads=10,
            global_usage={"fetch": AccessMode.READ},
            files={"package/index.js": "while(!![]){} // ethereum"},
        )

        findings = classify(context)

        assert [f.kind for f in findings] == [
            RiskKind.FRESHNESS,
            RiskKind.POPULARITY,
            RiskKind.DANGEROUS_GLOBAL,
            RiskKind.OBFUSCATION,
            RiskKind.KEYWORD,
        ]

    def test_clean_package(self, make_context):
        """Test that a popular, old, clean package has no findings."""
        assert classify(make_context()) == []

    def test_rule_registry(self):
        """Test that every risk kind has exactly one rule."""
        assert {rule.kind for rule in RULES} == set(RiskKind)
        assert len(RULES) == len(RiskKind)

    def test_freshness_uses_context_clock(self, make_context, now):
        """Test that the freshness window is measured from the context clock."""
        context = make_context(versions={"1.0.0": 40})
        context.now = now - timedelta(days=20)

        assert FreshnessRule().evaluate(context) is not None
