"""Analysis components: global usage, risk rules and the scan pipeline."""

from prscan.analyzers.globals import GlobalUsagePool, analyze_globals, analyze_package_files
from prscan.analyzers.pipeline import ScanPipeline, ScanStep
from prscan.analyzers.risks import RULES, RuleContext, classify

__all__ = [
    "GlobalUsagePool",
    "RULES",
    "RuleContext",
    "ScanPipeline",
    "ScanStep",
    "analyze_globals",
    "analyze_package_files",
    "classify",
]
