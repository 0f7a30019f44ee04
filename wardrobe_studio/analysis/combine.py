"""Merge client and server analysis into one scored result."""

from ..models import PhotoAnalysisPartial, PhotoAnalysisResult, PhotoIssue, PhotoKind, Severity

# Points subtracted from 100 per issue
PENALTIES: dict[Severity, dict[str, int]] = {
    Severity.WARN: {
        "resolution-low": 10,
        "aspect-too-narrow": 8,
        "aspect-too-wide": 8,
        "blur-moderate": 12,
        "brightness-too-dark": 10,
        "brightness-too-bright": 10,
        "brightness-clipped": 10,
        "clutter-high": 8,
        "actor-too-small": 10,
        "garment-too-small": 10,
        "server-unavailable": 5,
        "analysis-error": 5,
        "cropping-risk": 12,
        "background-contrast": 10,
        "face-too-small": 10,
    },
    Severity.FAIL: {
        "resolution-too-low": 25,
        "blur-severe": 20,
        "no-face-detected": 30,
        "cropping-severe": 20,
    },
}

DEFAULT_PENALTY = {
    Severity.PASS: 0,
    Severity.WARN: 10,
    Severity.FAIL: 25,
}

ANALYSIS_VERSION = "1.0"


def penalty(issue: PhotoIssue) -> int:
    table = PENALTIES.get(issue.severity, {})
    return table.get(issue.id, DEFAULT_PENALTY[issue.severity])


def merge_issues(*partials: PhotoAnalysisPartial | None) -> list[PhotoIssue]:
    """Union by id; on collision the strictly worse severity wins."""
    merged: dict[str, PhotoIssue] = {}
    for partial in partials:
        if partial is None:
            continue
        for issue in partial.issues:
            existing = merged.get(issue.id)
            if existing is None or issue.severity.rank > existing.severity.rank:
                merged[issue.id] = issue
    return list(merged.values())


def score_issues(issues: list[PhotoIssue]) -> int:
    return max(0, min(100, 100 - sum(penalty(i) for i in issues)))


def combine_analysis(
    kind: PhotoKind,
    client_partial: PhotoAnalysisPartial,
    server_partial: PhotoAnalysisPartial | None = None,
    version: str = ANALYSIS_VERSION,
) -> PhotoAnalysisResult:
    issues = merge_issues(client_partial, server_partial)
    return PhotoAnalysisResult(
        kind=kind,
        score=score_issues(issues),
        status=Severity.worst(i.severity for i in issues),
        issues=issues,
        client_metrics=client_partial.metrics or None,
        server_metrics=(server_partial.metrics or None) if server_partial else None,
        version=version,
    )
