"""Quality scoring for decoded extracts.

Deterministic: every score is a pure function of the decoded counts, the
capture timestamp and ``QualityScoringConfig``.
"""
