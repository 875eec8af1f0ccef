"""
Analysis package.

Modules:
    models             — Observation, Severity, PatternResult, EarlyWarning
    trend              — least-squares trend over a sequence
    sequence_builder   — per-location observation windows
    pattern_detectors  — tsunami / cyclone / high-wave / surge / flooding
    early_warning      — dominant-pattern arbiter and lead time
    text_classifier    — TF-IDF and zero-shot hazard label models
    fusion             — label + numeric context fusion
"""
