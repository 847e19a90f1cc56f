"""
Clinical alert triage engine.

Turns patient-monitoring observations into a risk-prioritized, SLA-tracked
work queue, manages alert lifecycle under concurrent clinician access and
pushes live updates to connected clinicians.
"""

__version__ = "1.0.0"
