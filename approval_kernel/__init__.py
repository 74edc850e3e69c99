"""
Approval Kernel

A configurable multi-level approval workflow engine with:
- Form templates with typed, conditional field descriptors
- Per-scope approver chains with global fallback
- Append-only action trail as the audit source of truth
- SLA deadlines and stuck / overdue request queries
- Per-request locking and race-safe request numbering
"""

__version__ = "0.1.0"
