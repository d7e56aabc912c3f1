"""
Service layer for the gate pass backend.

This package contains the approval workflow, the time-driven sweeps and the
background queues that deliver notifications and render QR images.
"""

from .pass_workflow import create_pass, hod_decide, mentor_decide, verify_pass, expire_pass
from .expiry_scheduler import run_sweeps

__all__ = ["create_pass", "mentor_decide", "hod_decide", "verify_pass", "expire_pass", "run_sweeps"]
