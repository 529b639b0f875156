from __future__ import annotations
import os

WORKERS = int(os.environ.get("DAGCI_WORKERS", "0")) or max(1, (os.cpu_count() or 2) - 1)
CANCEL_GRACE = float(os.environ.get("DAGCI_CANCEL_GRACE", "10"))
POLL_INTERVAL = float(os.environ.get("DAGCI_POLL_INTERVAL", "0.05"))
JOB_TIMEOUT = float(os.environ.get("DAGCI_JOB_TIMEOUT", "0")) or None
WORKFLOW_FILE = os.environ.get("DAGCI_WORKFLOW", "dagci_workflow.py")
