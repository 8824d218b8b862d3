#!/usr/bin/env python3
"""
Dry Run - Preview an AutoPlan schedule without writing to the task store

Usage:
  python scripts/run_dry_run.py --tasks config/sample_tasks.json --start "2026-03-02 09:00"

Outputs to outputs/ directory.
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from autoplan.dry_run import main

if __name__ == "__main__":
    main()
