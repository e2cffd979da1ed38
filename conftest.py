"""
Pytest configuration for test discovery and imports.

The tool's modules live flat under src/ and are imported by name
(`from rollout import RolloutMonitor`), so src/ goes on sys.path.
"""

import os
import sys

ROOT_DIR = os.path.dirname(__file__)
SRC_DIR = os.path.join(ROOT_DIR, "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)
