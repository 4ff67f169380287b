"""
Centralized path configuration for Deckhand
Ensures all modules use consistent, volume-mounted paths
"""

import os

# Base paths - the /app/data directory is mounted as a volume in Docker
DATA_DIR = os.getenv('DECKHAND_DATA_DIR', '/app/data')

# Git checkouts and compose files live here, one directory per project name
DEPLOYMENTS_DIR = os.getenv('DECKHAND_DEPLOYMENTS_DIR', '/app/deployments')

# For development/testing outside Docker
if not os.path.exists('/app'):
    # Running locally, use relative paths
    DATA_DIR = os.getenv('DECKHAND_DATA_DIR', './data')
    DEPLOYMENTS_DIR = os.getenv('DECKHAND_DEPLOYMENTS_DIR', './deployments')


def ensure_data_dirs(data_dir: str = DATA_DIR, deployments_dir: str = DEPLOYMENTS_DIR):
    """Create data directories if they don't exist"""
    for directory in [data_dir, deployments_dir]:
        os.makedirs(directory, exist_ok=True)
        try:
            os.chmod(directory, 0o700)
        except OSError:
            pass  # May not have permission in some environments
