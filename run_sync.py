"""
Ledger synchronizer launcher script.

Run with: python run_sync.py [config.yaml]
"""

import sys
from pathlib import Path

# Ensure the project root is in sys.path
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

if __name__ == "__main__":
    from blockrent_sync.core.main import main
    main(sys.argv[1] if len(sys.argv) > 1 else "config.yaml")
