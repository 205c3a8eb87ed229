import sys
from pathlib import Path

# allow `python worker/run.py` from a checkout without installing the package
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "api"))

from oddsraiders.worker import main  # noqa: E402

if __name__ == "__main__":
    main()
