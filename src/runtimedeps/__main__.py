import sys

from runtimedeps.cli import main

if __name__ == "__main__":  # pragma: no cover - exercised via console script
    sys.exit(main())
