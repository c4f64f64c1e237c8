import sys

from pg_advisory_lock.cli import main

if __name__ == "__main__":
    sys.exit(main())
