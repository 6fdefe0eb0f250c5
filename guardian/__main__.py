import sys

from guardian.app import main

if __name__ == "__main__":
    sys.exit(main())
