import sys

from deferagent.main import main

if __name__ == '__main__':
    sys.exit(main())
