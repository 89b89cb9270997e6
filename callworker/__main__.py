import sys

from callworker.cli import main

sys.exit(main())
