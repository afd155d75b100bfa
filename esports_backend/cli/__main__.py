import sys

from esports_backend.cli import main

sys.exit(main())
