import sys

from rachel.cli import main

sys.exit(main())
