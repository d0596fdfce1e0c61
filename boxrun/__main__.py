import sys

from boxrun.cli.main import main

sys.exit(main())
