"""Entry point for execution isolate subprocesses."""

import sys

from cody_routines.scheduling.isolate import main

sys.exit(main())
