"""Allow `python -m parley` to launch the agent."""

import sys

from parley.main import main

sys.exit(main())
