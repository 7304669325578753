import sys

from reconciliation_agent.main import main

sys.exit(main())
