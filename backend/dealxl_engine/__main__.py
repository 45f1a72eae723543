import sys

from backend.dealxl_engine.cli import main

sys.exit(main())
