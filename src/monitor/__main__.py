import sys

from src.monitor.cli import main

sys.exit(main())
