import sys

from lssd.core.app import run

sys.exit(run())
