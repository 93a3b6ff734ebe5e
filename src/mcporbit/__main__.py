# ABOUTME: Allows running the CLI as python -m mcporbit
import sys

from mcporbit.cli import main

sys.exit(main())
