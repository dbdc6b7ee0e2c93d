import sys

from .lint_formulas import main

sys.exit(main())
