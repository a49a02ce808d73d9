"""Allow ``python -m jsonnet_lsp``."""

import sys

from jsonnet_lsp.cli import main

sys.exit(main())
